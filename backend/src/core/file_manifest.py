# src/core/file_manifest.py
import logging
import posixpath
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .project_models import FileInfo, FileManifest, ImportInfo

logger = logging.getLogger(__name__)

# `import X from 'y'`, `import { a, b as c } from "y"`, `import * as ns from 'y'`, `import 'y'`.
# The clause may span several lines.
IMPORT_RE = re.compile(
    r"""^[ \t]*import\s+(?:(?P<clause>[\w$*{}\s,]+?)\s+from\s+)?['"](?P<source>[^'"\n]+)['"];?""",
    re.MULTILINE,
)

SCRIPT_EXTENSIONS = ('.tsx', '.jsx', '.ts', '.js', '.mjs')
STYLE_EXTENSIONS = ('.css', '.scss', '.sass', '.less')
RESOLVE_EXTENSIONS = ('.tsx', '.ts', '.jsx', '.js', '.css', '.scss', '.sass')
INDEX_FILES = ('/index.tsx', '/index.ts', '/index.jsx', '/index.js')
ENTRY_CANDIDATES = ('src/App.tsx', 'src/App.jsx', 'src/App.js')

# Modules that ship with the project template and are never installed separately.
FRAMEWORK_PACKAGES = frozenset({'react', 'react-dom'})


def parse_import_clause(clause: Optional[str]) -> Tuple[Optional[str], List[str], bool]:
    """
    Splits an import clause into (default name, named imports, is_namespace).
    Named imports keep the exported name, so `X as Y` yields `X`.
    """
    if not clause:
        return None, [], False
    clause = clause.strip()
    if clause.startswith('type '):
        clause = clause[5:].strip()

    named: List[str] = []
    braces = re.search(r'\{([^}]*)\}', clause)
    if braces:
        for spec in braces.group(1).split(','):
            spec = spec.strip()
            if spec.startswith('type '):
                spec = spec[5:].strip()
            if spec:
                named.append(spec.split(' as ')[0].strip())
        clause = (clause[:braces.start()] + clause[braces.end():]).strip()

    is_namespace = '*' in clause
    default_name = None
    head = clause.split(',')[0].strip()
    if head and not is_namespace and re.fullmatch(r'[\w$]+', head):
        default_name = head
    return default_name, named, is_namespace


def parse_imports(content: str) -> List[ImportInfo]:
    """Extracts every static import statement from a JS/TS source file."""
    imports: List[ImportInfo] = []
    for match in IMPORT_RE.finditer(content or ''):
        clause = match.group('clause')
        default_name, named, _ = parse_import_clause(clause)
        imports.append(ImportInfo(
            source=match.group('source').strip(),
            default_name=default_name,
            named=named,
            is_side_effect=clause is None,
        ))
    return imports


def is_local_import(source: str) -> bool:
    return source.startswith(('.', '/', '@/', '~/'))


def package_name_from_import(source: str) -> Optional[str]:
    """
    Maps an import specifier to the npm package that provides it, or None for
    relative imports, path aliases and framework-intrinsic packages.
    """
    if not source or is_local_import(source):
        return None
    if source.startswith('@'):
        name = '/'.join(source.split('/')[:2])
    else:
        name = source.split('/')[0]
    if name in FRAMEWORK_PACKAGES or name.startswith('node:'):
        return None
    return name


def extract_packages(content: str) -> List[str]:
    """External package names referenced by a file's imports, first-seen order."""
    packages: List[str] = []
    for info in parse_imports(content):
        name = package_name_from_import(info.source)
        if name and name not in packages:
            packages.append(name)
    return packages


def classify_file_type(path: str) -> str:
    lower = path.lower()
    base = posixpath.basename(lower)
    if base in ('package.json', 'tsconfig.json') or '.config.' in base:
        return 'config'
    if lower.endswith(SCRIPT_EXTENSIONS):
        return 'script'
    if lower.endswith(STYLE_EXTENSIONS):
        return 'style'
    if lower.endswith(('.html', '.md', '.svg')):
        return 'markup'
    return 'other'


def detect_component_name(path: str, content: str) -> Optional[str]:
    """
    Finds the React component a file defines: the default export first, then the
    first capitalised function or const declaration.
    """
    if not path.endswith(('.tsx', '.jsx')):
        return None
    for pattern in (
        r'export\s+default\s+function\s+([A-Z][\w$]*)',
        r'export\s+default\s+([A-Z][\w$]*)\s*;?\s*$',
        r'(?:export\s+)?function\s+([A-Z][\w$]*)\s*\(',
        r'(?:export\s+)?const\s+([A-Z][\w$]*)\s*(?::[^=]+)?=',
    ):
        match = re.search(pattern, content, re.MULTILINE)
        if match:
            return match.group(1)
    return None


def find_entry_point(paths: Iterable[str]) -> str:
    path_list = list(paths)
    for candidate in ENTRY_CANDIDATES:
        if candidate in path_list:
            return candidate
    tsx = [p for p in path_list if p.endswith('.tsx')]
    return tsx[0] if tsx else ENTRY_CANDIDATES[0]


def import_target_base(from_path: str, source: str) -> Optional[str]:
    """
    Joins a local import specifier onto the importing file's directory.
    `@/` and `~/` aliases map to `src/`. Returns None for package imports.
    """
    if source.startswith(('@/', '~/')):
        return posixpath.normpath('src/' + source[2:])
    if source.startswith('.'):
        return posixpath.normpath(posixpath.join(posixpath.dirname(from_path), source))
    return None


def resolve_local_import(from_path: str, source: str, known_paths: Iterable[str]) -> Optional[str]:
    """Resolves a local import to an existing project path, trying extensions and index files."""
    base = import_target_base(from_path, source)
    if base is None:
        return None
    known = set(known_paths)
    for candidate in [base] + [base + ext for ext in RESOLVE_EXTENSIONS] + [base + idx for idx in INDEX_FILES]:
        if candidate in known:
            return candidate
    return None


def build_file_manifest(files: Dict[str, str]) -> FileManifest:
    """
    Builds a FileManifest from a path → content mapping.

    Files importing `react-router` are recorded as routes so that "add a page"
    requests can target them.
    """
    manifest_files: Dict[str, FileInfo] = {}
    routes: List[str] = []
    for path, content in files.items():
        content = content or ''
        file_type = classify_file_type(path)
        imports = parse_imports(content) if file_type == 'script' else []
        component_name = detect_component_name(path, content)
        manifest_files[path] = FileInfo(
            path=path,
            content=content,
            imports=imports,
            component_name=component_name,
            is_component=component_name is not None,
            file_type=file_type,
        )
        if any(i.source.startswith('react-router') for i in imports):
            routes.append(path)

    entry_point = find_entry_point(manifest_files)
    logger.debug(f"Built manifest with {len(manifest_files)} files; entry point '{entry_point}', {len(routes)} route file(s).")
    return FileManifest(files=manifest_files, entry_point=entry_point, routes=routes)
