# src/core/error_analyzer.py
import logging
import re
from typing import Dict, Iterable, List

from .file_manifest import IMPORT_RE, SCRIPT_EXTENSIONS, resolve_local_import, import_target_base

logger = logging.getLogger(__name__)

# Any of these in build output means the build is broken, whatever the exit code says.
FAILURE_SIGNATURES = (
    'Failed to resolve import',
    'Missing import:',
    'Cannot resolve module',
    'Transform failed',
    'ERROR:',
    'Expected ',
    'Unexpected ',
    'Unterminated ',
    'SyntaxError',
    'does not provide an export named',
    'Uncaught SyntaxError',
    '[plugin:vite:',
    '[plugin:esbuild',
)

# Markers checked after a repair rebuild to decide whether another round is needed.
STILL_FAILING_MARKERS = ('Failed to resolve import', 'Transform failed', 'ERROR:')

LINE_COL_RE = re.compile(r'\n/?home/user/app/([^\s:\'"\\)]+):(\d+):(\d+)')
FROM_APP_ROOT_RE = re.compile(r'from\s+"/?home/user/app/([^"\']+)"')
FROM_ANY_RE = re.compile(r'from\s+"([^"]+)"')
DIAGNOSTIC_RE = re.compile(r'/home/user/app/([^:\s]+):\d+:\d+:')
FAILED_RESOLVE_RE = re.compile(r'Failed to resolve import ["\']([^"\']+)["\'] from ["\']([^"\']+)["\']')
TRANSFORM_FAILED_RE = re.compile(r'Transform failed.*?\n.*?/home/user/app/([^:\s]+):')
UNRESOLVED_IMPORT_RE = re.compile(r'Failed to resolve import ["\']([^"\']+)["\']')
MISSING_EXPORT_RE = re.compile(r"does not provide an export named '([^']+)'")


def has_failure_signature(output: str) -> bool:
    return any(signature in output for signature in FAILURE_SIGNATURES)


def still_failing(success: bool, output: str) -> bool:
    """True when a rebuild failed or its output still carries a hard error marker."""
    return not success or any(marker in output for marker in STILL_FAILING_MARKERS)


def extract_error_paths(output: str, app_root: str = "/home/user/app") -> List[str]:
    """
    Collects project-relative paths of files implicated by a build log, using
    several independent recognisers: line:col diagnostics, `from "..."`
    resolution failures, the issuer of "Failed to resolve import X from Y" and
    transform-failure stack fragments. Order of first appearance is kept.
    """
    root = app_root.rstrip('/') + '/'
    paths: List[str] = []

    def add(path: str) -> None:
        path = path.strip()
        if path and path not in paths:
            paths.append(path)

    for match in LINE_COL_RE.finditer(output):
        add(match.group(1))
    for match in FROM_APP_ROOT_RE.finditer(output):
        add(match.group(1))
    for match in FROM_ANY_RE.finditer(output):
        if match.group(1).startswith(root):
            add(match.group(1)[len(root):])
    for match in DIAGNOSTIC_RE.finditer(output):
        add(match.group(1))
    for match in FAILED_RESOLVE_RE.finditer(output):
        issuer = match.group(2)
        if issuer.startswith(root):
            add(issuer[len(root):])
        elif not issuer.startswith('/'):
            add(issuer)
    for match in TRANSFORM_FAILED_RE.finditer(output):
        add(match.group(1))

    if paths:
        logger.debug(f"Build output implicates {len(paths)} file(s): {paths}")
    return paths


def extract_unresolved_imports(output: str) -> List[str]:
    return list(dict.fromkeys(m.group(1) for m in UNRESOLVED_IMPORT_RE.finditer(output)))


def extract_missing_exports(output: str) -> List[str]:
    """Names reported as "does not provide an export named '<name>'", typically invalid icons."""
    return list(dict.fromkeys(m.group(1) for m in MISSING_EXPORT_RE.finditer(output)))


def find_missing_imports(files: Dict[str, str], known_paths: Iterable[str]) -> List[str]:
    """
    Static scan for relative imports that resolve to no known file. Catches
    breakage a successful bundler run can hide (e.g. lazily imported modules).
    """
    known = set(known_paths) | set(files)
    problems: List[str] = []
    for path, content in files.items():
        if not path.endswith(SCRIPT_EXTENSIONS):
            continue
        for match in IMPORT_RE.finditer(content):
            source = match.group('source').strip()
            if not source.startswith('.'):
                continue
            if resolve_local_import(path, source, known) is None:
                problems.append(f'Missing import: "{source}" in "{path}" (resolved to "{import_target_base(path, source)}")')
    return problems
