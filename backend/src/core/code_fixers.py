# src/core/code_fixers.py
import logging
import posixpath
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .file_manifest import (
    IMPORT_RE, INDEX_FILES, RESOLVE_EXTENSIONS, SCRIPT_EXTENSIONS, import_target_base, parse_import_clause,
)
from .project_models import FixReport

logger = logging.getLogger(__name__)

# Icons known to exist in lucide-react; anything else is replaced by DEFAULT_ICON.
VALID_ICONS = frozenset({
    'Heart', 'Star', 'User', 'Home', 'Settings', 'Search', 'Menu', 'X', 'ChevronDown', 'ChevronRight',
    'Plus', 'Minus', 'Check', 'AlertCircle', 'Info', 'Calendar', 'Clock', 'Mail', 'Phone', 'MapPin',
    'Camera', 'Image', 'File', 'Folder', 'Download', 'Upload', 'Edit', 'Trash', 'Save', 'Share',
    'Copy', 'Link', 'ExternalLink', 'Eye', 'EyeOff', 'Lock', 'Unlock', 'Shield', 'Zap', 'Activity',
    'TrendingUp', 'BarChart', 'PieChart', 'Target', 'Award', 'Trophy', 'Flag', 'Bookmark', 'Tag', 'Filter',
    'Sort', 'Grid', 'List', 'Play', 'Pause', 'Stop', 'SkipForward', 'SkipBack', 'Volume2', 'VolumeX',
    'Wifi', 'Battery', 'Signal', 'Bluetooth', 'Cpu', 'HardDrive', 'Monitor', 'Smartphone', 'Tablet', 'Laptop',
    'Server', 'Database', 'Cloud', 'Globe', 'Navigation', 'Compass', 'Map', 'Car', 'Plane', 'Train',
    'Bike', 'Walk', 'Run', 'Dumbbell', 'Weight', 'Flame', 'Droplet', 'Sun', 'Moon', 'CloudRain',
    'Snowflake', 'Wind', 'Thermometer', 'Umbrella', 'Rainbow', 'Sunrise', 'Sunset',
})
DEFAULT_ICON = 'Activity'
LUCIDE_IMPORT_RE = re.compile(r'''import\s*\{([^}]+)\}\s*from\s*['"]lucide-react['"];?''')
JS_IDENTIFIER_RE = re.compile(r'[A-Za-z_$][\w$]*')
JSX_TAG_NAME_RE = re.compile(r'[A-Za-z_$][\w$.:-]*')
# Tokens after which `<` opens a JSX element rather than a comparison or type argument.
JSX_PRECEDERS = frozenset({'', '(', '=', ',', '?', ':', '[', '{', ';', '&', '|', '>', '!', 'return', 'yield'})

PLACEHOLDER_EXTENSIONS = ('css', 'scss', 'sass', 'svg', 'json', 'md', 'txt')
IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

DEFAULT_EXPORT_RE = re.compile(r'export\s+default\s+', re.MULTILINE)
DEFAULT_EXPORT_NAME_RE = re.compile(r'export\s+default\s+(?:async\s+)?(?:function|class)?\s*([A-Za-z_$][\w$]*)')
NAMED_EXPORT_RE = re.compile(r'export\s+(?:async\s+)?(?:const|let|var|function|class|interface|type|enum)\s+([A-Za-z_$][\w$]*)')
EXPORT_LIST_RE = re.compile(r'export\s*\{([^}]+)\}')
LOCAL_DECLARATION_RE = re.compile(r'(?:const|let|var|function|class)\s+([A-Za-z_$][\w$]*)')


def is_script(path: str) -> bool:
    return path.endswith(SCRIPT_EXTENSIONS)


# --- Icon validation ---

class IconUsageScanner:
    """
    Walks a JS/TS(X) source and records where the given identifiers are used as
    code or as JSX tag names. String literals, comments and JSX text are skipped.
    """
    def __init__(self, content: str, names: Set[str]):
        self.src = content
        self.names = names
        self.n = len(content)
        self.spans: List[Tuple[int, int]] = []

    def rewrite(self, replacement: str) -> str:
        self._code(0, stop_at_brace=False)
        parts: List[str] = []
        last = 0
        for start, end in self.spans:
            parts.append(self.src[last:start])
            parts.append(replacement)
            last = end
        parts.append(self.src[last:])
        return ''.join(parts)

    def _mark(self, match: re.Match) -> None:
        if match.group(0) in self.names:
            self.spans.append(match.span())

    def _skip_comment(self, i: int) -> Optional[int]:
        if self.src.startswith('//', i):
            end = self.src.find('\n', i)
            return self.n if end == -1 else end
        if self.src.startswith('/*', i):
            end = self.src.find('*/', i + 2)
            return self.n if end == -1 else end + 2
        return None

    def _skip_string(self, i: int) -> int:
        quote = self.src[i]
        i += 1
        while i < self.n:
            ch = self.src[i]
            if ch == '\\':
                i += 2
                continue
            if quote == '`' and self.src.startswith('${', i):
                i = self._code(i + 2, stop_at_brace=True)
                continue
            i += 1
            if ch == quote or (ch == '\n' and quote != '`'):
                break
        return i

    def _code(self, i: int, stop_at_brace: bool) -> int:
        """Scans code from `i`. With `stop_at_brace`, returns just past the unmatched `}`."""
        depth = 0
        prev = ''
        while i < self.n:
            ch = self.src[i]
            comment_end = self._skip_comment(i)
            if comment_end is not None:
                i = comment_end
                continue
            if ch in '\'"`':
                i = self._skip_string(i)
                prev = '"'
                continue
            if ch.isspace():
                i += 1
                continue
            match = JS_IDENTIFIER_RE.match(self.src, i)
            if match:
                if self.src[i - 1:i] != '.':
                    self._mark(match)
                prev = match.group(0)
                i = match.end()
                continue
            if ch == '<' and prev in JSX_PRECEDERS and self.src[i + 1:i + 2] and \
                    (self.src[i + 1].isalpha() or self.src[i + 1] in '>_$'):
                i = self._jsx_element(i)
                prev = ')'
                continue
            if ch in '{([':
                depth += 1
            elif ch in '})]':
                if ch == '}' and depth == 0 and stop_at_brace:
                    return i + 1
                depth = max(depth - 1, 0)
            prev = ch
            i += 1
        return i

    def _jsx_element(self, i: int) -> int:
        """Scans one JSX element starting at `<`; returns the index just past it."""
        i += 1
        if self.src.startswith('>', i):
            return self._jsx_children(i + 1)
        match = JSX_TAG_NAME_RE.match(self.src, i)
        if not match:
            return i
        self._mark(match)
        i = match.end()
        while i < self.n:
            ch = self.src[i]
            if self.src.startswith('/>', i):
                return i + 2
            if ch == '>':
                return self._jsx_children(i + 1)
            if ch == '{':
                i = self._code(i + 1, stop_at_brace=True)
            elif ch in '"\'':
                i = self._skip_string(i)
            else:
                i += 1
        return i

    def _jsx_children(self, i: int) -> int:
        while i < self.n:
            if self.src[i] == '{':
                i = self._code(i + 1, stop_at_brace=True)
            elif self.src.startswith('</', i):
                match = JSX_TAG_NAME_RE.match(self.src, i + 2)
                if match:
                    self._mark(match)
                end = self.src.find('>', i)
                return self.n if end == -1 else end + 1
            elif self.src[i] == '<':
                i = self._jsx_element(i)
            else:
                i += 1
        return i

def fix_invalid_icons(content: str) -> Tuple[str, List[str]]:
    """
    Replaces lucide-react icons missing from VALID_ICONS with DEFAULT_ICON, in the
    import and at every usage. Aliased imports are checked by their imported name
    and keep their local alias, so their usages need no rewrite.
    Usages are JSX tag names and identifier references; UI copy, strings and
    comments that happen to spell an icon name are left alone.

    Returns:
        (updated content, invalid icon names found).
    """
    invalid: List[str] = []
    renamed: List[str] = []

    def rewrite_import(match: re.Match) -> str:
        specs: List[str] = []
        changed = False
        for raw in match.group(1).split(','):
            spec = raw.strip()
            if not spec:
                continue
            imported, _, alias = (part.strip() for part in spec.partition(' as '))
            if imported in VALID_ICONS:
                specs.append(spec)
                continue
            changed = True
            invalid.append(imported)
            if alias:
                specs.append(f"{DEFAULT_ICON} as {alias}")
            else:
                specs.append(DEFAULT_ICON)
                renamed.append(imported)
        if not changed:
            return match.group(0)
        terminator = ';' if match.group(0).endswith(';') else ''
        return f"import {{ {', '.join(dict.fromkeys(specs))} }} from 'lucide-react'{terminator}"

    updated = LUCIDE_IMPORT_RE.sub(rewrite_import, content)
    if renamed:
        updated = IconUsageScanner(updated, set(renamed)).rewrite(DEFAULT_ICON)
    return updated, invalid


def find_invalid_icon_references(files: Dict[str, str]) -> List[str]:
    found: List[str] = []
    for path, content in files.items():
        if is_script(path):
            for name in fix_invalid_icons(content)[1]:
                if name not in found:
                    found.append(name)
    return found


# --- Missing-import placeholders ---

def _resolves(base: str, known: Set[str]) -> bool:
    candidates = [base] + [base + ext for ext in RESOLVE_EXTENSIONS] + [base + idx for idx in INDEX_FILES]
    return any(c in known for c in candidates)


def placeholder_for_extension(ext: str) -> str:
    if ext == 'css':
        return "/* auto-generated */\n:root {}\n"
    if ext in ('scss', 'sass'):
        return "/* auto-generated */\n$primary: #333;\nbody { color: $primary; }\n"
    if ext == 'svg':
        return ('<?xml version="1.0" encoding="UTF-8"?>\n'
                '<svg xmlns="http://www.w3.org/2000/svg" width="1" height="1" viewBox="0 0 1 1"></svg>\n')
    if ext == 'json':
        return "{}\n"
    if ext in ('md', 'txt'):
        return "# Auto-generated\n"
    return ""


def placeholder_component(name: str, typescript: bool) -> str:
    safe = name if IDENTIFIER_RE.match(name) else 'Component'
    annotation = ': JSX.Element' if typescript else ''
    return (
        "import React from 'react'\n\n"
        f"export default function {safe}(){annotation} {{\n"
        "  return (\n"
        f"    <div className=\"p-4 text-gray-600\">{safe} placeholder</div>\n"
        "  )\n"
        "}\n"
    )


def placeholder_target(base: str, typescript: bool) -> str:
    """Chooses the file to create for an unresolved import base path."""
    target = base
    name = posixpath.basename(target)
    if not posixpath.splitext(name)[1]:
        if '/components/' in f"/{target}" or name[:1].isupper():
            target += '.tsx' if typescript else '.jsx'
        else:
            target += '.css'
    if not (target.startswith('src/') or target.startswith('public/') or target == 'index.html'):
        target = f"src/{target}"
    return target


def plan_missing_import_placeholders(files: Dict[str, str], known_paths: Iterable[str],
                                     typescript: bool) -> Dict[str, str]:
    """
    Resolves every relative or aliased import of every script file against the
    known paths and returns placeholder content for each unresolved target.
    """
    known = set(known_paths) | set(files)
    planned: Dict[str, str] = {}
    for path, content in files.items():
        if not is_script(path):
            continue
        for match in IMPORT_RE.finditer(content):
            source = match.group('source').strip()
            if not source.startswith(('./', '../', '@/', '~/')):
                continue
            base = import_target_base(path, source)
            if not base or base.startswith('..') or _resolves(base, known):
                continue
            target = placeholder_target(base, typescript)
            if target in known or target in planned:
                continue
            ext = posixpath.splitext(target)[1].lstrip('.').lower()
            if ext in PLACEHOLDER_EXTENSIONS:
                planned[target] = placeholder_for_extension(ext)
            else:
                planned[target] = placeholder_component(posixpath.splitext(posixpath.basename(target))[0], typescript)
            known.add(target)
            logger.info(f"Planned placeholder {target} for unresolved import '{source}' in {path}")
    return planned


# --- Import/export mismatch repair ---

def parse_exports(code: str) -> Tuple[bool, List[str], List[str]]:
    """Returns (has default export, named exports, local declarations), names in source order."""
    has_default = bool(DEFAULT_EXPORT_RE.search(code))
    named: List[str] = []
    for match in NAMED_EXPORT_RE.finditer(code):
        if match.group(1) not in named:
            named.append(match.group(1))
    for match in EXPORT_LIST_RE.finditer(code):
        for part in match.group(1).split(','):
            exported = part.strip().split(' as ')[-1].strip()
            if exported and exported != 'default' and exported not in named:
                named.append(exported)
    local_names = list(dict.fromkeys(m.group(1) for m in LOCAL_DECLARATION_RE.finditer(code)))
    return has_default, named, local_names


def _pick_export_name(target_path: str, named: List[str], local_names: List[str]) -> str:
    base_name = posixpath.splitext(posixpath.basename(target_path))[0] or 'Component'
    if base_name in named:
        return base_name
    if named:
        return named[0]
    if local_names:
        return local_names[0]
    return 'Component'


def _resolve_existing(base: str, files: Dict[str, str]) -> Optional[str]:
    for candidate in [base] + [base + ext for ext in ('.tsx', '.ts', '.jsx', '.js')] + [base + idx for idx in INDEX_FILES]:
        if candidate in files:
            return candidate
    return None


def repair_import_exports(files: Dict[str, str]) -> Tuple[Dict[str, str], FixReport]:
    """
    Aligns local imports with what their target files actually export:

    - a default import of a file without a default export appends
      `export default <pick>` to the target;
    - a lone named import of a file that only has a default export is rewritten
      to a default import;
    - other missing named imports get an `export { <local> as <name> }` or, when
      nothing suitable exists, a default export is ensured on the target.

    Returns:
        (changed files with their new content, report).
    """
    current = dict(files)
    changed: Dict[str, str] = {}
    report = FixReport()

    for importer in list(current):
        if not is_script(importer):
            continue
        for match in list(IMPORT_RE.finditer(current[importer])):
            clause = match.group('clause')
            source = match.group('source').strip()
            if clause is None or not source.startswith(('./', '../', '@/', '~/')):
                continue
            base = import_target_base(importer, source)
            target = _resolve_existing(base, current) if base else None
            if not target or target == importer or not is_script(target):
                continue
            default_name, named, is_namespace = parse_import_clause(clause)
            if is_namespace:
                continue
            target_code = current[target]
            has_default, exported, local_names = parse_exports(target_code)

            if default_name and not has_default:
                pick = _pick_export_name(target, exported, local_names)
                current[target] = changed[target] = f"{target_code.rstrip()}\n\nexport default {pick}\n"
                report.fixes += 1
                report.notes.append(f"Added default export to {target} as {pick}")
                target_code = current[target]
                has_default = True

            missing = [n for n in named if n not in exported]
            if not missing:
                continue

            if has_default and not default_name and len(named) == 1:
                statement = match.group(0)
                alias_match = re.search(rf'\b{re.escape(missing[0])}\s+as\s+([\w$]+)', clause)
                local = alias_match.group(1) if alias_match else missing[0]
                new_statement = f"import {local} from '{source}'"
                if statement.rstrip().endswith(';'):
                    new_statement += ';'
                current[importer] = changed[importer] = current[importer].replace(statement, new_statement, 1)
                report.fixes += 1
                report.notes.append(f"Rewrote named import to default in {importer} for {target}")
                continue

            additions: List[str] = []
            default_match = DEFAULT_EXPORT_NAME_RE.search(target_code)
            for name in missing:
                if name in local_names:
                    additions.append(f"export {{ {name} }}")
                elif default_match and default_match.group(1) in local_names and default_match.group(1) != name:
                    additions.append(f"export {{ {default_match.group(1)} as {name} }}")
                else:
                    pick = _pick_export_name(target, exported, local_names)
                    if pick != 'Component' and pick != name:
                        additions.append(f"export {{ {pick} as {name} }}")
                    else:
                        additions.append(f"export const {name} = () => null")
            if not has_default:
                additions.append(f"export default {_pick_export_name(target, exported, local_names)}")
            current[target] = changed[target] = target_code.rstrip() + "\n\n" + "\n".join(additions) + "\n"
            report.fixes += 1
            report.notes.append(f"Added missing export(s) {', '.join(missing)} to {target}")

    return changed, report
