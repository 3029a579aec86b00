# src/core/intent_analyzer.py
import logging
import posixpath
import re
from dataclasses import dataclass
from typing import Callable, List, Pattern

from .file_manifest import resolve_local_import
from .project_models import EditIntent, EditType, FileManifest

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    'the', 'and', 'for', 'with', 'this', 'that', 'from', 'add', 'new', 'create', 'update',
    'change', 'modify', 'fix', 'remove', 'delete', 'component', 'section', 'page', 'feature',
})

UI_ELEMENTS = (
    'header', 'footer', 'nav', 'sidebar', 'button', 'card', 'modal', 'hero', 'banner', 'about',
    'services', 'features', 'testimonials', 'gallery', 'contact', 'team', 'pricing',
)

FileResolver = Callable[[str, FileManifest], List[str]]


def _basename(path: str) -> str:
    return posixpath.basename(path).lower()


def extract_component_words(prompt: str) -> List[str]:
    """Lower-cased prompt words longer than two characters, minus edit verbs and filler."""
    words = re.sub(r'[^\w\s]', ' ', prompt.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def find_component_files(prompt: str, manifest: FileManifest) -> List[str]:
    """
    Finds the single most likely component file: a word matching a file or
    component name, else a common UI element named in the prompt, else the entry point.
    """
    words = extract_component_words(prompt)
    for path, info in manifest.files.items():
        file_name = _basename(path)
        component_name = (info.component_name or '').lower()
        if any(w in file_name or (component_name and w in component_name) for w in words):
            logger.debug(f"Component match in '{path}'.")
            return [path]

    lower_prompt = prompt.lower()
    for element in UI_ELEMENTS:
        if element not in lower_prompt:
            continue
        for path in manifest.files:
            file_name = _basename(path)
            if element + '.' in file_name or file_name == element:
                return [path]
        for path in manifest.files:
            if element in _basename(path):
                return [path]

    return [manifest.entry_point]


def find_feature_insertion_points(prompt: str, manifest: FileManifest) -> List[str]:
    files: List[str] = []
    lower_prompt = prompt.lower()
    if 'page' in lower_prompt:
        for path, info in manifest.files.items():
            if path in manifest.routes or 'Route' in info.content or 'createBrowserRouter' in info.content \
                    or 'router' in path or 'routes' in path:
                files.append(path)
                break
    if 'component' in lower_prompt or 'section' in lower_prompt:
        if manifest.entry_point not in files:
            files.append(manifest.entry_point)
    return files or [manifest.entry_point]


def find_problem_files(prompt: str, manifest: FileManifest) -> List[str]:
    words = extract_component_words(prompt)
    files = [path for path, info in manifest.files.items()
             if any(w in _basename(path) or w in info.content.lower() for w in words)]
    return files or [manifest.entry_point]


def find_style_files(prompt: str, manifest: FileManifest) -> List[str]:
    files = [path for path, info in manifest.files.items()
             if path.endswith(('.css', '.scss', '.sass')) or 'styled' in info.content or 'className' in info.content]
    return files or [manifest.entry_point]


def find_package_files(prompt: str, manifest: FileManifest) -> List[str]:
    files = [p for p in manifest.files if p.endswith(('package.json', 'yarn.lock', 'package-lock.json'))]
    return files or [manifest.entry_point]


def suggested_context(target_files: List[str], manifest: FileManifest) -> List[str]:
    """Local files imported by the targets, de-duplicated in first-seen order."""
    context: List[str] = []
    for target in target_files:
        info = manifest.files.get(target)
        if not info:
            continue
        for imp in info.imports:
            resolved = resolve_local_import(target, imp.source, manifest.files)
            if resolved and resolved not in context:
                context.append(resolved)
    return context


@dataclass(frozen=True)
class IntentPattern:
    type: EditType
    patterns: List[Pattern[str]]
    resolver: FileResolver


def _compile(*patterns: str) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Evaluated in order; the first pattern that matches decides the type.
INTENT_PATTERNS: List[IntentPattern] = [
    IntentPattern(EditType.UPDATE_COMPONENT, _compile(
        r'update\s+(the\s+)?(\w+)\s+(component|section|page)',
        r'change\s+(the\s+)?(\w+)',
        r'modify\s+(the\s+)?(\w+)',
        r'edit\s+(the\s+)?(\w+)',
        r'fix\s+(the\s+)?(\w+)\s+(styling|style|css|layout)',
        r'remove\s+.*\s+(button|link|text|element|section)',
        r'delete\s+.*\s+(button|link|text|element|section)',
        r'hide\s+.*\s+(button|link|text|element|section)',
    ), find_component_files),
    IntentPattern(EditType.ADD_FEATURE, _compile(
        r'add\s+(a\s+)?new\s+(\w+)\s+(page|section|feature|component)',
        r'create\s+(a\s+)?(\w+)\s+(page|section|feature|component)',
        r'implement\s+(a\s+)?(\w+)\s+(page|section|feature)',
        r'build\s+(a\s+)?(\w+)\s+(page|section|feature)',
        r'add\s+(\w+)\s+to\s+(?:the\s+)?(\w+)',
        r'add\s+(?:a\s+)?(\w+)\s+(?:component|section)',
        r'include\s+(?:a\s+)?(\w+)',
    ), find_feature_insertion_points),
    IntentPattern(EditType.FIX_ISSUE, _compile(
        r'fix\s+(the\s+)?(\w+|\w+\s+\w+)(?!\s+styling|\s+style)',
        r'resolve\s+(the\s+)?error',
        r'debug\s+(the\s+)?(\w+)',
        r'repair\s+(the\s+)?(\w+)',
    ), find_problem_files),
    IntentPattern(EditType.UPDATE_STYLE, _compile(
        r'change\s+(the\s+)?(color|theme|style|styling|css)',
        r'update\s+(the\s+)?(color|theme|style|styling|css)',
        r'make\s+it\s+(dark|light|blue|red|green)',
        r'style\s+(the\s+)?(\w+)',
    ), find_style_files),
    IntentPattern(EditType.REFACTOR, _compile(
        r'refactor\s+(the\s+)?(\w+)',
        r'clean\s+up\s+(the\s+)?code',
        r'reorganize\s+(the\s+)?(\w+)',
        r'optimize\s+(the\s+)?(\w+)',
    ), find_component_files),
    IntentPattern(EditType.FULL_REBUILD, _compile(
        r'start\s+over',
        r'recreate\s+everything',
        r'rebuild\s+(the\s+)?app',
        r'new\s+app',
        r'from\s+scratch',
        r'create\s+(a\s+)?(\w+\s+)?(landing\s+page|website|app|application|page)',
        r'build\s+(a\s+)?(\w+\s+)?(landing\s+page|website|app|application|page)',
        r'make\s+(a\s+)?(\w+\s+)?(landing\s+page|website|app|application|page)',
    ), lambda p, m: [m.entry_point]),
    IntentPattern(EditType.ADD_DEPENDENCY, _compile(
        r'install\s+(\w+)',
        r'add\s+(\w+)\s+(package|library|dependency)',
        r'use\s+(\w+)\s+(library|framework)',
    ), find_package_files),
]


def calculate_confidence(prompt: str, pattern: IntentPattern, target_files: List[str]) -> float:
    confidence = 0.5
    if target_files and target_files[0]:
        confidence += 0.2
    if len(prompt.split(' ')) > 5:
        confidence += 0.1
    if any(regex.search(prompt) for regex in pattern.patterns):
        confidence += 0.2
    return min(confidence, 1.0)


def describe_intent(edit_type: EditType, target_files: List[str]) -> str:
    file_names = ', '.join(posixpath.basename(f) for f in target_files)
    descriptions = {
        EditType.UPDATE_COMPONENT: f"Updating component(s): {file_names}",
        EditType.ADD_FEATURE: f"Adding new feature to: {file_names}",
        EditType.FIX_ISSUE: f"Fixing issue in: {file_names}",
        EditType.UPDATE_STYLE: f"Updating styles in: {file_names}",
        EditType.REFACTOR: f"Refactoring: {file_names}",
        EditType.ADD_DEPENDENCY: "Adding package dependencies",
    }
    return descriptions.get(edit_type, f"Editing: {file_names}")


def analyze_edit_intent(prompt: str, manifest: FileManifest) -> EditIntent:
    """
    Pattern-table classifier used as the second opinion next to the edit context
    selector. Falls back to a low-confidence general component update.
    """
    for pattern in INTENT_PATTERNS:
        if any(regex.search(prompt) for regex in pattern.patterns):
            target_files = pattern.resolver(prompt, manifest)
            intent = EditIntent(
                type=pattern.type,
                target_files=target_files,
                confidence=calculate_confidence(prompt, pattern, target_files),
                description=describe_intent(pattern.type, target_files),
                suggested_context=suggested_context(target_files, manifest),
            )
            logger.debug(f"Intent analyzer matched {intent.type.value} ({intent.confidence:.2f}) -> {target_files}")
            return intent

    return EditIntent(
        type=EditType.UPDATE_COMPONENT,
        target_files=[manifest.entry_point],
        confidence=0.3,
        description="General update to application",
        suggested_context=[],
    )
