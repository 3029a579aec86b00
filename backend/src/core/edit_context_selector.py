# src/core/edit_context_selector.py
import logging
import posixpath
import re
from typing import List, Optional, Tuple

from .file_manifest import resolve_local_import
from .intent_analyzer import analyze_edit_intent, extract_component_words
from .project_models import EditContext, EditIntent, EditType, FileManifest

logger = logging.getLogger(__name__)

FULL_REBUILD_RE = re.compile(r'\b(rebuild|redesign|start over|from scratch|recreate)\b', re.IGNORECASE)
STYLE_RE = re.compile(
    r'\b(colou?rs?|style|styles|styling|css|theme|font|fonts|background|padding|margin|spacing|dark|light|'
    r'gradient|shadow|rounded|border|bigger|smaller|size)\b', re.IGNORECASE)
BUG_RE = re.compile(r"\b(fix|bug|error|broken|issue|not working|doesn't work|crash(?:es|ing)?)\b", re.IGNORECASE)
FEATURE_RE = re.compile(r'\b(add|create|build|implement|include|new)\b', re.IGNORECASE)
PACKAGE_RE = re.compile(r'\b(install|dependency|library|package)\b', re.IGNORECASE)
REFACTOR_RE = re.compile(r'\b(refactor|clean up|reorganize|restructure|optimi[sz]e)\b', re.IGNORECASE)
QUOTED_RE = re.compile(r'"([^"\n]{2,})"|“([^”\n]{2,})”|(?:^|\s)\'([^\'\n]{2,})\'(?=[\s.,!?]|$)')

# Cues in evaluation order.
CATEGORY_CUES: List[Tuple[re.Pattern, EditType]] = [
    (FULL_REBUILD_RE, EditType.FULL_REBUILD),
    (STYLE_RE, EditType.UPDATE_STYLE),
    (BUG_RE, EditType.FIX_ISSUE),
]
LATE_CUES: List[Tuple[re.Pattern, EditType]] = [
    (FEATURE_RE, EditType.ADD_FEATURE),
    (PACKAGE_RE, EditType.ADD_DEPENDENCY),
    (REFACTOR_RE, EditType.REFACTOR),
]


def extract_quoted_fragments(prompt: str) -> List[str]:
    fragments: List[str] = []
    for match in QUOTED_RE.finditer(prompt or ''):
        fragment = next(g for g in match.groups() if g).strip()
        if fragment and fragment not in fragments:
            fragments.append(fragment)
    return fragments


class EditContextSelector:
    """
    Classifies an edit request and picks the smallest set of files to change.

    The selector's own lexical classification is cross-checked by the pattern-table
    intent analyzer; the merged intent keeps the higher confidence and prefers the
    analyzer's description.
    """
    def __init__(self, max_primary_files: int = 3, max_context_files: int = 5):
        self.max_primary_files = max_primary_files
        self.max_context_files = max_context_files

    def classify(self, prompt: str) -> Tuple[EditType, bool]:
        """Returns the edit type and whether an explicit category keyword decided it."""
        for regex, edit_type in CATEGORY_CUES:
            if regex.search(prompt):
                return edit_type, True
        if extract_quoted_fragments(prompt):
            return EditType.UPDATE_COMPONENT, False
        for regex, edit_type in LATE_CUES:
            if regex.search(prompt):
                return edit_type, True
        return EditType.UPDATE_COMPONENT, False

    def _name_matches(self, prompt: str, manifest: FileManifest) -> List[str]:
        words = extract_component_words(prompt)
        matches: List[str] = []
        for path, info in manifest.files.items():
            if info.file_type != 'script':
                continue
            stem = posixpath.splitext(posixpath.basename(path))[0].lower()
            component = (info.component_name or '').lower()
            if any(w in stem or (component and w in component) for w in words):
                matches.append(path)
        return matches

    def _select_primary(self, prompt: str, edit_type: EditType, manifest: FileManifest, quoted: List[str]) -> List[str]:
        entry = manifest.entry_point
        if edit_type == EditType.FULL_REBUILD:
            return [entry]

        if edit_type == EditType.ADD_DEPENDENCY:
            return ['package.json'] if 'package.json' in manifest.files else [entry]

        if edit_type == EditType.ADD_FEATURE:
            primary = [entry]
            if 'page' in prompt.lower():
                primary.extend(p for p in manifest.routes if p != entry)
            return primary[:self.max_primary_files]

        candidates: List[str] = []
        for fragment in quoted:
            for path, info in manifest.files.items():
                if info.file_type == 'script' and fragment in info.content and path not in candidates:
                    candidates.append(path)
        for path in self._name_matches(prompt, manifest):
            if path not in candidates:
                candidates.append(path)

        if edit_type == EditType.UPDATE_STYLE:
            styled = [p for p in candidates if 'className' in manifest.files[p].content]
            candidates = styled

        return candidates[:self.max_primary_files] or [entry]

    def _select_context(self, primary: List[str], manifest: FileManifest) -> List[str]:
        context: List[str] = []
        for path in primary:
            info = manifest.files.get(path)
            if not info:
                continue
            for imp in info.imports:
                resolved = resolve_local_import(path, imp.source, manifest.files)
                if resolved and resolved not in primary and resolved not in context:
                    context.append(resolved)
        if manifest.entry_point in manifest.files and manifest.entry_point not in primary and manifest.entry_point not in context:
            context.append(manifest.entry_point)
        return context[:self.max_context_files]

    @staticmethod
    def build_system_prompt(intent: EditIntent, primary: List[str], context: List[str]) -> str:
        lines = [
            "## EDIT CONTEXT",
            f"Edit type: {intent.type.value}",
            f"Description: {intent.description}",
            "",
            "### Files to edit",
            *[f"- {p}" for p in primary],
        ]
        if context:
            lines += ["", "### Context files (reference only, do not modify)", *[f"- {p}" for p in context]]
        lines += [
            "",
            "### Rules",
            "- Edit ONLY the files listed under 'Files to edit'.",
            "- Return every edited file in full inside <file path=\"...\"></file> tags.",
            "- Preserve all unrelated code, imports and structure.",
        ]
        return "\n".join(lines)

    def select(self, prompt: str, manifest: FileManifest) -> EditContext:
        edit_type, had_keyword = self.classify(prompt)
        quoted = extract_quoted_fragments(prompt)
        primary = self._select_primary(prompt, edit_type, manifest, quoted)
        context = self._select_context(primary, manifest)

        confidence = 0.5
        if any(p != manifest.entry_point for p in primary):
            confidence += 0.2
        if quoted:
            confidence += 0.1
        if had_keyword:
            confidence += 0.1

        intent = EditIntent(
            type=edit_type,
            description=f"{edit_type.value.replace('_', ' ').title()}: {', '.join(primary)}",
            confidence=confidence,
            target_files=primary,
            suggested_context=context,
        )

        secondary: Optional[EditIntent] = None
        try:
            secondary = analyze_edit_intent(prompt, manifest)
        except Exception as e:
            logger.warning(f"Secondary intent analysis failed, keeping selector intent: {e}")
        if secondary is not None:
            intent.confidence = max(intent.confidence, secondary.confidence)
            if secondary.description:
                intent.description = secondary.description

        logger.info(f"Edit context: {intent.type.value} (confidence {intent.confidence:.2f}), primary={primary}, context={context}")
        return EditContext(
            edit_intent=intent,
            primary_files=primary,
            context_files=context,
            system_prompt=self.build_system_prompt(intent, primary, context),
        )
