# src/core/visual_edit.py
import logging
import posixpath
import re
from typing import Dict, List, Optional, Tuple

from .config_manager import FrameworkPrompts, PipelineSettings
from .exceptions import VisualEditRejectedError
from .llm_client import ChatMessage
from .project_models import SelectedElement

logger = logging.getLogger(__name__)


def _is_app_file(path: str) -> bool:
    lower = path.lower()
    return 'app.tsx' in lower or 'app.jsx' in lower


def change_ratio(original: str, edited: str) -> float:
    """
    Approximate line-level diff: the share of line positions whose stripped
    text differs, over the longer of the two files.
    """
    original_lines = original.split('\n')
    edited_lines = edited.split('\n')
    max_lines = max(len(original_lines), len(edited_lines))
    if max_lines == 0:
        return 0.0
    changed = 0
    for i in range(max_lines):
        a = original_lines[i] if i < len(original_lines) else ''
        b = edited_lines[i] if i < len(edited_lines) else ''
        if a.strip() != b.strip():
            changed += 1
    return changed / max_lines


def strip_fences(text: str) -> str:
    text = re.sub(r'^```[a-z]*\n?', '', text, flags=re.MULTILINE)
    text = re.sub(r'\n?```$', '', text, flags=re.MULTILINE)
    return text.strip()


class VisualEditEngine:
    """
    Applies a minimal, verified edit to the source of one UI element picked in
    the preview.

    The engine resolves the owning file, asks the model for a near-deterministic
    rewrite, and validates it. It never writes: callers persist the returned
    content only after `apply` returns without raising.
    """
    def __init__(self, streamer, prompts: FrameworkPrompts, settings: Optional[PipelineSettings] = None):
        self.streamer = streamer
        self.prompts = prompts
        self.settings = settings or PipelineSettings()

    def resolve_target(self, element: SelectedElement, files: Dict[str, str]) -> Tuple[str, str]:
        """
        Finds the file that owns `element`: explicit component path, then component
        name, then the element's visible text (App files searched last).

        Raises:
            VisualEditRejectedError: If no file can be identified.
        """
        if element.component_path:
            hint = element.component_path
            for path, content in files.items():
                if hint in path or path.endswith(f"/{hint}") or path == hint:
                    logger.info(f"Visual edit target found by path: {path}")
                    return path, content

        if element.component_name:
            name = element.component_name
            for path, content in files.items():
                stem = re.sub(r'\.(tsx|jsx)$', '', posixpath.basename(path))
                if stem == name or f"function {name}" in content or f"const {name}" in content \
                        or f"export default {name}" in content:
                    logger.info(f"Visual edit target found by component name: {path}")
                    return path, content

        text_to_match = element.text_content[:self.settings.visual_edit_match_chars].strip()
        if len(text_to_match) > self.settings.visual_edit_min_text_length:
            ordered = sorted(files.items(), key=lambda item: _is_app_file(item[0]))
            for path, content in ordered:
                if path.endswith(('.tsx', '.jsx')) and text_to_match in content:
                    logger.info(f"Visual edit target found by text content: {path}")
                    return path, content

        logger.error(f"Failed to identify visual edit target among {len(files)} files.")
        raise VisualEditRejectedError(
            f"Could not identify target component for visual edit. "
            f"Element: \"{element.text_content[:50]}...\" in {element.element_type}"
        )

    def validate_edit(self, original: str, edited: str, element: SelectedElement) -> float:
        """
        Rejects edits that rewrote too much and lost the element's text, or that
        broke the component's basic shape. Returns the change ratio.

        Raises:
            VisualEditRejectedError: On either rejection.
        """
        ratio = change_ratio(original, edited)
        if ratio > self.settings.visual_edit_change_threshold:
            logger.warning(f"Visual edit changed {ratio:.1%} of lines; checking the target element survived.")
            element_text = element.text_content[:self.settings.visual_edit_match_chars]
            if element_text and element_text in original and element_text not in edited:
                raise VisualEditRejectedError("Visual edit removed the target element content - edit rejected")

        if 'export' not in edited or ('function' not in edited and 'const' not in edited):
            raise VisualEditRejectedError("Visual edit produced invalid component structure - edit rejected")
        return ratio

    def build_messages(self, element: SelectedElement, content: str, prompt: str) -> List[ChatMessage]:
        text = element.text_content
        preview = text[:200] + ('...' if len(text) > 200 else '')
        user_prompt = (
            "VISUAL EDITOR MODE - TARGETED ELEMENT EDITING\n\n"
            "**SELECTED ELEMENT:**\n"
            f"- Element Type: {element.element_type}\n"
            f"- CSS Selector: {element.selector}\n"
            f"- Text Content: \"{preview}\"\n"
            f"- Position: x={element.bounds.x}, y={element.bounds.y}, "
            f"width={element.bounds.width}, height={element.bounds.height}\n\n"
            f"CURRENT COMPONENT CODE:\n```tsx\n{content}\n```\n\n"
            f"USER REQUEST: {prompt}\n\n"
            f"Find the {element.element_type} element with selector \"{element.selector}\" that contains "
            f"\"{text[:50]}...\" and change ONLY that element. Return the COMPLETE component code; "
            "all other code must remain identical."
        )
        return [self.prompts.system_visual_edit, {"role": "user", "content": user_prompt}]

    async def apply(self, element: SelectedElement, files: Dict[str, str], prompt: str, model: str) -> Tuple[str, str]:
        """
        Resolves, edits and validates. Returns (path, edited content).

        Raises:
            VisualEditRejectedError: If the target is unknown or the edit fails validation.
        """
        path, original = self.resolve_target(element, files)
        if _is_app_file(path) and any(p.endswith(('.tsx', '.jsx')) and not _is_app_file(p) for p in files):
            logger.warning("Visual edit targets the App component although other components exist.")

        messages = self.build_messages(element, original, prompt)
        raw = await self.streamer.complete_text(model, messages, temperature=self.settings.visual_edit_temperature)
        edited = strip_fences(raw)
        ratio = self.validate_edit(original, edited, element)
        logger.info(f"Visual edit for {path} accepted ({ratio:.1%} of lines changed).")
        return path, edited
