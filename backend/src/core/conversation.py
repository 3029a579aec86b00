# src/core/conversation.py
import logging
import posixpath
import re
import time
from typing import Iterable, Iterator, List, Literal, Optional, Set

from .config_manager import PipelineSettings
from .project_models import (
    ConversationMessage, ConversationState, EditRecord, MajorChange, MessageMetadata,
)

logger = logging.getLogger(__name__)

TARGETED_EDIT_RE = re.compile(r'\b(update|change|fix|modify|edit|remove|delete)\s+(\w+\s+)?(\w+)\b')
COMPREHENSIVE_EDIT_RE = re.compile(r'\b(rebuild|recreate|redesign|overhaul|refactor)\b')
TRUNCATION_NOTE = "\n[Context truncated to prevent length errors]"


class ExistingFilesIndex:
    """
    Normalized paths known to exist in the sandbox. Seeded from a listing at the
    start of each run and extended as files are written; decides whether a write
    is reported as "created" or "updated".
    """
    def __init__(self, paths: Optional[Iterable[str]] = None):
        self._paths: Set[str] = set()
        if paths:
            self.seed(paths)

    @staticmethod
    def _key(path: str) -> str:
        return path.replace('\\', '/').lstrip('/')

    def seed(self, paths: Iterable[str]) -> None:
        for path in paths:
            self._paths.add(self._key(path))

    def reset(self, paths: Iterable[str]) -> None:
        """Replaces the index with a fresh sandbox listing."""
        self._paths = {self._key(path) for path in paths}

    def add(self, path: str) -> None:
        self._paths.add(self._key(path))

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self._key(path) in self._paths

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._paths))

    def __len__(self) -> int:
        return len(self._paths)

    def is_typescript_project(self) -> bool:
        return 'tsconfig.json' in self._paths or any(p.endswith(('.ts', '.tsx')) for p in self._paths)


class ConversationSession:
    """
    Owns the advisory multi-turn context of one conversation: recent messages,
    recent edits, major changes and inferred user preferences, plus the
    `ExistingFilesIndex`. Authoritative file state always lives in the sandbox.
    """
    def __init__(self, settings: Optional[PipelineSettings] = None, state: Optional[ConversationState] = None):
        self.settings = settings or PipelineSettings()
        self.state = state or ConversationState()
        self.existing_files = ExistingFilesIndex()
        # Packages discovered mid-run (component imports, failed repair installs) awaiting the next install batch.
        self.pending_packages: List[str] = []

    def queue_packages(self, packages: Iterable[str]) -> None:
        for package in packages:
            if package and package not in self.pending_packages:
                self.pending_packages.append(package)

    def drain_packages(self) -> List[str]:
        queued, self.pending_packages = self.pending_packages, []
        return queued

    def _touch(self) -> None:
        self.state.last_updated = time.time()

    def add_message(self, role: Literal["user", "assistant", "system"], content: str,
                    sandbox_id: Optional[str] = None, edited_files: Optional[List[str]] = None) -> ConversationMessage:
        message = ConversationMessage(
            role=role,
            content=content,
            metadata=MessageMetadata(sandbox_id=sandbox_id, edited_files=list(edited_files or [])),
        )
        self.state.messages.append(message)
        if len(self.state.messages) > self.settings.max_conversation_messages:
            self.state.messages = self.state.messages[-self.settings.conversation_messages_trim_to:]
        self._touch()
        return message

    def add_edit(self, record: EditRecord) -> None:
        self.state.edits.append(record)
        if len(self.state.edits) > self.settings.max_conversation_edits:
            self.state.edits = self.state.edits[-self.settings.conversation_edits_trim_to:]
        self._touch()

    def add_major_change(self, description: str, files_affected: List[str]) -> None:
        self.state.project_evolution.major_changes.append(
            MajorChange(description=description, files_affected=list(files_affected)))
        self._touch()

    def analyze_user_preferences(self) -> None:
        """Infers targeted vs comprehensive editing and recurring request topics from user messages."""
        targeted = comprehensive = 0
        patterns: List[str] = []
        for message in self.state.messages:
            if message.role != 'user':
                continue
            content = message.content.lower()
            if TARGETED_EDIT_RE.search(content):
                targeted += 1
            if COMPREHENSIVE_EDIT_RE.search(content):
                comprehensive += 1
            if 'hero' in content:
                patterns.append('hero section edits')
            if 'header' in content:
                patterns.append('header modifications')
            if 'color' in content or 'style' in content:
                patterns.append('styling changes')

        prefs = self.state.user_preferences
        prefs.common_patterns = list(dict.fromkeys(patterns))[:3]
        prefs.edit_style = 'targeted' if targeted > comprehensive else 'comprehensive'

    def build_context_prompt(self) -> str:
        """
        Summary of recent conversation for the generation prompt. Empty until the
        conversation holds more than one message.
        """
        messages = self.state.messages
        if len(messages) <= 1:
            return ""

        parts = ["\n\n## Conversation History (Recent)\n"]
        recent_edits = self.state.edits[-3:]
        if recent_edits:
            parts.append("\n### Recent Edits:\n")
            for edit in recent_edits:
                names = ', '.join(posixpath.basename(f) for f in edit.target_files)
                parts.append(f"- \"{edit.user_request}\" → {edit.edit_type.value} ({names})\n")

        recent_msgs = messages[-5:]
        edited: List[str] = []
        for msg in recent_msgs:
            edited.extend(msg.metadata.edited_files)
        if edited:
            parts.append("\n### RECENTLY CREATED/EDITED FILES (DO NOT RECREATE THESE):\n")
            parts.extend(f"- {path}\n" for path in dict.fromkeys(edited))
            parts.append("\nIf the user mentions any of these components, UPDATE the existing file!\n")

        if len(recent_msgs) > 2:
            parts.append("\n### Recent Messages:\n")
            for msg in recent_msgs[:-1]:
                if msg.role == 'user':
                    text = msg.content if len(msg.content) <= 100 else msg.content[:100] + '...'
                    parts.append(f"- \"{text}\"\n")

        major_changes = self.state.project_evolution.major_changes[-2:]
        if major_changes:
            parts.append("\n### Recent Changes:\n")
            parts.extend(f"- {change.description}\n" for change in major_changes)

        self.analyze_user_preferences()
        prefs = self.state.user_preferences
        if prefs.common_patterns:
            parts.append("\n### User Preferences:\n")
            parts.append(f"- Edit style: {prefs.edit_style}\n")

        context = "".join(parts)
        limit = self.settings.conversation_context_char_limit
        if len(context) > limit:
            context = context[:limit] + TRUNCATION_NOTE
        return context
