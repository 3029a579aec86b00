# src/core/memory_manager.py
import json
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, List, Literal, Optional, Protocol

from pydantic import ValidationError

from .project_models import ChatRecord, FileManifest

logger = logging.getLogger(__name__)

# --- Constants for filenames and directory ---
HISTORY_FILENAME = 'chat_history.jsonl'   # One JSON object per chat turn
MANIFEST_FILENAME = 'file_manifest.json'  # Cached manifest for edit mode
STORAGE_DIR_NAME = '.webforge'

Role = Literal["user", "assistant", "system"]


class ChatPersistence(Protocol):
    """The read/append calls the orchestrator makes against project storage."""
    def save_chat_message(self, project_id: str, user_id: str, role: Role, content: str) -> None: ...

    def get_recent_user_messages(self, project_id: str, user_id: str, since: float, limit: int) -> List[ChatRecord]: ...

    def get_file_manifest(self, project_id: str) -> Optional[FileManifest]: ...


def _safe_dir_name(project_id: str) -> str:
    return re.sub(r'[^A-Za-z0-9_\-]', '_', project_id) or "_"


class JsonlChatStore:
    """
    Stores chat history as JSON Lines, one directory per project under
    `storage_dir`, next to a cached file manifest.

    Appends are serialised with a lock; the manifest is written atomically
    through a temporary file and `os.replace`.
    """
    def __init__(self, storage_dir: str | Path):
        if not storage_dir:
            raise ValueError("JsonlChatStore requires a valid storage_dir.")
        self.storage_dir = Path(storage_dir).resolve()
        self._file_op_lock = threading.Lock()
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.exception(f"Failed to create storage directory {self.storage_dir}")
            raise RuntimeError(f"Failed to create storage directory: {e}") from e
        logger.info(f"JsonlChatStore initialized at {self.storage_dir}")

    def _project_dir(self, project_id: str) -> Path:
        return self.storage_dir / _safe_dir_name(project_id)

    def save_chat_message(self, project_id: str, user_id: str, role: Role, content: str) -> None:
        """Appends one chat turn. Failures are logged, never raised."""
        try:
            record = ChatRecord(project_id=project_id, user_id=user_id, role=role, content=content)
            project_dir = self._project_dir(project_id)
            with self._file_op_lock:
                project_dir.mkdir(parents=True, exist_ok=True)
                with open(project_dir / HISTORY_FILENAME, 'a', encoding='utf-8') as f:
                    f.write(record.model_dump_json() + '\n')
            logger.debug(f"Saved {role} message for project {project_id}.")
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to save chat message for project {project_id}: {e}")

    def _load_history(self, project_id: str) -> List[ChatRecord]:
        history_file = self._project_dir(project_id) / HISTORY_FILENAME
        if not history_file.is_file():
            return []
        records: List[ChatRecord] = []
        invalid_count = 0
        with self._file_op_lock:
            with open(history_file, 'r', encoding='utf-8') as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        records.append(ChatRecord.model_validate_json(line))
                    except ValidationError:
                        invalid_count += 1
        if invalid_count:
            logger.warning(f"Filtered out {invalid_count} invalid entries from {history_file.name}.")
        return records

    def get_recent_user_messages(self, project_id: str, user_id: str, since: float, limit: int) -> List[ChatRecord]:
        """
        Newest-first user messages of `user_id` created at or after `since`.
        A read failure returns an empty list (treated as "no duplicate").
        """
        try:
            history = self._load_history(project_id)
        except OSError as e:
            logger.warning(f"Could not read chat history for project {project_id}: {e}")
            return []
        matches = [r for r in history if r.role == "user" and r.user_id == user_id and r.created_at >= since]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[:limit]

    def get_file_manifest(self, project_id: str) -> Optional[FileManifest]:
        manifest_file = self._project_dir(project_id) / MANIFEST_FILENAME
        if not manifest_file.is_file():
            return None
        try:
            with open(manifest_file, 'r', encoding='utf-8') as f:
                return FileManifest.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Cached file manifest for project {project_id} is unreadable: {e}")
            return None

    def save_file_manifest(self, project_id: str, manifest: FileManifest) -> None:
        project_dir = self._project_dir(project_id)
        with self._file_op_lock:
            try:
                project_dir.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', delete=False, dir=project_dir, suffix=".tmp") as temp_f:
                    temp_file_path = temp_f.name
                    temp_f.write(manifest.model_dump_json(indent=2))
                os.replace(temp_file_path, project_dir / MANIFEST_FILENAME)
                logger.info(f"File manifest saved for project {project_id}.")
            except OSError as e:
                logger.exception(f"Atomic write failed for the manifest of project {project_id}: {e}")


class InMemoryChatStore:
    """Process-local persistence, used by the CLI when no storage directory is given and in tests."""
    def __init__(self):
        self.records: List[ChatRecord] = []
        self.manifests: Dict[str, FileManifest] = {}

    def save_chat_message(self, project_id: str, user_id: str, role: Role, content: str) -> None:
        self.records.append(ChatRecord(project_id=project_id, user_id=user_id, role=role, content=content,
                                       created_at=time.time()))

    def get_recent_user_messages(self, project_id: str, user_id: str, since: float, limit: int) -> List[ChatRecord]:
        matches = [r for r in self.records
                   if r.project_id == project_id and r.user_id == user_id and r.role == "user" and r.created_at >= since]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[:limit]

    def get_file_manifest(self, project_id: str) -> Optional[FileManifest]:
        return self.manifests.get(project_id)

    def save_file_manifest(self, project_id: str, manifest: FileManifest) -> None:
        self.manifests[project_id] = manifest
