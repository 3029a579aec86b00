# src/core/file_system_manager.py
import logging
import os
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

# Directories never reported by `list_files`.
EXCLUDED_DIRS = frozenset({"node_modules", ".git", ".next", "dist", "build"})


class FileSystemManager:
    """
    Handles file system operations (reading, writing, listing) securely within a
    project root directory (the local "sandbox").

    Paths reach this class in sandbox form: relative (`src/App.tsx`) or absolute
    under the virtual app root (`/home/user/app/src/App.tsx`). The app root prefix
    is stripped; any other absolute path, or any `..` component, is rejected.
    """
    def __init__(self, project_root_path: str | Path, app_root: str = "/home/user/app"):
        """
        Args:
            project_root_path: The directory that backs the sandbox. Created if missing.
            app_root: The virtual absolute root that generated paths may be prefixed with.

        Raises:
            ValueError: If project_root_path is not provided.
            NotADirectoryError: If the path exists but is not a directory.
        """
        if not project_root_path:
            raise ValueError("FileSystemManager requires a valid project_root_path.")

        root = Path(project_root_path).resolve()
        if root.exists() and not root.is_dir():
            logger.error(f"Project root path is not a directory: {root}")
            raise NotADirectoryError(f"Project root path exists but is not a directory: {root}")
        root.mkdir(parents=True, exist_ok=True)
        self.project_root = root
        self.app_root = app_root.rstrip("/")
        logger.info(f"FileSystemManager initialized. Project root set to: {self.project_root}")

    def to_relative(self, path: str | Path) -> str:
        """Strips the virtual app root from a sandbox path; other paths are returned unchanged."""
        path_str = str(path).replace("\\", "/")
        if self.app_root and (path_str == self.app_root or path_str.startswith(self.app_root + "/")):
            path_str = path_str[len(self.app_root):].lstrip("/")
        return path_str

    def _resolve_safe_path(self, relative_path: str | Path) -> Path:
        """
        Resolves a sandbox path against the project root and confirms that the
        result is strictly within that root. This is the core security check of
        the manager.

        Raises:
            ValueError: If the path is empty, absolute (outside the app root), or
                        attempts to traverse outside the project root.
        """
        relative_path_str = self.to_relative(relative_path) if relative_path is not None else ""

        if not relative_path_str or '\0' in relative_path_str:
            raise ValueError("Invalid relative path provided: cannot be empty or contain null bytes.")
        if os.path.isabs(relative_path_str):
            logger.error(f"Security Risk: Absolute path provided ('{relative_path_str}'). Operation blocked.")
            raise ValueError("Absolute paths are not allowed.")
        if ".." in Path(relative_path_str).parts:
            logger.error(f"Security Risk: Path traversal detected ('{relative_path_str}'). Operation blocked.")
            raise ValueError("Path traversal using '..' is not allowed.")

        normalized_relative = os.path.normpath(relative_path_str).strip(os.sep)
        if not normalized_relative or normalized_relative == '.':
            raise ValueError(f"Invalid relative path provided after normalization: '{relative_path_str}'")

        absolute_path = (self.project_root / normalized_relative).resolve()
        try:
            # Symlinks may still point outside the root after resolution.
            absolute_path.relative_to(self.project_root)
        except ValueError:
            logger.error(f"Security Risk: Resolved path '{absolute_path}' is outside the project root '{self.project_root}'. Operation blocked.")
            raise ValueError(f"Path traversal detected: '{relative_path_str}' resolves outside the project root.")
        logger.debug(f"Path resolved safely: '{relative_path_str}' -> '{absolute_path}'")
        return absolute_path

    def write_file(self, relative_path: str | Path, content: str, encoding: str = 'utf-8') -> None:
        """
        Writes content to a file, creating parent directories first. Overwrites any
        existing file, so writing identical content twice is a no-op in effect.

        Raises:
            ValueError: If the path is invalid or outside the project root.
            RuntimeError: If an OS-level error occurs.
        """
        target_path = self._resolve_safe_path(relative_path)
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            with open(target_path, 'w', encoding=encoding) as f:
                f.write(content)
            logger.info(f"Successfully wrote {len(content)} bytes to file: {target_path}")
        except OSError as e:
            logger.exception(f"Error writing file '{relative_path}'")
            raise RuntimeError(f"Failed to write file '{relative_path}': {e}") from e

    def read_file(self, relative_path: str | Path, encoding: str = 'utf-8') -> str:
        """
        Reads a file from the project root.

        Raises:
            ValueError: If the path is invalid or outside the project root.
            FileNotFoundError: If the file does not exist.
            RuntimeError: If any other OS-level error occurs.
        """
        target_path = self._resolve_safe_path(relative_path)
        if not target_path.is_file():
            logger.warning(f"File not found at resolved path: {target_path}")
            raise FileNotFoundError(f"File not found: '{relative_path}' (resolved to {target_path})")
        try:
            with open(target_path, 'r', encoding=encoding) as f:
                return f.read()
        except OSError as e:
            logger.exception(f"Error reading file '{relative_path}'")
            raise RuntimeError(f"Failed to read file '{relative_path}': {e}") from e

    def create_directory(self, relative_path: str | Path) -> None:
        """Creates a directory and its parents; idempotent."""
        target_path = self._resolve_safe_path(relative_path)
        try:
            target_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.exception(f"Error creating directory '{relative_path}'")
            raise RuntimeError(f"Failed to create directory '{relative_path}': {e}") from e

    def file_exists(self, relative_path: str | Path) -> bool:
        try:
            return self._resolve_safe_path(relative_path).is_file()
        except ValueError:
            return False

    def list_files(self, directory: Optional[str] = None) -> List[str]:
        """
        Recursively lists files under `directory` (default: the whole project) as
        POSIX paths relative to the project root, skipping dependency and build
        output directories.
        """
        start = self.project_root
        if directory and self.to_relative(directory) not in ("", "."):
            start = self._resolve_safe_path(directory)
        if not start.is_dir():
            return []

        all_files: List[str] = []
        for root, dirs, files in os.walk(start, topdown=True):
            dirs[:] = sorted(d for d in dirs if d not in EXCLUDED_DIRS)
            for filename in sorted(files):
                full_path = Path(root) / filename
                all_files.append(full_path.relative_to(self.project_root).as_posix())
        return all_files
