# backend/src/core/tests/test_file_system_manager.py
import os
from pathlib import Path

import pytest

from src.core.file_system_manager import FileSystemManager

# --- Pytest Fixtures ---

@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Creates a temporary directory to act as the sandbox root for tests."""
    return tmp_path

@pytest.fixture
def fs_manager(project_root: Path) -> FileSystemManager:
    """Creates a FileSystemManager instance using the temporary project root."""
    return FileSystemManager(project_root)

# --- Test Cases ---

def test_initialization(project_root: Path):
    fs = FileSystemManager(project_root)
    assert fs.project_root == project_root.resolve()

def test_initialization_creates_missing_root(project_root: Path):
    """A sandbox directory that does not exist yet is created."""
    root = project_root / "sandboxes" / "local-1234"
    FileSystemManager(root)
    assert root.is_dir()

def test_initialization_fails_on_file_path(project_root: Path):
    file_path = project_root / "a_file.txt"
    file_path.touch()
    with pytest.raises(NotADirectoryError):
        FileSystemManager(file_path)


class TestSafePathResolution:
    """Tests for the critical _resolve_safe_path method."""

    def test_relative_path(self, fs_manager: FileSystemManager, project_root: Path):
        assert fs_manager._resolve_safe_path("src/App.tsx") == project_root / "src" / "App.tsx"

    def test_app_root_prefix_is_stripped(self, fs_manager: FileSystemManager, project_root: Path):
        assert fs_manager._resolve_safe_path("/home/user/app/src/App.tsx") == project_root / "src" / "App.tsx"
        assert fs_manager.to_relative("/home/user/app/src/index.css") == "src/index.css"
        assert fs_manager.to_relative("/home/user/application/x") == "/home/user/application/x"

    @pytest.mark.parametrize("unsafe_path", [
        "../secrets.txt",
        "src/../../../../etc/passwd",
        "/etc/passwd",
        "/home/user/app",
        "src/../secrets.txt",
        "",
        None,
        "src/./../secrets.txt",
    ])
    def test_traversal_fails(self, fs_manager: FileSystemManager, unsafe_path: str):
        with pytest.raises(ValueError):
            fs_manager._resolve_safe_path(unsafe_path)

    def test_symlink_outside_root_fails(self, fs_manager: FileSystemManager, project_root: Path):
        if os.name == 'nt':
            pytest.skip("Symlink test skipped on Windows due to permission requirements.")
        outside_file = project_root.parent / "outside_file.txt"
        outside_file.write_text("sensitive")
        symlink_path = project_root / "my_symlink"
        os.symlink(outside_file, symlink_path)
        try:
            with pytest.raises(ValueError, match="resolves outside the project root"):
                fs_manager._resolve_safe_path("my_symlink")
        finally:
            symlink_path.unlink()
            outside_file.unlink()


class TestFileOperations:
    """Tests for read, write, list and create directory operations."""

    def test_write_and_read_file(self, fs_manager: FileSystemManager):
        fs_manager.write_file("src/App.tsx", "export default function App() {}")
        assert fs_manager.file_exists("src/App.tsx")
        assert fs_manager.read_file("/home/user/app/src/App.tsx") == "export default function App() {}"

    def test_write_creates_parent_dirs(self, fs_manager: FileSystemManager, project_root: Path):
        fs_manager.write_file("src/components/ui/Button.tsx", "x")
        assert (project_root / "src" / "components" / "ui").is_dir()

    def test_overwrite_with_same_content(self, fs_manager: FileSystemManager):
        fs_manager.write_file("src/a.css", "body {}")
        fs_manager.write_file("src/a.css", "body {}")
        assert fs_manager.read_file("src/a.css") == "body {}"

    def test_read_non_existent_file_fails(self, fs_manager: FileSystemManager):
        with pytest.raises(FileNotFoundError):
            fs_manager.read_file("src/missing.tsx")

    def test_create_directory(self, fs_manager: FileSystemManager, project_root: Path):
        fs_manager.create_directory("public/images")
        fs_manager.create_directory("public/images")
        assert (project_root / "public" / "images").is_dir()

    def test_file_exists_rejects_unsafe_paths(self, fs_manager: FileSystemManager):
        assert fs_manager.file_exists("../outside") is False
        assert fs_manager.file_exists("src/none.tsx") is False

    def test_list_files_skips_dependency_dirs(self, fs_manager: FileSystemManager):
        for path in ("index.html", "src/App.tsx", "src/components/Hero.tsx",
                     "node_modules/react/index.js", "dist/assets/app.js", ".git/HEAD"):
            fs_manager.write_file(path, "x")

        assert fs_manager.list_files() == ["index.html", "src/App.tsx", "src/components/Hero.tsx"]
        assert fs_manager.list_files("src/components") == ["src/components/Hero.tsx"]
        assert fs_manager.list_files("src/nothing-here") == []
