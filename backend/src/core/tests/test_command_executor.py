# backend/src/core/tests/test_command_executor.py
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from src.core.command_executor import CommandExecutor
from src.core.exceptions import BlockedCommandException, CommandExecutionError

# --- Fixtures ---

@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """A temporary sandbox directory with a little structure in it."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "App.tsx").write_text("export default function App() {}")
    return tmp_path

@pytest.fixture
def executor(project_root: Path) -> CommandExecutor:
    return CommandExecutor(project_root, timeout=5)

# --- Test Cases ---

class TestCommandValidation:
    """The allow-list and per-command argument validators."""

    @pytest.mark.parametrize("command", [
        "npm install",
        "npm install zustand framer-motion",
        "npm install @tanstack/react-query@^5.0.0 --save-dev",
        "npm run build",
        "npm run type-check",
        "npx --yes vite build",
        "npx tsc --noEmit",
        "mkdir -p src/components",
        "ls -la src",
        "cat src/App.tsx",
        "node --version",
        "pkill -f vite",
    ])
    def test_allowed(self, executor: CommandExecutor, command: str):
        assert executor.check_command(command)

    @pytest.mark.parametrize("command, reason", [
        ("rm -rf /", "not in the allowed list"),
        ("curl http://example.com", "not in the allowed list"),
        ("npm install zustand; rm -rf /", "Shell metacharacters"),
        ("npm run build > out.txt", "Shell metacharacters"),
        ("cat src/App.tsx | grep App", "Shell metacharacters"),
        ("npm install --global zustand", "invalid or unsafe"),
        ("npm install 'bad name'", "invalid or unsafe"),
        ("npm publish", "invalid or unsafe"),
        ("npx create-react-app x", "invalid or unsafe"),
        ("mkdir ../outside", "invalid or unsafe"),
        ("mkdir /etc/evil", "invalid or unsafe"),
        ("cat ../../etc/passwd", "invalid or unsafe"),
        ("pkill -f python", "invalid or unsafe"),
        ("   ", "Empty command"),
        ("npm install 'unterminated", "Invalid command format"),
    ])
    def test_blocked(self, executor: CommandExecutor, command: str, reason: str):
        with pytest.raises(BlockedCommandException, match=reason):
            executor.check_command(command)

    def test_blocked_exception_carries_command(self, executor: CommandExecutor):
        with pytest.raises(BlockedCommandException) as exc_info:
            executor.check_command("rm -rf /")
        assert exc_info.value.original_command == "rm -rf /"

    def test_requires_existing_directory(self, tmp_path: Path):
        with pytest.raises(NotADirectoryError):
            CommandExecutor(tmp_path / "missing")
        with pytest.raises(ValueError):
            CommandExecutor("")


class TestExecution:
    """Process launching is mocked; only the real `mkdir` test touches the OS."""

    def test_success_result(self, executor: CommandExecutor, project_root: Path):
        completed = MagicMock(returncode=0, stdout="built in 1s\n", stderr="")
        with patch("src.core.command_executor.subprocess.run", return_value=completed) as mock_run:
            result = executor.run_command("npm run build")

        assert result.success
        assert result.stdout == "built in 1s"
        assert result.command_str == "npm run build"
        args, kwargs = mock_run.call_args
        assert args[0] == ["npm", "run", "build"]
        assert kwargs["shell"] is False
        assert kwargs["cwd"] == project_root.resolve()
        assert kwargs["timeout"] == 5

    def test_non_zero_exit_is_a_failed_result(self, executor: CommandExecutor):
        completed = MagicMock(returncode=1, stdout="", stderr="Transform failed\n")
        with patch("src.core.command_executor.subprocess.run", return_value=completed):
            result = executor.run_command("npx vite build")

        assert not result.success
        assert result.exit_code == 1
        assert result.stderr == "Transform failed"

    def test_timeout_raises(self, executor: CommandExecutor):
        with patch("src.core.command_executor.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="npm install", timeout=1, output="partial")):
            with pytest.raises(CommandExecutionError, match="Command timeout after 1 seconds"):
                executor.run_command("npm install", timeout=1)

    def test_missing_binary_raises(self, executor: CommandExecutor):
        with patch("src.core.command_executor.subprocess.run", side_effect=FileNotFoundError("npm")):
            with pytest.raises(CommandExecutionError, match="Command not found: 'npm'"):
                executor.run_command("npm install")

    def test_blocked_command_never_launches(self, executor: CommandExecutor):
        with patch("src.core.command_executor.subprocess.run") as mock_run:
            with pytest.raises(BlockedCommandException):
                executor.run_command("rm -rf src")
        mock_run.assert_not_called()

    def test_real_mkdir(self, executor: CommandExecutor, project_root: Path):
        if not Path("/bin/mkdir").exists() and not Path("/usr/bin/mkdir").exists():
            pytest.skip("mkdir binary not available")
        result = executor.run_command("mkdir -p src/components/ui")
        assert result.success
        assert (project_root / "src" / "components" / "ui").is_dir()
