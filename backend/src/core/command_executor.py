# src/core/command_executor.py
import logging
import re
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .exceptions import BlockedCommandException, CommandExecutionError
from .project_models import CommandResult

logger = logging.getLogger(__name__)

# --- Regular Expressions for Argument Validation ---
# npm package specifier, optionally scoped and versioned: `@scope/name@^1.2`
PACKAGE_SPEC_REGEX = re.compile(r"^(?:@[a-zA-Z0-9_\-\.]+\/)?[a-zA-Z0-9_][a-zA-Z0-9_\-\.]*(?:@[a-zA-Z0-9_\-\.\^~<>=*]+)?$")
# npm script names (`build`, `type-check`, `lint:fix`)
SCRIPT_NAME_REGEX = re.compile(r"^[a-zA-Z0-9_\-:]+$")
# Safe-looking relative paths: no leading slash or dot, no shell-significant characters.
SAFE_PATH_REGEX = re.compile(r"^(?![\/\\])(?!.*\.\.)[a-zA-Z0-9_\-\.\/]+$")
SHELL_METACHARACTERS = ('>', '<', '|', '&', ';', '`', '$(')

NPX_TOOLS = frozenset({"vite", "tsc", "eslint", "prettier"})
NPM_INSTALL_FLAGS = frozenset({"--save-dev", "-D", "--save", "--no-save", "--save-exact", "--legacy-peer-deps", "--no-audit", "--no-fund"})


class CommandExecutor:
    """
    Executes allow-listed commands inside the local sandbox directory.

    Commands are parsed with `shlex` and never run through a shell; redirection
    and chaining are refused. Each command key maps to an argument validator.
    Every run is bounded by a timeout; a timed-out or unlaunchable command raises
    `CommandExecutionError`, while a command that runs and exits non-zero is
    returned as a failed `CommandResult`.
    """
    def __init__(self, project_root_path: str | Path, timeout: float = 300):
        if not project_root_path:
            raise ValueError("CommandExecutor requires a valid project_root_path.")
        self.project_root = Path(project_root_path).resolve()
        if not self.project_root.is_dir():
            raise NotADirectoryError(f"Project root path is not a directory: {self.project_root}")
        self.timeout = timeout

        self.allowed_commands: Dict[str, Callable[[List[str]], bool]] = {
            "npm": self._is_safe_npm_command,
            "npx": self._is_safe_npx_command,
            "node": self._is_safe_node_command,
            "mkdir": self._is_safe_mkdir_command,
            "ls": self._is_safe_ls_command,
            "cat": self._is_safe_cat_command,
            "pkill": self._is_safe_pkill_command,
        }
        logger.info(f"CommandExecutor initialized. CWD set to: {self.project_root}")

    def _validate_path_for_command(self, path_arg: str) -> bool:
        """Checks a path argument for safe characters and containment in the project root."""
        if not path_arg or not SAFE_PATH_REGEX.match(path_arg):
            logger.warning(f"Blocked command: Path argument '{path_arg}' contains unsafe characters or format.")
            return False
        try:
            (self.project_root / path_arg).resolve().relative_to(self.project_root)
        except ValueError:
            logger.warning(f"Blocked command: Path argument '{path_arg}' resolves outside the project root.")
            return False
        return True

    def _is_safe_npm_command(self, args: List[str]) -> bool:
        if not args:
            return False
        if args == ["install"] or args == ["ci"]:
            return True
        if args[0] in ("install", "i") and len(args) > 1:
            packages = [a for a in args[1:] if not a.startswith('-')]
            flags = [a for a in args[1:] if a.startswith('-')]
            if any(f not in NPM_INSTALL_FLAGS for f in flags):
                logger.warning(f"Blocked 'npm install': unrecognized flag in {flags}")
                return False
            if not packages or not all(PACKAGE_SPEC_REGEX.match(p) for p in packages):
                logger.warning(f"Blocked 'npm install': invalid package specifier in {packages}")
                return False
            return True
        if len(args) >= 2 and args[0] == "run" and SCRIPT_NAME_REGEX.match(args[1]):
            return all(not any(c in a for c in SHELL_METACHARACTERS) for a in args[2:])
        if len(args) == 1 and args[0] in ("start", "test", "build", "dev", "list", "--version", "-v"):
            return True
        logger.warning(f"Blocked unsafe or unrecognized npm command: npm {' '.join(args)}")
        return False

    def _is_safe_npx_command(self, args: List[str]) -> bool:
        rest = [a for a in args if a != "--yes"]
        if rest and rest[0] in NPX_TOOLS:
            return all(a.startswith('-') or SAFE_PATH_REGEX.match(a) or SCRIPT_NAME_REGEX.match(a) for a in rest[1:])
        logger.warning(f"Blocked unsafe or unrecognized npx command: npx {' '.join(args)}")
        return False

    def _is_safe_node_command(self, args: List[str]) -> bool:
        if args in (["--version"], ["-v"]):
            return True
        if args and args[0].endswith((".js", ".mjs", ".cjs")):
            return self._validate_path_for_command(args[0])
        logger.warning(f"Blocked unsafe or unrecognized node command: node {' '.join(args)}")
        return False

    def _is_safe_mkdir_command(self, args: List[str]) -> bool:
        paths = [a for a in args if a != '-p']
        if paths and all(not p.startswith('-') and self._validate_path_for_command(p) for p in paths):
            return True
        logger.warning(f"Blocked unsafe mkdir command: mkdir {' '.join(args)}")
        return False

    def _is_safe_ls_command(self, args: List[str]) -> bool:
        allowed_flags = {'-l', '-a', '-la', '-al', '-R', '-1'}
        for arg in args:
            if arg.startswith('-'):
                if arg not in allowed_flags:
                    return False
            elif not self._validate_path_for_command(arg):
                return False
        return True

    def _is_safe_cat_command(self, args: List[str]) -> bool:
        return len(args) == 1 and self._validate_path_for_command(args[0])

    def _is_safe_pkill_command(self, args: List[str]) -> bool:
        # Only dev-server cleanup: `pkill -f vite` / `pkill -f "npm run dev"`.
        return len(args) == 2 and args[0] == "-f" and args[1] in ("vite", "npm run dev", "node")

    def check_command(self, command: str) -> List[str]:
        """
        Parses and validates a command string.

        Returns:
            The parsed argument vector.

        Raises:
            BlockedCommandException: If the command is refused.
        """
        trimmed = command.strip()
        if not trimmed:
            raise BlockedCommandException(command, "Empty command.")
        if any(token in trimmed for token in SHELL_METACHARACTERS):
            raise BlockedCommandException(trimmed, "Shell metacharacters (>, <, |, &, ;) are not allowed.")
        try:
            parts = shlex.split(trimmed, posix=True)
        except ValueError as e:
            raise BlockedCommandException(trimmed, f"Invalid command format: {e}") from e
        if not parts:
            raise BlockedCommandException(trimmed, "Command resulted in empty parts after parsing.")

        key = Path(parts[0]).name.lower()
        validator = self.allowed_commands.get(key)
        if validator is None:
            raise BlockedCommandException(trimmed, f"'{parts[0]}' is not in the allowed list.")
        if not validator(parts[1:]):
            raise BlockedCommandException(trimmed, f"Arguments for '{parts[0]}' are invalid or unsafe.")
        return parts

    def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Validates and runs a command in the project root.

        Raises:
            BlockedCommandException: If validation refuses the command.
            CommandExecutionError: If the binary is missing or the timeout expires.
        """
        parts = self.check_command(command)
        limit = timeout or self.timeout
        logger.info(f"Executing command: {' '.join(map(shlex.quote, parts))} in CWD: {self.project_root}")
        try:
            completed = subprocess.run(
                parts, shell=False, cwd=self.project_root, capture_output=True, text=True,
                encoding=sys.stdout.encoding or 'utf-8', errors='replace', timeout=limit,
            )
        except FileNotFoundError as e:
            logger.error(f"Command not found: '{parts[0]}'")
            raise CommandExecutionError(f"Command not found: '{parts[0]}'. Is it installed and in PATH?") from e
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command '{command}' timed out after {limit}s.")
            raise CommandExecutionError(
                f"Command timeout after {limit} seconds: {command}",
                stdout=e.stdout if isinstance(e.stdout, str) else None,
                stderr=e.stderr if isinstance(e.stderr, str) else None,
            ) from e

        stdout = (completed.stdout or "").strip()
        stderr = (completed.stderr or "").strip()
        if completed.returncode != 0:
            logger.error(f"Command '{command}' failed with exit code {completed.returncode}.")
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Stderr:\n{stderr or stdout}")
        else:
            logger.info(f"Command '{command}' finished successfully.")
        return CommandResult(
            success=completed.returncode == 0,
            exit_code=completed.returncode,
            stdout=stdout,
            stderr=stderr,
            command_str=command,
        )
