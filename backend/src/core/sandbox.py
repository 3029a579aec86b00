# src/core/sandbox.py
import abc
import logging
from typing import List, Optional

from .project_models import CommandResult, SandboxInfo

logger = logging.getLogger(__name__)


class SandboxProvider(abc.ABC):
    """
    The execution environment one project runs in: a file system plus a command
    runner. The pipeline only consumes this interface; concrete providers decide
    how (and where) the sandbox actually lives.

    All operations are coroutines. Paths are relative to the app root or absolute
    under it.
    """
    def __init__(self):
        self.sandbox_info: Optional[SandboxInfo] = None

    @property
    def sandbox_id(self) -> Optional[str]:
        return self.sandbox_info.sandbox_id if self.sandbox_info else None

    @abc.abstractmethod
    async def create_sandbox(self) -> SandboxInfo:
        ...

    @abc.abstractmethod
    async def setup_vite_app(self) -> None:
        """Writes the base Vite + React project and installs its dependencies."""
        ...

    @abc.abstractmethod
    async def read_file(self, path: str) -> str:
        ...

    @abc.abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        ...

    @abc.abstractmethod
    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        ...

    @abc.abstractmethod
    async def run_command(self, command: str) -> CommandResult:
        ...

    @abc.abstractmethod
    async def install_packages(self, packages: List[str]) -> CommandResult:
        ...

    async def reconnect(self, sandbox_id: str) -> bool:
        """Re-attaches to an existing sandbox. Providers that cannot reconnect return False."""
        logger.debug(f"{type(self).__name__} does not support reconnecting to {sandbox_id}.")
        return False

    @abc.abstractmethod
    async def terminate(self) -> None:
        ...

    @abc.abstractmethod
    def is_alive(self) -> bool:
        ...
