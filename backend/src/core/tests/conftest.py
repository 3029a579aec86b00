# backend/src/core/tests/conftest.py
"""Shared fakes for the pipeline tests: an in-memory sandbox and a scripted model."""
from typing import Callable, Dict, List, Optional, Union

import pytest

from src.core.config_manager import ConfigManager, FrameworkPrompts, PipelineSettings
from src.core.conversation import ExistingFilesIndex
from src.core.file_materializer import FileMaterializer
from src.core.progress import ProgressEmitter
from src.core.project_models import CommandResult, SandboxInfo
from src.core.sandbox import SandboxProvider


def ok(stdout: str = "", command: str = "") -> CommandResult:
    return CommandResult(success=True, exit_code=0, stdout=stdout, command_str=command)


def failed(stderr: str, exit_code: int = 1, command: str = "") -> CommandResult:
    return CommandResult(success=False, exit_code=exit_code, stderr=stderr, command_str=command)


class FakeSandbox(SandboxProvider):
    """
    A sandbox held entirely in memory.

    `scripted` maps a command substring to a queue of results; the first matching
    key whose queue is non-empty answers (its last result repeats once the queue
    is down to one). Everything else succeeds.
    """
    def __init__(self, files: Optional[Dict[str, str]] = None, sandbox_id: str = "sbx-test"):
        super().__init__()
        self.files: Dict[str, str] = dict(files or {})
        self.writes: List[str] = []
        self.commands: List[str] = []
        self.install_calls: List[List[str]] = []
        self.install_result: Union[CommandResult, Exception] = ok("added packages")
        self.scripted: Dict[str, List[CommandResult]] = {}
        self.reconnectable = False
        self.alive = True
        self.setup_called = False
        self._id = sandbox_id

    async def create_sandbox(self) -> SandboxInfo:
        self.sandbox_info = SandboxInfo(sandbox_id=self._id, provider="fake")
        return self.sandbox_info

    async def setup_vite_app(self) -> None:
        self.setup_called = True

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content
        self.writes.append(path)

    async def list_files(self, directory: Optional[str] = None) -> List[str]:
        return sorted(p for p in self.files if directory is None or p.startswith(directory))

    async def run_command(self, command: str) -> CommandResult:
        self.commands.append(command)
        for key, queue in self.scripted.items():
            if key in command and queue:
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return ok(command=command)

    async def install_packages(self, packages: List[str]) -> CommandResult:
        self.install_calls.append(list(packages))
        if isinstance(self.install_result, Exception):
            raise self.install_result
        return self.install_result

    async def reconnect(self, sandbox_id: str) -> bool:
        if self.reconnectable:
            self.sandbox_info = SandboxInfo(sandbox_id=sandbox_id, provider="fake")
        return self.reconnectable

    async def terminate(self) -> None:
        self.alive = False

    def is_alive(self) -> bool:
        return self.alive


Reply = Union[str, Exception]


class FakeStreamer:
    """
    Scripted stand-in for the provider registry. Replies are consumed in order;
    a `responder` callable, when given, answers instead. Exceptions are raised.
    """
    def __init__(self, replies: Optional[List[Reply]] = None,
                 responder: Optional[Callable[[List[dict]], Reply]] = None):
        self.replies: List[Reply] = list(replies or [])
        self.responder = responder
        self.calls: List[dict] = []

    def _next(self, messages) -> str:
        reply = self.responder(messages) if self.responder else (self.replies.pop(0) if self.replies else "")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete_text(self, model, messages, temperature=None, max_tokens=None) -> str:
        self.calls.append({"model": model, "messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        return self._next(messages)

    async def stream_text(self, model, messages, temperature=None, max_tokens=None):
        text = await self.complete_text(model, messages, temperature, max_tokens)
        for i in range(0, len(text), 16):
            yield text[i:i + 16]


@pytest.fixture
def react_prompts() -> FrameworkPrompts:
    return ConfigManager().load_prompts("react")


@pytest.fixture
def settings() -> PipelineSettings:
    return PipelineSettings()


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def events() -> List[dict]:
    return []


@pytest.fixture
def emitter(events) -> ProgressEmitter:
    return ProgressEmitter(events.append)


@pytest.fixture
def materializer(sandbox, emitter) -> FileMaterializer:
    return FileMaterializer(sandbox, ExistingFilesIndex(), emitter)
