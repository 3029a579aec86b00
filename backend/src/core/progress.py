# src/core/progress.py
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

ProgressEvent = Dict[str, Any]
# Callers may pass a plain function or a coroutine function.
ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

EVENT_TYPES = frozenset({
    'start', 'step', 'file-progress', 'file-complete', 'file-error',
    'command-progress', 'command-output', 'command-complete', 'command-error',
    'package-progress', 'warning', 'error', 'complete',
})


class ProgressEmitter:
    """
    The single status channel of a generation run. Every event is a dict with a
    `type` from EVENT_TYPES. Callback failures are logged and swallowed: a broken
    listener never interrupts generation.
    """
    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.history: List[ProgressEvent] = []

    async def emit(self, event_type: str, **payload: Any) -> None:
        if event_type not in EVENT_TYPES:
            logger.warning(f"Unknown progress event type '{event_type}', emitting anyway.")
        event: ProgressEvent = {"type": event_type, **payload}
        self.history.append(event)
        if self.callback is None:
            return
        try:
            result = self.callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Progress callback raised on '{event_type}' event: {e}")

    async def start(self, message: str, total_steps: int = 6) -> None:
        await self.emit('start', message=message, totalSteps=total_steps)

    async def step(self, step: int, message: str, packages: Optional[List[str]] = None) -> None:
        await self.emit('step', step=step, message=message, packages=packages or [])

    async def warning(self, message: str) -> None:
        await self.emit('warning', message=message)

    async def error(self, message: str) -> None:
        await self.emit('error', error=message)

    async def file_progress(self, current: int, total: int, file_name: str, action: str) -> None:
        await self.emit('file-progress', current=current, total=total, fileName=file_name, action=action)

    async def file_complete(self, file_name: str, action: str) -> None:
        await self.emit('file-complete', fileName=file_name, action=action)

    async def file_error(self, file_name: str, error: str) -> None:
        await self.emit('file-error', fileName=file_name, error=error)
