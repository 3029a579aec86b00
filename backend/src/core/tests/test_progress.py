# backend/src/core/tests/test_progress.py
import logging

import pytest

from src.core.progress import ProgressEmitter


@pytest.mark.asyncio
class TestProgressEmitter:
    async def test_helpers_produce_typed_events(self):
        events = []
        emitter = ProgressEmitter(events.append)

        await emitter.start("Starting code generation...", total_steps=6)
        await emitter.step(2, "Installing packages", packages=["zustand"])
        await emitter.file_progress(1, 3, "src/App.tsx", "creating")
        await emitter.error("boom")

        assert events == [
            {"type": "start", "message": "Starting code generation...", "totalSteps": 6},
            {"type": "step", "step": 2, "message": "Installing packages", "packages": ["zustand"]},
            {"type": "file-progress", "current": 1, "total": 3, "fileName": "src/App.tsx", "action": "creating"},
            {"type": "error", "error": "boom"},
        ]
        assert emitter.history == events

    async def test_async_callbacks_are_awaited(self):
        received = []

        async def callback(event):
            received.append(event["type"])

        emitter = ProgressEmitter(callback)
        await emitter.warning("careful")
        assert received == ["warning"]

    async def test_callback_failure_does_not_propagate(self, caplog):
        def broken(event):
            raise RuntimeError("listener gone")

        emitter = ProgressEmitter(broken)
        with caplog.at_level(logging.WARNING):
            await emitter.file_complete("src/App.tsx", "created")

        assert emitter.history[-1]["fileName"] == "src/App.tsx"
        assert "listener gone" in caplog.text

    async def test_without_callback_events_are_still_recorded(self):
        emitter = ProgressEmitter()
        await emitter.step(1, "Planning")
        assert emitter.history == [{"type": "step", "step": 1, "message": "Planning", "packages": []}]
