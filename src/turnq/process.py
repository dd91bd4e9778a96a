"""In-memory registry of killable per-session processes."""

from __future__ import annotations

import inspect

from loguru import logger

from turnq.ports import KillHandle


class InMemoryProcessRegistry:
    """Track one kill handle per session.

    Executors that spawn external processes (CLI providers, subprocess
    transports) register a handle here so a cancellation can stop them.
    """

    def __init__(self) -> None:
        self._handles: dict[str, KillHandle] = {}

    def register(self, session_id: str, kill_handle: KillHandle) -> None:
        self._handles[session_id] = kill_handle

    def unregister(self, session_id: str) -> None:
        self._handles.pop(session_id, None)

    def has(self, session_id: str) -> bool:
        return session_id in self._handles

    async def kill(self, session_id: str) -> bool:
        handle = self._handles.pop(session_id, None)
        if handle is None:
            return False
        try:
            value = handle()
            if inspect.isawaitable(value):
                await value
        except Exception:
            logger.opt(exception=True).warning("process.kill_failed session_id={}", session_id)
            return False
        logger.info("process.killed session_id={}", session_id)
        return True
