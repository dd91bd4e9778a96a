"""Collaborator ports for the session run scheduler.

These interfaces keep the scheduler independent of provider adapters,
process supervision and message storage. Concrete implementations are
passed to ``SessionRunScheduler`` at construction.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from turnq.events import StreamEvent, ToolEvent


class CancelSignal:
    """Cooperative abort token handed to the executor for one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "Cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> str | None:
        await self._event.wait()
        return self._reason


@dataclass(frozen=True)
class TurnRequest:
    """Everything the executor needs to produce one assistant turn."""

    session_id: str
    run_id: str
    message: str
    internal: bool
    source: str
    signal: CancelSignal
    on_event: Callable[[StreamEvent], Awaitable[None]]
    history: list[dict[str, Any]] = field(default_factory=list)
    image_path: str | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class TurnResult:
    """Result of one executed turn."""

    text: str = ""
    tool_events: list[ToolEvent] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "toolEvents": [event.to_dict() for event in self.tool_events],
            "error": self.error,
        }


class TurnExecutor(Protocol):
    async def execute_turn(self, request: TurnRequest) -> TurnResult: ...


KillHandle = Callable[[], Awaitable[None] | None]


class ProcessRegistry(Protocol):
    def register(self, session_id: str, kill_handle: KillHandle) -> None: ...

    async def kill(self, session_id: str) -> bool: ...

    def unregister(self, session_id: str) -> None: ...


class HistoryProvider(Protocol):
    def load_history(self, session_id: str) -> list[dict[str, Any]]: ...


class EmptyHistory:
    """History provider for deployments that keep history inside the executor."""

    def load_history(self, session_id: str) -> list[dict[str, Any]]:
        _ = session_id
        return []
