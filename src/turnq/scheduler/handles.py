"""Caller-facing channels attached to a run: sinks and the completion future."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from turnq import events
from turnq.events import EventSink, StreamEvent
from turnq.scheduler.registry import Run


def run_meta_event(run: Run, **extra: Any) -> StreamEvent:
    payload: dict[str, Any] = {
        "id": run.id,
        "sessionId": run.session_id,
        "status": run.status,
        "source": run.source,
        "internal": run.internal,
        **extra,
    }
    return events.metadata({"run": payload})


@dataclass
class RunHandle:
    """Event sinks and completion future for one run."""

    run_id: str
    completion: asyncio.Future[Run]
    sinks: list[EventSink] = field(default_factory=list)

    def subscribe(self, sink: EventSink | None) -> None:
        if sink is not None and sink not in self.sinks:
            self.sinks.append(sink)

    async def emit(self, event: StreamEvent) -> None:
        await events.emit_to(self.sinks, event)

    async def settle(self, run: Run) -> None:
        """Close the stream for a terminal ``run`` and resolve the future."""
        extra: dict[str, Any] = {"error": run.error, "errorKind": run.error_kind}
        if run.result is not None:
            extra["hasText"] = bool(run.result.text)
        await self.emit(run_meta_event(run, **extra))
        if run.status == "failed":
            await self.emit(events.error(run.error or "Run failed"))
        await self.emit(events.done())
        if not self.completion.done():
            self.completion.set_result(run)


class RunHandles:
    """Live handles for runs that have not settled yet."""

    def __init__(self) -> None:
        self._handles: dict[str, RunHandle] = {}

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._handles

    def open(self, run_id: str, sink: EventSink | None = None) -> RunHandle:
        future: asyncio.Future[Run] = asyncio.get_running_loop().create_future()
        handle = RunHandle(run_id=run_id, completion=future)
        handle.subscribe(sink)
        self._handles[run_id] = handle
        return handle

    def require(self, run_id: str) -> RunHandle:
        return self._handles[run_id]

    def pop(self, run_id: str) -> RunHandle:
        return self._handles.pop(run_id)
