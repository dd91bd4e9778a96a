"""Echo turn executor used by the CLI and as a test collaborator."""

from __future__ import annotations

import asyncio

from turnq import events
from turnq.errors import TurnCancelledError
from turnq.ports import TurnRequest, TurnResult


class EchoExecutor:
    """Stream the prompt back word by word."""

    def __init__(self, *, delay_seconds: float = 0.05, prefix: str = "") -> None:
        self._delay_seconds = delay_seconds
        self._prefix = prefix

    async def execute_turn(self, request: TurnRequest) -> TurnResult:
        turn = sum(1 for item in request.history if item.get("role") == "assistant") + 1
        text = f"{self._prefix}[{request.session_id}] turn={turn} {request.message}"
        emitted: list[str] = []
        for word in text.split(" "):
            if request.signal.aborted:
                raise TurnCancelledError(request.signal.reason or "Cancelled")
            chunk = word if not emitted else f" {word}"
            emitted.append(chunk)
            await request.on_event(events.delta(chunk))
            if self._delay_seconds:
                await asyncio.sleep(self._delay_seconds)
        return TurnResult(text="".join(emitted))
