"""Stream event models delivered to run sinks."""

from __future__ import annotations

import inspect
import json
import re
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from loguru import logger

EventKind = Literal["d", "r", "md", "tool_call", "tool_result", "err", "done"]

EVENT_KINDS: frozenset[str] = frozenset({"d", "r", "md", "tool_call", "tool_result", "err", "done"})

_TOOL_ERROR_PREFIX = re.compile(r"^error:", re.IGNORECASE)
_TOOL_ERROR_MARKERS = ("ECONNREFUSED", "ETIMEDOUT", "Error:")


def exclude_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


@dataclass(frozen=True)
class StreamEvent:
    """One discrete emission on a run's event stream."""

    t: EventKind
    text: str | None = None
    tool_name: str | None = None
    tool_input: str | None = None
    tool_output: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return exclude_none(
            {
                "t": self.t,
                "text": self.text,
                "toolName": self.tool_name,
                "toolInput": self.tool_input,
                "toolOutput": self.tool_output,
            }
        )

    def to_sse(self) -> str:
        """Render the event as one server-sent-events frame."""
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"

    def metadata(self) -> dict[str, Any] | None:
        """Decode the JSON payload of an ``md`` event."""
        if self.t != "md" or not self.text:
            return None
        try:
            value = json.loads(self.text)
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None


def delta(text: str) -> StreamEvent:
    return StreamEvent(t="d", text=text)


def replace(text: str) -> StreamEvent:
    return StreamEvent(t="r", text=text)


def metadata(payload: dict[str, Any]) -> StreamEvent:
    return StreamEvent(t="md", text=json.dumps(payload, ensure_ascii=False, default=str))


def tool_call(name: str, tool_input: str = "") -> StreamEvent:
    return StreamEvent(t="tool_call", tool_name=name, tool_input=tool_input)


def tool_result(name: str, output: str = "") -> StreamEvent:
    return StreamEvent(t="tool_result", tool_name=name, tool_output=output)


def error(text: str) -> StreamEvent:
    return StreamEvent(t="err", text=text)


def done() -> StreamEvent:
    return StreamEvent(t="done")


@dataclass
class ToolEvent:
    """A tool invocation observed on the stream."""

    name: str
    input: str = ""
    output: str | None = None
    error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return exclude_none({"name": self.name, "input": self.input, "output": self.output, "error": self.error or None})


def looks_like_tool_error(output: str) -> bool:
    stripped = output.strip()
    if _TOOL_ERROR_PREFIX.match(stripped):
        return True
    return any(marker in output for marker in _TOOL_ERROR_MARKERS)


@dataclass
class ToolEventCollector:
    """Pair ``tool_call``/``tool_result`` events into ``ToolEvent`` records."""

    events: list[ToolEvent] = field(default_factory=list)

    def observe(self, event: StreamEvent) -> None:
        if event.t == "tool_call":
            self.events.append(ToolEvent(name=event.tool_name or "unknown", input=event.tool_input or ""))
            return
        if event.t != "tool_result":
            return
        name = event.tool_name or "unknown"
        for pending in reversed(self.events):
            if pending.name == name and pending.output is None:
                output = event.tool_output or ""
                pending.output = output
                pending.error = looks_like_tool_error(output)
                return


EventSink = Callable[[StreamEvent], Awaitable[None] | None]


async def emit_to(sinks: Iterable[EventSink], event: StreamEvent) -> None:
    """Deliver ``event`` to every sink, isolating sink failures."""

    for sink in list(sinks):
        try:
            value = sink(event)
            if inspect.isawaitable(value):
                await value
        except Exception:
            logger.opt(exception=True).warning("events.sink_failed kind={}", event.t)
