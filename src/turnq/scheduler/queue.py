"""Per-session run queues."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from dataclasses import dataclass, field

from turnq.ports import CancelSignal


@dataclass
class ActiveExecution:
    """The run a session is currently executing."""

    run_id: str
    signal: CancelSignal
    task: asyncio.Task[None] | None = None
    cancel_counted: bool = False


@dataclass
class SessionQueueState:
    """Queued run ids plus the running pointer for one session."""

    session_id: str
    queue: list[str] = field(default_factory=list)
    active: ActiveExecution | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def running_run_id(self) -> str | None:
        return self.active.run_id if self.active is not None else None

    @property
    def idle(self) -> bool:
        return self.active is None

    def position_of(self, run_id: str) -> int:
        """Runs ahead of ``run_id``, counting the running one."""
        if self.running_run_id == run_id:
            return 0
        index = self.queue.index(run_id)
        return index + (0 if self.idle else 1)

    def append(self, run_id: str) -> None:
        self.queue.append(run_id)

    def push_front(self, run_id: str) -> None:
        self.queue.insert(0, run_id)

    def pop_head(self) -> str | None:
        if not self.queue:
            return None
        return self.queue.pop(0)

    def remove(self, run_id: str) -> bool:
        try:
            self.queue.remove(run_id)
        except ValueError:
            return False
        return True

    def drain(self) -> list[str]:
        drained, self.queue = self.queue, []
        return drained


class SessionQueues:
    """Lazily created ``SessionQueueState`` per session id."""

    def __init__(self) -> None:
        self._states: dict[str, SessionQueueState] = {}

    def __iter__(self) -> Iterator[SessionQueueState]:
        return iter(list(self._states.values()))

    def __len__(self) -> int:
        return len(self._states)

    def get(self, session_id: str) -> SessionQueueState | None:
        return self._states.get(session_id)

    def get_or_create(self, session_id: str) -> SessionQueueState:
        state = self._states.get(session_id)
        if state is None:
            state = SessionQueueState(session_id=session_id)
            self._states[session_id] = state
        return state
