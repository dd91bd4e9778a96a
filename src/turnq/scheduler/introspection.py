"""Read-only views over the registry and session queues."""

from __future__ import annotations

from dataclasses import dataclass

from turnq.scheduler.queue import SessionQueues
from turnq.scheduler.registry import Run, RunRegistry, RunStatus


@dataclass(frozen=True)
class SessionRunState:
    running_run_id: str | None = None
    queue_length: int = 0


@dataclass(frozen=True)
class SessionStatus:
    """Fields a session listing shows next to each session."""

    active: bool
    queued_count: int
    current_run_id: str | None

    def to_dict(self) -> dict[str, object]:
        return {"active": self.active, "queuedCount": self.queued_count, "currentRunId": self.current_run_id}


class Introspection:
    def __init__(
        self,
        *,
        registry: RunRegistry,
        queues: SessionQueues,
        default_limit: int = 200,
        max_limit: int = 1000,
    ) -> None:
        self._registry = registry
        self._queues = queues
        self._default_limit = default_limit
        self._max_limit = max_limit

    def get_run_by_id(self, run_id: str) -> Run | None:
        """Copy of the run, or None; changes to it never reach the registry."""
        run = self._registry.get(run_id)
        return run.snapshot() if run is not None else None

    def list_runs(
        self,
        *,
        session_id: str | None = None,
        status: RunStatus | None = None,
        limit: int | None = None,
    ) -> list[Run]:
        runs = self._registry.list(session_id=session_id, status=status, limit=self._clamp(limit))
        return [run.snapshot() for run in runs]

    def get_session_run_state(self, session_id: str) -> SessionRunState:
        state = self._queues.get(session_id)
        if state is None:
            return SessionRunState()
        return SessionRunState(running_run_id=state.running_run_id, queue_length=len(state.queue))

    def session_status(self, session_id: str, *, process_active: bool = False) -> SessionStatus:
        run_state = self.get_session_run_state(session_id)
        return SessionStatus(
            active=process_active or run_state.running_run_id is not None,
            queued_count=run_state.queue_length,
            current_run_id=run_state.running_run_id,
        )

    def _clamp(self, limit: int | None) -> int:
        if limit is None:
            limit = self._default_limit
        return max(1, min(self._max_limit, limit))
