"""Cancel a session's running run and drain its queue."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from turnq.ports import ProcessRegistry
from turnq.scheduler.handles import RunHandle, RunHandles
from turnq.scheduler.queue import SessionQueues, SessionQueueState
from turnq.scheduler.registry import Run, RunRegistry

DEFAULT_CANCEL_REASON = "Cancelled"


@dataclass(frozen=True)
class CancelResult:
    cancelled_running: int = 0
    cancelled_queued: int = 0

    @property
    def total(self) -> int:
        return self.cancelled_running + self.cancelled_queued

    def to_dict(self) -> dict[str, int]:
        return {"cancelledRunning": self.cancelled_running, "cancelledQueued": self.cancelled_queued}


class CancellationManager:
    def __init__(
        self,
        *,
        registry: RunRegistry,
        queues: SessionQueues,
        handles: RunHandles,
        processes: ProcessRegistry,
    ) -> None:
        self._registry = registry
        self._queues = queues
        self._handles = handles
        self._processes = processes

    def request_running(self, state: SessionQueueState, reason: str) -> str | None:
        """Abort the session's running run; ``state.lock`` must be held.

        Returns the aborted run id, or None when nothing is running or a
        cancellation was already requested for the current run.
        """
        active = state.active
        if active is None or active.cancel_counted:
            return None
        active.cancel_counted = True
        active.signal.abort(reason)
        logger.info("scheduler.cancel.running run_id={} reason={}", active.run_id, reason)
        return active.run_id

    async def kill_process(self, state: SessionQueueState, run_id: str) -> bool:
        """Kill the session process if ``run_id`` is still the one executing.

        A handle registered after ``run_id`` finished belongs to a later run
        and is left alone.
        """
        if state.running_run_id != run_id:
            logger.debug("scheduler.cancel.kill_skipped run_id={}", run_id)
            return False
        return await self._processes.kill(state.session_id)

    async def cancel_session_runs(self, session_id: str, reason: str = DEFAULT_CANCEL_REASON) -> CancelResult:
        state = self._queues.get(session_id)
        if state is None:
            return CancelResult()

        settled: list[tuple[RunHandle, Run]] = []
        async with state.lock:
            aborted_run_id = self.request_running(state, reason)
            for run_id in state.drain():
                run = self._registry.transition(run_id, "cancelled", error=reason, error_kind="cancelled")
                settled.append((self._handles.pop(run_id), run.snapshot()))

        if aborted_run_id is not None:
            await self.kill_process(state, aborted_run_id)
        for handle, run in settled:
            await handle.settle(run)

        result = CancelResult(cancelled_running=int(aborted_run_id is not None), cancelled_queued=len(settled))
        if result.total:
            logger.info(
                "scheduler.cancel session_id={} running={} queued={} reason={}",
                session_id,
                result.cancelled_running,
                result.cancelled_queued,
                reason,
            )
        return result
