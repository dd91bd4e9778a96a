"""Executor bridge: drive one queued run to a terminal state."""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Any

from loguru import logger

from turnq.errors import TurnCancelledError, classify_error
from turnq.events import StreamEvent, ToolEventCollector
from turnq.logging_utils import session_context
from turnq.ports import CancelSignal, HistoryProvider, ProcessRegistry, TurnExecutor, TurnRequest, TurnResult
from turnq.scheduler.handles import RunHandles, run_meta_event
from turnq.scheduler.queue import ActiveExecution, SessionQueueState
from turnq.scheduler.registry import Run, RunRegistry, RunStatus

TASK_CANCELLED_REASON = "Execution task cancelled"


@dataclasses.dataclass
class _Outcome:
    status: RunStatus
    result: TurnResult | None = None
    error: str | None = None
    error_kind: str | None = None

    def fields(self) -> dict[str, Any]:
        return {"result": self.result, "error": self.error, "error_kind": self.error_kind}


class ExecutorBridge:
    """Start queued runs and feed their results back into the registry."""

    def __init__(
        self,
        *,
        registry: RunRegistry,
        handles: RunHandles,
        executor: TurnExecutor,
        processes: ProcessRegistry,
        history: HistoryProvider,
    ) -> None:
        self._registry = registry
        self._handles = handles
        self._executor = executor
        self._processes = processes
        self._history = history
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def tasks(self) -> set[asyncio.Task[None]]:
        return set(self._tasks)

    def start_next(self, state: SessionQueueState) -> Run | None:
        """Pop the head of an idle session's queue and start it.

        Must be called with ``state.lock`` held.
        """
        if not state.idle:
            return None
        run_id = state.pop_head()
        if run_id is None:
            return None

        run = self._registry.transition(run_id, "running")
        active = ActiveExecution(run_id=run_id, signal=CancelSignal())
        state.active = active
        task = asyncio.create_task(self._drive(state, run, active.signal), name=f"turnq-run-{run_id}")
        active.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def _drive(self, state: SessionQueueState, run: Run, signal: CancelSignal) -> None:
        with session_context(run.session_id):
            logger.info("scheduler.run.start run_id={} source={} mode={}", run.id, run.source, run.mode)
            handle = self._handles.require(run.id)
            await handle.emit(run_meta_event(run))
            try:
                outcome = await self._execute(run, signal)
            except asyncio.CancelledError:
                signal.abort(TASK_CANCELLED_REASON)
                await self._finish(state, run, _Outcome("cancelled", error=TASK_CANCELLED_REASON, error_kind="cancelled"))
                raise
            await self._finish(state, run, outcome)

    async def _execute(self, run: Run, signal: CancelSignal) -> _Outcome:
        handle = self._handles.require(run.id)
        collector = ToolEventCollector()

        async def on_event(event: StreamEvent) -> None:
            collector.observe(event)
            await handle.emit(event)

        try:
            request = TurnRequest(
                session_id=run.session_id,
                run_id=run.id,
                message=run.message,
                internal=run.internal,
                source=run.source,
                signal=signal,
                on_event=on_event,
                history=self._history.load_history(run.session_id),
                image_path=run.image_path,
                image_url=run.image_url,
            )
            result = await self._executor.execute_turn(request)
        except Exception as exc:
            if signal.aborted or isinstance(exc, TurnCancelledError):
                return _Outcome("cancelled", error=signal.reason or str(exc) or "Cancelled", error_kind="cancelled")
            logger.opt(exception=True).warning("scheduler.run.error run_id={}", run.id)
            return _Outcome("failed", error=str(exc) or type(exc).__name__, error_kind=classify_error(exc))

        if not result.tool_events and collector.events:
            result = dataclasses.replace(result, tool_events=collector.events)
        if signal.aborted:
            return _Outcome("cancelled", result=result, error=signal.reason, error_kind="cancelled")
        if result.error:
            return _Outcome("failed", result=result, error=result.error, error_kind="execution")
        return _Outcome("completed", result=result)

    async def _finish(self, state: SessionQueueState, run: Run, outcome: _Outcome) -> None:
        async with state.lock:
            finished = self._registry.transition(run.id, outcome.status, **outcome.fields())
            state.active = None
            self._processes.unregister(run.session_id)
            snapshot = finished.snapshot()
            handle = self._handles.pop(run.id)

        logger.info(
            "scheduler.run.finish run_id={} status={} error={}",
            run.id,
            snapshot.status,
            snapshot.error,
        )
        await handle.settle(snapshot)

        async with state.lock:
            self.start_next(state)
