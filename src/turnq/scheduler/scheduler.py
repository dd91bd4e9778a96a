"""Session run scheduler facade."""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from turnq.config import Settings
from turnq.ports import EmptyHistory, HistoryProvider, ProcessRegistry, TurnExecutor
from turnq.process import InMemoryProcessRegistry
from turnq.scheduler.admission import AdmissionController, EnqueueRequest, EnqueueResult, parse_request
from turnq.scheduler.bridge import ExecutorBridge
from turnq.scheduler.cancellation import DEFAULT_CANCEL_REASON, CancellationManager, CancelResult
from turnq.scheduler.handles import RunHandles
from turnq.scheduler.introspection import Introspection, SessionRunState, SessionStatus
from turnq.scheduler.queue import SessionQueues
from turnq.scheduler.registry import Run, RunRegistry, RunStatus

SHUTDOWN_REASON = "Scheduler shutting down"


class SessionRunScheduler:
    """Own per-session queues and run turns through an injected executor.

    At most one run executes per session; different sessions run in
    parallel. Collaborators are passed in so tests and deployments can swap
    the executor, process supervision and history source.
    """

    def __init__(
        self,
        executor: TurnExecutor,
        *,
        processes: ProcessRegistry | None = None,
        history: HistoryProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.processes = processes or InMemoryProcessRegistry()
        self.registry = RunRegistry(max_recent_runs=self.settings.max_recent_runs)
        self.queues = SessionQueues()
        self._handles = RunHandles()
        self.bridge = ExecutorBridge(
            registry=self.registry,
            handles=self._handles,
            executor=executor,
            processes=self.processes,
            history=history or EmptyHistory(),
        )
        self.cancellation = CancellationManager(
            registry=self.registry,
            queues=self.queues,
            handles=self._handles,
            processes=self.processes,
        )
        self.admission = AdmissionController(
            registry=self.registry,
            queues=self.queues,
            handles=self._handles,
            bridge=self.bridge,
            cancellation=self.cancellation,
            coalesce_separator=self.settings.coalesce_separator,
        )
        self.introspection = Introspection(
            registry=self.registry,
            queues=self.queues,
            default_limit=self.settings.list_default_limit,
            max_limit=self.settings.list_max_limit,
        )

    async def __aenter__(self) -> SessionRunScheduler:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    async def enqueue_session_run(self, request: EnqueueRequest) -> EnqueueResult:
        return await self.admission.admit(request)

    async def enqueue(self, **fields: Any) -> EnqueueResult:
        """Keyword form of ``enqueue_session_run``.

        Raises:
            RunValidationError: when the request is malformed (for example an
                empty message); no run is created.
        """
        return await self.enqueue_session_run(parse_request(**fields))

    async def cancel_session_runs(self, session_id: str, reason: str = DEFAULT_CANCEL_REASON) -> CancelResult:
        return await self.cancellation.cancel_session_runs(session_id, reason)

    def get_run_by_id(self, run_id: str) -> Run | None:
        return self.introspection.get_run_by_id(run_id)

    def list_runs(
        self,
        *,
        session_id: str | None = None,
        status: RunStatus | None = None,
        limit: int | None = None,
    ) -> list[Run]:
        return self.introspection.list_runs(session_id=session_id, status=status, limit=limit)

    def get_session_run_state(self, session_id: str) -> SessionRunState:
        return self.introspection.get_session_run_state(session_id)

    def session_status(self, session_id: str, *, process_active: bool = False) -> SessionStatus:
        return self.introspection.session_status(session_id, process_active=process_active)

    async def wait_idle(self) -> None:
        """Wait until no run is executing in any session."""
        while tasks := self.bridge.tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self, reason: str = SHUTDOWN_REASON) -> None:
        """Cancel every session's runs and wait for executions to settle."""
        for state in self.queues:
            await self.cancel_session_runs(state.session_id, reason)
        await self.wait_idle()
        logger.info("scheduler.shutdown sessions={}", len(self.queues))
