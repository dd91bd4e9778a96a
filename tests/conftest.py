from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable

import pytest
import pytest_asyncio

from turnq import events
from turnq.config import Settings
from turnq.errors import TurnCancelledError
from turnq.events import StreamEvent
from turnq.ports import TurnRequest, TurnResult
from turnq.process import InMemoryProcessRegistry
from turnq.scheduler import SessionRunScheduler

WaitUntil = Callable[[Callable[[], bool]], Awaitable[None]]


class GatedExecutor:
    """Executor double whose turns finish only when the test releases them.

    Messages starting with ``fail`` raise after release; ``auto`` releases
    every turn immediately. With ``processes`` set, each turn registers a
    kill handle that records its message in ``killed``.
    """

    def __init__(self, *, auto: bool = False) -> None:
        self.auto = auto
        self.calls: list[str] = []
        self.requests: list[TurnRequest] = []
        self.active: dict[str, int] = defaultdict(int)
        self.max_active: dict[str, int] = defaultdict(int)
        self._gates: dict[str, asyncio.Event] = {}
        self.raise_for: dict[str, Exception] = {}
        self.result_for: dict[str, TurnResult] = {}
        self.stream_for: dict[str, list[StreamEvent]] = {}
        self.processes: InMemoryProcessRegistry | None = None
        self.killed: list[str] = []

    def _gate(self, message: str) -> asyncio.Event:
        return self._gates.setdefault(message, asyncio.Event())

    def release(self, message: str) -> None:
        self._gate(message).set()

    async def execute_turn(self, request: TurnRequest) -> TurnResult:
        session_id = request.session_id
        self.calls.append(request.message)
        self.requests.append(request)
        self.active[session_id] += 1
        self.max_active[session_id] = max(self.max_active[session_id], self.active[session_id])
        try:
            if self.processes is not None:
                self.processes.register(session_id, lambda message=request.message: self.killed.append(message))
            await request.on_event(events.delta(f"echo:{request.message}"))
            for event in self.stream_for.get(request.message, []):
                await request.on_event(event)
            if not self.auto:
                gate = asyncio.ensure_future(self._gate(request.message).wait())
                aborted = asyncio.ensure_future(request.signal.wait())
                _, pending = await asyncio.wait({gate, aborted}, return_when=asyncio.FIRST_COMPLETED)
                for task in pending:
                    task.cancel()
            else:
                await asyncio.sleep(0)
            if request.signal.aborted:
                raise TurnCancelledError(request.signal.reason or "Cancelled")
            if request.message in self.raise_for:
                raise self.raise_for[request.message]
            if request.message.startswith("fail"):
                raise RuntimeError("provider exploded")
            return self.result_for.get(request.message, TurnResult(text=f"echo:{request.message}"))
        finally:
            self.active[session_id] -= 1


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    def __call__(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [event.t for event in self.events]

    def statuses(self) -> list[str]:
        out: list[str] = []
        for event in self.events:
            meta = event.metadata()
            if meta and "run" in meta:
                out.append(meta["run"]["status"])
        return out


@pytest.fixture
def executor() -> GatedExecutor:
    return GatedExecutor()


@pytest.fixture
def processes() -> InMemoryProcessRegistry:
    return InMemoryProcessRegistry()


@pytest_asyncio.fixture
async def scheduler(executor: GatedExecutor, processes: InMemoryProcessRegistry) -> AsyncIterator[SessionRunScheduler]:
    scheduler = SessionRunScheduler(executor, processes=processes, settings=Settings())
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture
def sink_factory() -> Callable[[], RecordingSink]:
    return RecordingSink


@pytest.fixture
def wait_until() -> WaitUntil:
    async def _wait(predicate: Callable[[], bool]) -> None:
        for _ in range(500):
            if predicate():
                return
            await asyncio.sleep(0)
        raise AssertionError("condition not reached")

    return _wait
