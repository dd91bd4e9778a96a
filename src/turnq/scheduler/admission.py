"""Admission policy: dedupe, coalesce, steer or append."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from turnq.errors import RunValidationError
from turnq.events import EventSink, StreamEvent, emit_to
from turnq.scheduler.bridge import ExecutorBridge
from turnq.scheduler.cancellation import CancellationManager
from turnq.scheduler.handles import RunHandle, RunHandles, run_meta_event
from turnq.scheduler.queue import SessionQueues, SessionQueueState
from turnq.scheduler.registry import QueueMode, Run, RunRegistry

STEER_CANCEL_REASON = "Cancelled by steer mode"
DEFAULT_SOURCE = "chat"
EMPTY_MESSAGE_ERROR = "message must not be empty"

_MODES: frozenset[str] = frozenset({"steer", "collect", "followup"})

Decision = Literal["deduped", "coalesced", "steered", "appended"]


class EnqueueRequest(BaseModel):
    """One turn request as it arrives at the scheduler boundary."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_id: str = Field(min_length=1)
    message: str
    image_path: str | None = None
    image_url: str | None = None
    internal: bool = False
    source: str = DEFAULT_SOURCE
    mode: QueueMode | None = None
    dedupe_key: str | None = None
    on_event: EventSink | None = None

    @field_validator("session_id")
    @classmethod
    def _strip_session_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("session_id must not be empty")
        return value

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError(EMPTY_MESSAGE_ERROR)
        return value

    @field_validator("source", mode="before")
    @classmethod
    def _default_source(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_SOURCE
        return value.strip() if isinstance(value, str) else value

    @field_validator("image_path", "image_url", "dedupe_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def _unknown_mode_to_default(cls, value: Any) -> Any:
        return value if value in _MODES else None

    @model_validator(mode="after")
    def _resolve_mode(self) -> EnqueueRequest:
        if self.mode is None:
            self.mode = "collect" if self.internal else "followup"
        return self


def parse_request(**fields: Any) -> EnqueueRequest:
    """Build an ``EnqueueRequest``, reporting problems as ``RunValidationError``."""
    try:
        return EnqueueRequest(**fields)
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}" for error in exc.errors()
        )
        raise RunValidationError(messages) from exc


@dataclass(frozen=True)
class EnqueueResult:
    """Admission outcome returned to the caller."""

    run_id: str
    position: int
    deduped: bool
    coalesced: bool
    completion: asyncio.Future[Run]

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "position": self.position,
            "deduped": self.deduped,
            "coalesced": self.coalesced,
        }


class AdmissionController:
    def __init__(
        self,
        *,
        registry: RunRegistry,
        queues: SessionQueues,
        handles: RunHandles,
        bridge: ExecutorBridge,
        cancellation: CancellationManager,
        coalesce_separator: str = "\n",
    ) -> None:
        self._registry = registry
        self._queues = queues
        self._handles = handles
        self._bridge = bridge
        self._cancellation = cancellation
        self._coalesce_separator = coalesce_separator

    async def admit(self, request: EnqueueRequest) -> EnqueueResult:
        """Apply the admission policy for ``request``.

        Only the decision runs under the session lock; sinks are called and
        the steered process is killed after it is released.
        """
        state = self._queues.get_or_create(request.session_id)
        aborted_run_id: str | None = None
        async with state.lock:
            existing = self._find_dedupe_match(state, request.dedupe_key)
            if existing is not None:
                joined = self._join(state, existing, request, "deduped")
            elif request.mode == "collect" and request.internal and (
                target := self._find_coalesce_target(state, request.source)
            ):
                self._merge(target, request)
                joined = self._join(state, target, request, "coalesced")
            else:
                joined = None
                run = self._registry.create_run(
                    session_id=request.session_id,
                    message=request.message,
                    mode=request.mode or "followup",
                    source=request.source,
                    internal=request.internal,
                    image_path=request.image_path,
                    image_url=request.image_url,
                    dedupe_key=request.dedupe_key,
                )
                handle = self._handles.open(run.id, request.on_event)
                decision: Decision = "appended"
                if request.mode == "steer" and not state.idle:
                    aborted_run_id = self._cancellation.request_running(state, STEER_CANCEL_REASON)
                    state.push_front(run.id)
                    decision = "steered"
                else:
                    state.append(run.id)
                run.position = state.position_of(run.id)
                queued_event = run_meta_event(run, position=run.position)
                self._bridge.start_next(state)

        if joined is not None:
            result, event = joined
            if request.on_event is not None:
                await emit_to([request.on_event], event)
            return result

        await handle.emit(queued_event)
        if aborted_run_id is not None:
            await self._cancellation.kill_process(state, aborted_run_id)
        logger.info(
            "scheduler.admit run_id={} session_id={} decision={} position={}",
            run.id,
            run.session_id,
            decision,
            run.position,
        )
        return EnqueueResult(
            run_id=run.id,
            position=run.position,
            deduped=False,
            coalesced=False,
            completion=handle.completion,
        )

    def _find_dedupe_match(self, state: SessionQueueState, dedupe_key: str | None) -> Run | None:
        if not dedupe_key:
            return None
        for run_id in state.queue:
            run = self._registry.require(run_id)
            if run.holds_dedupe_key(dedupe_key):
                return run
        return None

    def _find_coalesce_target(self, state: SessionQueueState, source: str) -> Run | None:
        for run_id in state.queue:
            run = self._registry.require(run_id)
            if run.internal and run.source == source:
                return run
        return None

    def _merge(self, target: Run, request: EnqueueRequest) -> None:
        target.message = f"{target.message}{self._coalesce_separator}{request.message}"
        target.coalesced_count += 1
        if request.dedupe_key and request.dedupe_key != target.dedupe_key:
            target.merged_dedupe_keys.add(request.dedupe_key)
        if target.image_path is None and target.image_url is None:
            target.image_path = request.image_path
            target.image_url = request.image_url

    def _join(
        self,
        state: SessionQueueState,
        run: Run,
        request: EnqueueRequest,
        decision: Decision,
    ) -> tuple[EnqueueResult, StreamEvent]:
        """Attach the caller to an existing queued run; ``state.lock`` must be held."""
        handle: RunHandle = self._handles.require(run.id)
        handle.subscribe(request.on_event)
        position = state.position_of(run.id)
        logger.info(
            "scheduler.admit run_id={} session_id={} decision={} position={}",
            run.id,
            run.session_id,
            decision,
            position,
        )
        result = EnqueueResult(
            run_id=run.id,
            position=position,
            deduped=decision == "deduped",
            coalesced=decision == "coalesced",
            completion=handle.completion,
        )
        return result, run_meta_event(run, position=position, **{decision: True})
