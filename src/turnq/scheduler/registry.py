"""In-memory run registry and the run lifecycle state machine."""

from __future__ import annotations

import copy
import re
import secrets
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from loguru import logger

from turnq.errors import ErrorKind, InvalidTransitionError, RunNotFoundError
from turnq.ports import TurnResult

RunStatus = Literal["queued", "running", "completed", "failed", "cancelled"]
QueueMode = Literal["steer", "collect", "followup"]

MESSAGE_PREVIEW_CHARS = 140
RESULT_PREVIEW_CHARS = 280

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "cancelled"}),
    "running": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}
_TERMINAL_FIELDS = frozenset({"result", "error", "error_kind", "finished_at"})
_WHITESPACE = re.compile(r"\s+")


def _now() -> datetime:
    return datetime.now(UTC)


def _new_run_id() -> str:
    return secrets.token_hex(8)


def preview(text: str | None, limit: int) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()[:limit]


@dataclass
class Run:
    """One admitted request to produce one assistant turn."""

    id: str
    session_id: str
    message: str
    mode: QueueMode
    source: str
    internal: bool
    status: RunStatus = "queued"
    image_path: str | None = None
    image_url: str | None = None
    dedupe_key: str | None = None
    position: int = 0
    coalesced_count: int = 0
    merged_dedupe_keys: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: TurnResult | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def holds_dedupe_key(self, key: str) -> bool:
        return key == self.dedupe_key or key in self.merged_dedupe_keys

    @property
    def message_preview(self) -> str:
        return preview(self.message, MESSAGE_PREVIEW_CHARS)

    @property
    def result_preview(self) -> str | None:
        if self.result is None:
            return None
        return (self.result.text or "")[:RESULT_PREVIEW_CHARS]

    def snapshot(self) -> Run:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "source": self.source,
            "internal": self.internal,
            "mode": self.mode,
            "status": self.status,
            "messagePreview": self.message_preview,
            "dedupeKey": self.dedupe_key,
            "position": self.position,
            "coalescedCount": self.coalesced_count,
            "queuedAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "errorKind": self.error_kind,
            "resultPreview": self.result_preview,
        }


class RunRegistry:
    """Record of every run, most recent last.

    Only terminal runs are evicted once ``max_recent_runs`` is exceeded, so a
    queued or running run is always resolvable by id.
    """

    def __init__(self, *, max_recent_runs: int = 500) -> None:
        self._runs: OrderedDict[str, Run] = OrderedDict()
        self._max_recent_runs = max_recent_runs

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._runs

    def create_run(
        self,
        *,
        session_id: str,
        message: str,
        mode: QueueMode,
        source: str,
        internal: bool,
        image_path: str | None = None,
        image_url: str | None = None,
        dedupe_key: str | None = None,
    ) -> Run:
        run = Run(
            id=_new_run_id(),
            session_id=session_id,
            message=message,
            mode=mode,
            source=source,
            internal=internal,
            image_path=image_path,
            image_url=image_url,
            dedupe_key=dedupe_key,
        )
        while run.id in self._runs:
            run.id = _new_run_id()
        self._runs[run.id] = run
        self._trim()
        return run

    def get(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def require(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def list(
        self,
        *,
        session_id: str | None = None,
        status: RunStatus | None = None,
        limit: int | None = None,
    ) -> list[Run]:
        out: list[Run] = []
        for run in reversed(self._runs.values()):
            if session_id is not None and run.session_id != session_id:
                continue
            if status is not None and run.status != status:
                continue
            out.append(run)
            if limit is not None and len(out) >= limit:
                break
        return out

    def transition(self, run_id: str, status: RunStatus, **fields: Any) -> Run:
        run = self.require(run_id)
        if status not in _TRANSITIONS[run.status]:
            raise InvalidTransitionError(run_id, run.status, status)
        unknown = set(fields) - _TERMINAL_FIELDS - {"started_at"}
        if unknown:
            raise TypeError(f"Unsupported run fields: {', '.join(sorted(unknown))}")

        run.status = status
        if status == "running":
            run.started_at = fields.get("started_at") or _now()
        if status in TERMINAL_STATUSES:
            run.finished_at = fields.get("finished_at") or _now()
            run.result = fields.get("result")
            run.error = fields.get("error")
            run.error_kind = fields.get("error_kind")
        logger.debug("registry.transition run_id={} status={}", run_id, status)
        self._trim()
        return run

    def _trim(self) -> None:
        overflow = len(self._runs) - self._max_recent_runs
        if overflow <= 0:
            return
        evictable = [run_id for run_id, run in self._runs.items() if run.is_terminal][:overflow]
        for run_id in evictable:
            del self._runs[run_id]
