from __future__ import annotations

import pytest

from turnq.errors import InvalidTransitionError, RunNotFoundError
from turnq.ports import TurnResult
from turnq.scheduler.registry import RunRegistry


def _create(registry: RunRegistry, session_id: str = "s1", message: str = "hi", **kwargs):
    return registry.create_run(
        session_id=session_id,
        message=message,
        mode=kwargs.pop("mode", "followup"),
        source=kwargs.pop("source", "chat"),
        internal=kwargs.pop("internal", False),
        **kwargs,
    )


def test_create_run_starts_queued_with_unique_id() -> None:
    registry = RunRegistry()
    first = _create(registry)
    second = _create(registry)

    assert first.status == "queued"
    assert first.id != second.id
    assert len(first.id) == 16
    assert registry.get(first.id) is first
    assert registry.get("missing") is None


def test_list_is_most_recent_first_and_filters() -> None:
    registry = RunRegistry()
    a = _create(registry, "s1", "a")
    b = _create(registry, "s2", "b")
    c = _create(registry, "s1", "c")
    registry.transition(a.id, "running")

    assert [run.id for run in registry.list()] == [c.id, b.id, a.id]
    assert [run.id for run in registry.list(session_id="s1")] == [c.id, a.id]
    assert [run.id for run in registry.list(status="running")] == [a.id]
    assert [run.id for run in registry.list(limit=2)] == [c.id, b.id]


def test_transition_sets_lifecycle_fields() -> None:
    registry = RunRegistry()
    run = _create(registry)

    registry.transition(run.id, "running")
    assert run.started_at is not None
    assert run.finished_at is None

    result = TurnResult(text="done")
    registry.transition(run.id, "completed", result=result)
    assert run.status == "completed"
    assert run.result is result
    assert run.finished_at is not None
    assert run.finished_at >= run.started_at
    assert run.result_preview == "done"


@pytest.mark.parametrize(
    ("path", "target"),
    [
        ((), "completed"),
        ((), "failed"),
        (("running", "completed"), "running"),
        (("cancelled",), "running"),
        (("running", "failed"), "cancelled"),
    ],
)
def test_illegal_transitions_raise(path: tuple[str, ...], target: str) -> None:
    registry = RunRegistry()
    run = _create(registry)
    for status in path:
        registry.transition(run.id, status)  # type: ignore[arg-type]

    before = run.status
    with pytest.raises(InvalidTransitionError):
        registry.transition(run.id, target)  # type: ignore[arg-type]
    assert run.status == before


def test_transition_unknown_run_raises() -> None:
    registry = RunRegistry()
    with pytest.raises(RunNotFoundError):
        registry.transition("nope", "running")


def test_transition_rejects_unknown_fields() -> None:
    registry = RunRegistry()
    run = _create(registry)
    with pytest.raises(TypeError):
        registry.transition(run.id, "running", message="rewritten")


def test_retention_only_evicts_terminal_runs() -> None:
    registry = RunRegistry(max_recent_runs=2)
    old = _create(registry, message="old")
    registry.transition(old.id, "cancelled", error="x", error_kind="cancelled")
    live = _create(registry, message="live")
    registry.transition(live.id, "running")
    queued = _create(registry, message="queued")
    extra = _create(registry, message="extra")

    assert old.id not in registry
    assert live.id in registry
    assert queued.id in registry
    assert extra.id in registry


def test_to_dict_uses_camel_case_and_preview() -> None:
    registry = RunRegistry()
    run = _create(registry, message="  hello\n\n  world  ", dedupe_key="k")

    data = run.to_dict()
    assert data["sessionId"] == "s1"
    assert data["messagePreview"] == "hello world"
    assert data["dedupeKey"] == "k"
    assert data["status"] == "queued"
    assert data["startedAt"] is None


def test_snapshot_is_independent_copy() -> None:
    registry = RunRegistry()
    run = _create(registry)
    snapshot = run.snapshot()
    run.message = "changed"
    assert snapshot.message == "hi"
