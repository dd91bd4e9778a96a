from __future__ import annotations

import pytest

from turnq.config import Settings
from turnq.scheduler import SessionRunScheduler


@pytest.mark.asyncio
async def test_session_run_state_tracks_running_and_queue(scheduler, executor, wait_until) -> None:
    first = await scheduler.enqueue(session_id="s1", message="one")
    await scheduler.enqueue(session_id="s1", message="two")
    await wait_until(lambda: executor.calls == ["one"])

    state = scheduler.get_session_run_state("s1")
    assert state.running_run_id == first.run_id
    assert state.queue_length == 1

    status = scheduler.session_status("s1")
    assert status.to_dict() == {"active": True, "queuedCount": 1, "currentRunId": first.run_id}


@pytest.mark.asyncio
async def test_queries_do_not_create_session_state(scheduler) -> None:
    state = scheduler.get_session_run_state("nobody")
    status = scheduler.session_status("nobody")

    assert state.running_run_id is None
    assert state.queue_length == 0
    assert status.active is False
    assert scheduler.queues.get("nobody") is None
    assert len(scheduler.queues) == 0


@pytest.mark.asyncio
async def test_session_status_reports_live_process(scheduler) -> None:
    status = scheduler.session_status("s1", process_active=True)
    assert status.active is True
    assert status.current_run_id is None


@pytest.mark.asyncio
async def test_get_run_by_id(scheduler, executor) -> None:
    executor.auto = True
    result = await scheduler.enqueue(session_id="s1", message="hi", source="cron")
    await result.completion

    run = scheduler.get_run_by_id(result.run_id)
    assert run is not None
    assert run.source == "cron"
    assert scheduler.get_run_by_id("0000000000000000") is None


@pytest.mark.asyncio
async def test_list_runs_filters_and_clamps_limit(executor) -> None:
    executor.auto = True
    scheduler = SessionRunScheduler(executor, settings=Settings(list_default_limit=3, list_max_limit=4))
    async with scheduler:
        results = [await scheduler.enqueue(session_id="s1", message=f"m{index}") for index in range(6)]
        for result in results:
            await result.completion

        assert len(scheduler.list_runs()) == 3
        assert len(scheduler.list_runs(limit=100)) == 4
        assert len(scheduler.list_runs(limit=0)) == 1
        assert scheduler.list_runs(limit=1)[0].id == results[-1].run_id
        assert scheduler.list_runs(session_id="other") == []
        assert len(scheduler.list_runs(status="completed", limit=10)) == 4


@pytest.mark.asyncio
async def test_returned_runs_are_copies(scheduler, executor, wait_until) -> None:
    result = await scheduler.enqueue(session_id="s1", message="hi")
    await wait_until(lambda: executor.calls == ["hi"])

    scheduler.get_run_by_id(result.run_id).status = "completed"
    scheduler.list_runs(session_id="s1")[0].message = "rewritten"

    live = scheduler.registry.get(result.run_id)
    assert live.status == "running"
    assert live.message == "hi"
