"""RunRegistry state machine, claims and lease recovery."""

from datetime import datetime, timedelta, timezone

import pytest

from crm_workflows.core.constants import RunStatus, StepStatus, WorkflowName
from crm_workflows.pipeline.errors import ConflictError, InvalidTransitionError
from crm_workflows.pipeline.registry import LEASE_EXPIRED_MESSAGE


async def _create(registry, key="schedule:t1:e1", workflow=WorkflowName.SCHEDULE):
    return await registry.create_run(workflow, key, "webhook", {"task_id": "t1"})


async def test_create_is_queued_and_key_is_unique(registry):
    run = await _create(registry)
    assert run.status == RunStatus.QUEUED
    assert run.input == {"task_id": "t1"}

    with pytest.raises(ConflictError) as excinfo:
        await _create(registry)
    assert excinfo.value.idempotency_key == "schedule:t1:e1"

    found = await registry.find_by_idempotency_key("schedule:t1:e1")
    assert found.id == run.id


async def test_claim_is_won_exactly_once(registry):
    run = await _create(registry, "generate-thumbnail:t1", WorkflowName.GENERATE_THUMBNAIL)

    assert await registry.claim_run(run) is True
    assert await registry.claim_run(run) is False

    claimed = await registry.get_run(run.id)
    assert claimed.status == RunStatus.RUNNING
    assert claimed.started_at is not None
    assert claimed.lease_expires_at is not None


async def test_finalize_only_from_running(registry):
    run = await _create(registry)

    with pytest.raises(InvalidTransitionError) as excinfo:
        await registry.finalize_run(run, RunStatus.SUCCESS)
    assert excinfo.value.current == RunStatus.QUEUED

    run = await registry.resume_run(run)
    done = await registry.finalize_run(run, RunStatus.SUCCESS, output={"ok": True})

    assert done.status == RunStatus.SUCCESS
    assert done.output == {"ok": True}
    assert done.finished_at is not None
    assert done.lease_expires_at is None


async def test_finalize_rejects_non_terminal_status(registry):
    run = await registry.resume_run(await _create(registry))
    with pytest.raises(InvalidTransitionError):
        await registry.finalize_run(run, RunStatus.QUEUED)


async def test_failed_error_is_truncated(registry):
    run = await registry.resume_run(await _create(registry))
    failed = await registry.finalize_run(run, RunStatus.FAILED, error="e" * 5000)
    assert len(failed.error_message) == 2000


async def test_resume_clears_previous_error(registry):
    run = await registry.resume_run(await _create(registry))
    await registry.finalize_run(run, RunStatus.FAILED, error="boom")

    resumed = await registry.resume_run(run)

    assert resumed.status == RunStatus.RUNNING
    assert resumed.error_message is None
    assert resumed.finished_at is None


async def test_resume_of_successful_run_is_refused(registry):
    run = await registry.resume_run(await _create(registry))
    await registry.finalize_run(run, RunStatus.SUCCESS, output={})

    with pytest.raises(InvalidTransitionError) as excinfo:
        await registry.resume_run(run)
    assert excinfo.value.current == RunStatus.SUCCESS


async def test_requeue_only_from_failed_or_skipped(registry):
    run = await _create(registry, "generate-thumbnail:t1", WorkflowName.GENERATE_THUMBNAIL)
    with pytest.raises(InvalidTransitionError):
        await registry.requeue_run(run)

    await registry.claim_run(run)
    await registry.finalize_run(run, RunStatus.FAILED, error="placid down")
    requeued = await registry.requeue_run(run, input={"task_id": "t1", "event_id": "e2"})

    assert requeued.status == RunStatus.QUEUED
    assert requeued.error_message is None
    assert requeued.started_at is None
    assert requeued.input["event_id"] == "e2"


async def test_queued_listing_is_oldest_first(registry):
    first = await _create(registry, "generate-thumbnail:a", WorkflowName.GENERATE_THUMBNAIL)
    second = await _create(registry, "generate-thumbnail:b", WorkflowName.GENERATE_THUMBNAIL)
    await _create(registry, "schedule:x:y")

    queued = await registry.list_queued(WorkflowName.GENERATE_THUMBNAIL, limit=5)

    assert [r.id for r in queued] == [first.id, second.id]
    assert await registry.count_queued(WorkflowName.GENERATE_THUMBNAIL) == 2


async def test_renew_lease_only_touches_running_runs(registry):
    run = await _create(registry)
    assert await registry.renew_lease(run) is False

    run = await registry.resume_run(run)
    before = run.lease_expires_at
    assert await registry.renew_lease(run) is True
    after = (await registry.get_run(run.id)).lease_expires_at
    assert after >= before


async def test_live_lease_only_for_running_runs(registry):
    run = await _create(registry)
    assert registry.has_live_lease(run) is False

    run = await registry.resume_run(run)
    assert registry.has_live_lease(run) is True
    assert registry.has_live_lease(run, now=datetime.now(timezone.utc) + timedelta(hours=1)) is False


async def test_resume_can_be_narrowed_to_finished_runs(registry):
    run = await registry.resume_run(await _create(registry))

    with pytest.raises(InvalidTransitionError) as excinfo:
        await registry.resume_run(run, allowed_from=(RunStatus.FAILED, RunStatus.SKIPPED))
    assert excinfo.value.current == RunStatus.RUNNING


async def test_reaper_requeues_queue_runs_and_fails_webhook_runs(registry):
    generate = await _create(registry, "generate-thumbnail:t1", WorkflowName.GENERATE_THUMBNAIL)
    schedule = await _create(registry, "schedule:t2:e1")
    healthy = await _create(registry, "schedule:t3:e1")
    await registry.claim_run(generate)
    await registry.resume_run(schedule)
    await registry.resume_run(healthy)

    # Leases are 15 minutes; look from 20 minutes ahead, except for `healthy`
    later = datetime.now(timezone.utc) + timedelta(minutes=20)
    registry.lease_seconds = 3600
    await registry.renew_lease(healthy)

    summary = await registry.reap_expired(now=later)

    assert summary == {"requeued": [str(generate.id)], "failed": [str(schedule.id)]}
    assert (await registry.get_run(generate.id)).status == RunStatus.QUEUED

    failed = await registry.get_run(schedule.id)
    assert failed.status == RunStatus.FAILED
    assert failed.error_message == LEASE_EXPIRED_MESSAGE
    assert (await registry.get_run(healthy.id)).status == RunStatus.RUNNING

    steps = await registry.list_steps(schedule.id)
    assert [(s.step_name, s.status) for s in steps] == [("lease_expired", StepStatus.FAILED)]
    assert steps[0].response == {"action": "failed"}


async def test_reaper_is_a_no_op_without_expired_leases(registry):
    await registry.resume_run(await _create(registry))
    assert await registry.reap_expired() == {"requeued": [], "failed": []}
