"""StepLogger writes one row per call and never raises."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from crm_workflows.core.constants import StepStatus, WorkflowName
from crm_workflows.pipeline.step_logger import StepLogger


async def test_step_row_is_appended_with_duration(registry, session_factory):
    run = await registry.create_run(WorkflowName.SCHEDULE, "schedule:t1:e1")
    logger = StepLogger(session_factory)
    started = datetime.now(timezone.utc) - timedelta(milliseconds=250)

    step_id = await logger.log_step(
        run.id,
        "fetch_task",
        StepStatus.SUCCESS,
        request={"task_id": "t1"},
        response={"name": "Spring Listing Tour"},
        started_at=started,
    )

    assert step_id is not None
    [row] = await registry.list_steps(run.id)
    assert row.step_name == "fetch_task"
    assert row.request == {"task_id": "t1"}
    assert row.duration_ms >= 250


async def test_rows_keep_write_order_and_errors_are_truncated(registry, session_factory):
    run = await registry.create_run(WorkflowName.SCHEDULE, "schedule:t1:e1")
    logger = StepLogger(session_factory)

    await logger.log_step(str(run.id), "first", StepStatus.SUCCESS)
    await logger.log_step(str(run.id), "second", StepStatus.FAILED, error="x" * 3000)

    rows = await registry.list_steps(run.id)
    assert [r.step_name for r in rows] == ["first", "second"]
    assert len(rows[1].error_message) == 2000


async def test_write_failure_is_swallowed():
    broken_factory = MagicMock(side_effect=RuntimeError("database is gone"))
    logger = StepLogger(broken_factory)

    result = await logger.log_step(
        "6f1c2a34-8a55-4f0e-9d2b-0d5a0c7b3e11", "fetch_task", StepStatus.SUCCESS,
    )

    assert result is None
