"""
Celery tasks — generate-thumbnail queue draining and lease reaping.

Each task runs its coroutine under `asyncio.run` with services opened inside
that loop (fresh DB engine + HTTP client), never shared across tasks.

The drain continuation is this module's own `drain_generate_queue.delay`:
a drain that leaves rows behind publishes exactly one follow-up message.
Celery beat re-kicks the drain periodically in case a message is lost.
"""

import asyncio

import structlog

from crm_workflows.tasks import celery_app

logger = structlog.get_logger("tasks.queue")


async def _drain() -> dict:
    from crm_workflows.pipeline.drainer import build_drainer
    from crm_workflows.pipeline.services import open_services

    async with open_services() as services:
        result = await build_drainer(services, continuation=drain_generate_queue.delay).drain()
    return {**result.to_dict(), "continued": result.continued}


async def _reap() -> dict:
    from crm_workflows.pipeline.services import open_services

    async with open_services() as services:
        return await services.registry.reap_expired()


@celery_app.task(bind=True, name="crm_workflows.tasks.queue_tasks.drain_generate_queue")
def drain_generate_queue(self):
    """
    Drain one batch of queued generate-thumbnail runs.

    Returns {ok, processed, remaining, continued}.
    """
    task_log = logger.bind(task_id=self.request.id)
    task_log.info("Drain task started")
    try:
        summary = asyncio.run(_drain())
    except Exception as exc:
        task_log.exception("Drain task failed", error=str(exc))
        raise
    task_log.info("Drain task finished", **summary)
    return summary


@celery_app.task(bind=True, name="crm_workflows.tasks.queue_tasks.reap_expired_runs")
def reap_expired_runs(self):
    """
    Recover runs whose lease expired.  Requeued work gets a drain right away
    instead of waiting for the next supervisor tick.
    """
    task_log = logger.bind(task_id=self.request.id)
    try:
        summary = asyncio.run(_reap())
    except Exception as exc:
        task_log.exception("Reaper task failed", error=str(exc))
        raise

    if summary["requeued"]:
        drain_generate_queue.delay()
    task_log.info("Reaper task finished", requeued=len(summary["requeued"]), failed=len(summary["failed"]))
    return summary
