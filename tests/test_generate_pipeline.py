"""Generate-thumbnail workflow: enqueue semantics and a full drained run."""

import json

import pytest

from conftest import CLICKUP, PLACID, TEMPLATE_UUID, clickup_task
from crm_workflows.core.constants import RunStatus, StepStatus, WorkflowName
from crm_workflows.pipeline.drainer import build_drainer
from crm_workflows.pipeline.errors import ExternalServiceError
from crm_workflows.pipeline.workflows.generate import GenerateWorkflow
from crm_workflows.pipeline.workflows.generate.steps import clean_title, describe_sub_action_failure, thumbnail_path

COMPOSITE_URL = "https://placid.test/renders/out.png"

GENERATE_STEPS = [
    "fetch_task",
    "resolve_owner_settings",
    "select_reference_asset",
    "select_background",
    "extract_context_fields",
    "generate_title",
    "generate_image_9x16",
    "composite_9x16",
    "generate_image_16x9",
    "composite_16x9",
    "persist_thumbnails",
    "update_task",
    "finalize",
]


@pytest.fixture
def owner(crm):
    crm.marketing_by_list["L1"] = {
        "user_id": "u1",
        "thumbnail_guidelines": "Navy and white palette",
        "headshot_url": "https://cdn.test/headshot.jpg",
    }
    crm.reference_images["u1"] = ["https://cdn.test/a.jpg"]
    crm.background_links["u1"] = ["bg1"]
    crm.backgrounds["bg1"] = {"prompt": "Sunny open-plan kitchen", "name": "Kitchen"}
    return crm


@pytest.fixture
def happy_downstream(downstream, owner):
    task = clickup_task(
        status="editing",
        fields={"Video Transcription": "Welcome to this three bedroom home", "Prompt": "Listing tour"},
    )
    downstream.add("GET", f"{CLICKUP}/task/t1", json=task)
    downstream.add("POST", f"{PLACID}/media", json={"url": "https://placid.test/media/base.png"})
    downstream.add("POST", f"{PLACID}/{TEMPLATE_UUID}", json={"image_url": COMPOSITE_URL, "status": "finished"})
    downstream.add("GET", COMPOSITE_URL, content=b"composite-png")
    downstream.add("POST", f"{CLICKUP}/task/t1/field/thumb-field", json={})
    downstream.add("POST", f"{CLICKUP}/task/t1/comment", json={"id": "c1"})
    return downstream


async def _enqueue_and_drain(services):
    workflow = GenerateWorkflow(services)
    await workflow.enqueue("t1")
    result = await build_drainer(services, continuation=lambda: None).drain()
    run = await services.registry.find_by_idempotency_key("generate-thumbnail:t1")
    return result, run


# ─── Enqueue ──────────────────────────────────────────────

async def test_webhook_creates_a_queued_run_and_dispatches(services, dispatch):
    body = json.dumps({"task_id": "t1", "event": "taskUpdated"}).encode()

    reply = await GenerateWorkflow(services).handle_webhook(body, {})

    assert reply.status_code == 200
    assert reply.body["queued"] is True
    run = await services.registry.find_by_idempotency_key("generate-thumbnail:t1")
    assert run.status == RunStatus.QUEUED
    assert run.triggered_by == "webhook"
    assert reply.body["run_id"] == str(run.id)
    dispatch.assert_called_once_with()


async def test_enqueue_while_queued_is_already_processing(services, dispatch):
    workflow = GenerateWorkflow(services)
    await workflow.enqueue("t1")

    body = await workflow.enqueue("t1")

    assert body["already_processing"] is True
    assert dispatch.call_count == 1
    assert await services.registry.count_queued(WorkflowName.GENERATE_THUMBNAIL) == 1


async def test_enqueue_after_success_is_duplicate(services, happy_downstream, dispatch):
    await _enqueue_and_drain(services)

    body = await GenerateWorkflow(services).enqueue("t1")

    assert body["duplicate"] is True
    assert dispatch.call_count == 1


async def test_enqueue_after_failure_requeues(services, happy_downstream, generative):
    generative.image_error = ExternalServiceError("quota", service="gemini", status_code=400)
    _, failed = await _enqueue_and_drain(services)
    assert failed.status == RunStatus.FAILED

    body = await GenerateWorkflow(services).enqueue("t1")

    assert body["queued"] is True
    assert body["run_id"] == str(failed.id)
    assert (await services.registry.get_run(failed.id)).status == RunStatus.QUEUED


async def test_malformed_body_answers_500_without_queueing(services, dispatch):
    reply = await GenerateWorkflow(services).handle_webhook(b"task_id=t1", {})

    assert reply.status_code == 500
    assert reply.body == {"error": "Invalid JSON body"}
    assert await services.registry.count_queued(WorkflowName.GENERATE_THUMBNAIL) == 0
    dispatch.assert_not_called()


async def test_dispatch_failure_does_not_fail_enqueue(services, dispatch):
    dispatch.side_effect = ConnectionError("broker unavailable")

    body = await GenerateWorkflow(services).enqueue("t1")

    assert body["queued"] is True


# ─── Execution ────────────────────────────────────────────

async def test_drained_run_produces_both_thumbnails(services, happy_downstream, crm, generative):
    result, run = await _enqueue_and_drain(services)

    assert (result.processed, result.remaining) == (1, 0)
    assert run.status == RunStatus.SUCCESS
    assert run.output == {
        "title": "Inside a Bright Spring Listing",
        "thumb_9x16_url": "https://storage.test/agent-assets/thumbnails/u1/t1/thumb_9x16.png",
        "thumb_16x9_url": "https://storage.test/agent-assets/thumbnails/u1/t1/thumb_16x9.png",
        "task_update": {"thumbnail_field": "success", "comment": "success"},
        "task_name": "Spring Listing Tour",
    }

    steps = await services.registry.list_steps(run.id)
    assert [s.step_name for s in steps] == GENERATE_STEPS
    assert all(s.status == StepStatus.SUCCESS for s in steps)

    assert [c["aspect_ratio"] for c in generative.image_calls] == ["9:16", "16:9"]
    assert generative.image_calls[0]["reference"] == "https://cdn.test/a.jpg"
    assert "Sunny open-plan kitchen" in generative.image_calls[0]["prompt"]
    assert "Navy and white palette" in generative.image_calls[0]["prompt"]
    assert set(crm.uploads) == {"thumbnails/u1/t1/thumb_9x16.png", "thumbnails/u1/t1/thumb_16x9.png"}


async def test_task_is_updated_with_landscape_url_and_comment(services, happy_downstream):
    await _enqueue_and_drain(services)

    [field_call] = happy_downstream.calls("POST", f"{CLICKUP}/task/t1/field/thumb-field")
    assert json.loads(field_call.content) == {
        "value": "https://storage.test/agent-assets/thumbnails/u1/t1/thumb_16x9.png",
    }
    [comment_call] = happy_downstream.calls("POST", f"{CLICKUP}/task/t1/comment")
    comment = json.loads(comment_call.content)["comment_text"]
    assert comment.startswith("🖼️ **Thumbnails Generated**")
    assert "**Title:** Inside a Bright Spring Listing" in comment
    assert "thumb_9x16.png" in comment


async def test_task_update_failure_is_partial(services, happy_downstream):
    happy_downstream.routes[("POST", "/api/v2/task/t1/comment")] = [
        {"status_code": 400, "json": {"err": "Comment too long"}},
    ]

    _, run = await _enqueue_and_drain(services)

    assert run.status == RunStatus.SUCCESS
    assert run.output["task_update"]["thumbnail_field"] == "success"
    assert run.output["task_update"]["comment"].startswith("error_400:")
    update_row = [s for s in await services.registry.list_steps(run.id) if s.step_name == "update_task"][0]
    assert update_row.response["partial_failures"] == ["comment"]


async def test_empty_title_falls_back_to_task_name(services, happy_downstream, generative):
    generative.title = ""

    _, run = await _enqueue_and_drain(services)

    assert run.output["title"] == "Spring Listing Tour"


async def test_headshot_is_used_without_reference_pool(services, happy_downstream, crm, generative):
    crm.reference_images["u1"] = []

    await _enqueue_and_drain(services)

    assert generative.image_calls[0]["reference"] == "https://cdn.test/headshot.jpg"


async def test_unknown_list_fails_the_run(services, happy_downstream, crm):
    crm.marketing_by_list.clear()

    _, run = await _enqueue_and_drain(services)

    assert run.status == RunStatus.FAILED
    assert "L1" in run.error_message
    error_row = (await services.registry.list_steps(run.id))[-1]
    assert error_row.request == {"step": "resolve_owner_settings"}


async def test_compositor_failure_is_fatal(services, happy_downstream):
    happy_downstream.routes[("POST", f"/api/rest/{TEMPLATE_UUID}")] = [
        {"status_code": 422, "json": {"message": "layer missing"}},
    ]

    _, run = await _enqueue_and_drain(services)

    assert run.status == RunStatus.FAILED
    error_row = (await services.registry.list_steps(run.id))[-1]
    assert error_row.request == {"step": "composite_9x16"}
    assert error_row.response["service"] == "placid"


async def test_retry_requeues_and_dispatches(services, happy_downstream, generative, dispatch):
    generative.image_error = ExternalServiceError("quota", service="gemini")
    _, failed = await _enqueue_and_drain(services)

    requeued = await GenerateWorkflow(services).retry(failed)

    assert requeued.status == RunStatus.QUEUED
    assert dispatch.call_count == 2


# ─── Helpers ──────────────────────────────────────────────

def test_title_cleanup_strips_wrapping_quotes():
    assert clean_title('  "Move-In Ready Elegance"  ') == "Move-In Ready Elegance"


def test_thumbnail_path_layout():
    assert thumbnail_path("u1", "t1", "16:9") == "thumbnails/u1/t1/thumb_16x9.png"


def test_sub_action_failure_description():
    http_failure = ExternalServiceError("x", service="clickup", status_code=400, response_body="b" * 300)
    assert describe_sub_action_failure(http_failure) == "error_400: " + "b" * 200
    assert describe_sub_action_failure(RuntimeError("socket closed")) == "exception: socket closed"
