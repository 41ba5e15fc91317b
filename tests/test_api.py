"""HTTP surface: webhooks, drain endpoint, run listing/detail/retry."""

import json

import httpx
import pytest

from conftest import CLICKUP, METRICOOL, SHADE, clickup_task
from crm_workflows.api.deps import get_services
from crm_workflows.core.constants import RunStatus, WorkflowName
from crm_workflows.main import app


@pytest.fixture
async def client(services):
    app.dependency_overrides[get_services] = lambda: services
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def schedule_downstream(downstream, crm):
    crm.profiles["client-1"] = {"user_id": "u1", "first_name": "Dana", "last_name": "Reyes"}
    crm.marketing["u1"] = {"user_id": "u1", "metricool_brand_id": "b1", "metricool_tiktok_id": "tt-1"}
    downstream.add("GET", f"{CLICKUP}/task/t1", json=clickup_task())
    downstream.add("GET", f"{SHADE}/assets/asset-9/download", json="https://shade.test/dl/asset-9.mp4")
    downstream.add("GET", f"{METRICOOL}/actions/normalize/image/url", text="https://cdn.metricool.test/a.mp4")
    downstream.add("POST", f"{METRICOOL}/api/v2/scheduler/posts", json={"data": {"id": 1}})
    return downstream


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_schedule_webhook_runs_inline(client, schedule_downstream):
    response = await client.post("/api/v1/webhooks/schedule", json={"task_id": "t1", "event": "e1"})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["platforms"] == ["TIKTOK"]


async def test_schedule_webhook_rejects_get(client):
    response = await client.get("/api/v1/webhooks/schedule")
    assert response.status_code == 405


async def test_schedule_webhook_bad_signature(client, services):
    services.settings.CLICKUP_WEBHOOK_SECRET = "s3cret"

    response = await client.post(
        "/api/v1/webhooks/schedule",
        content=json.dumps({"task_id": "t1"}),
        headers={"x-clickup-signature": "sha256=00ff"},
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}


async def test_malformed_webhook_body_is_a_500(client):
    response = await client.post("/api/v1/webhooks/schedule", content=b"{not json")

    assert response.status_code == 500
    assert response.json() == {"error": "Invalid JSON body"}


async def test_generate_webhook_queues(client, dispatch):
    response = await client.post("/api/v1/webhooks/generate-thumbnail", json={"task": {"id": "t9"}})

    assert response.status_code == 200
    assert response.json()["queued"] is True
    dispatch.assert_called_once()


async def test_drain_endpoint_reports_batch(client, services):
    # Unknown task: the run fails at fetch_task, which still counts as processed
    await services.registry.create_run(WorkflowName.GENERATE_THUMBNAIL, "generate-thumbnail:zz", "webhook", {"task_id": "zz"})

    response = await client.post("/api/v1/queues/generate-thumbnail/drain")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "processed": 1, "remaining": 0}


async def test_run_list_and_detail(client, schedule_downstream):
    await client.post("/api/v1/webhooks/schedule", json={"task_id": "t1", "event": "e1"})

    listing = (await client.get("/api/v1/workflow-runs", params={"workflow_name": "schedule"})).json()
    assert listing["total"] == 1
    run_id = listing["data"][0]["id"]

    detail = (await client.get(f"/api/v1/workflow-runs/{run_id}")).json()
    assert detail["status"] == RunStatus.SUCCESS
    assert detail["steps"][0]["step_name"] == "verify_signature"
    assert detail["steps"][-1]["step_name"] == "finalize"
    assert len(detail["steps"]) == 12


async def test_run_detail_not_found(client):
    response = await client.get("/api/v1/workflow-runs/6f1c2a34-8a55-4f0e-9d2b-0d5a0c7b3e11")
    assert response.status_code == 404


async def test_retry_of_successful_run_conflicts(client, schedule_downstream):
    await client.post("/api/v1/webhooks/schedule", json={"task_id": "t1", "event": "e1"})
    run_id = (await client.get("/api/v1/workflow-runs")).json()["data"][0]["id"]

    response = await client.post(f"/api/v1/workflow-runs/{run_id}/retry")

    assert response.status_code == 409


async def test_retry_of_failed_generate_run_requeues(client, services, dispatch):
    run = await services.registry.create_run(WorkflowName.GENERATE_THUMBNAIL, "generate-thumbnail:t1", "webhook", {"task_id": "t1"})
    await services.registry.claim_run(run)
    await services.registry.finalize_run(run, RunStatus.FAILED, error="gemini quota")

    response = await client.post(f"/api/v1/workflow-runs/{run.id}/retry")

    assert response.status_code == 200
    assert response.json()["queued"] is True
    assert response.json()["status"] == RunStatus.QUEUED
    dispatch.assert_called_once()
