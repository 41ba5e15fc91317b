"""
Schedule workflow — flow definition.

Flow:
    (verify_signature → idempotency_check, handled by the runner)
    Fetch task → Status gate → Extract fields → Owner settings →
    Generated content → Asset URL → CDN URL → Providers → Submit
"""

from __future__ import annotations

from crm_workflows.pipeline.step import PipelineStep
from crm_workflows.pipeline.steps.fetch_task import FetchTaskStep
from crm_workflows.pipeline.workflows.schedule.steps import (
    BuildProvidersStep,
    ExtractFieldsStep,
    FetchGeneratedContentStep,
    NormalizeMediaUrlStep,
    ResolveAssetUrlStep,
    ResolveOwnerSettingsStep,
    StatusGateStep,
    SubmitScheduleStep,
)


def schedule_flow() -> list[PipelineStep]:
    return [
        FetchTaskStep(),
        StatusGateStep(),
        ExtractFieldsStep(),
        ResolveOwnerSettingsStep(),
        FetchGeneratedContentStep(),
        ResolveAssetUrlStep(),
        NormalizeMediaUrlStep(),
        BuildProvidersStep(),
        SubmitScheduleStep(),
    ]
