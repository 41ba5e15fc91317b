"""
Generate-thumbnail workflow — flow definition.

Flow:
    Fetch task → Owner settings → Reference photo → Background →
    Context fields → Title → 9:16 (image, composite) →
    16:9 (image, composite) → Persist → Update task
"""

from __future__ import annotations

from crm_workflows.pipeline.step import PipelineStep
from crm_workflows.pipeline.steps.fetch_task import FetchTaskStep
from crm_workflows.pipeline.workflows.generate.steps import (
    ASPECT_RATIOS,
    CompositeStep,
    ExtractContextFieldsStep,
    GenerateImageStep,
    GenerateTitleStep,
    PersistThumbnailsStep,
    ResolveOwnerByListStep,
    SelectBackgroundStep,
    SelectReferenceAssetStep,
    UpdateTaskStep,
)


def generate_flow() -> list[PipelineStep]:
    image_steps: list[PipelineStep] = []
    for aspect_ratio in ASPECT_RATIOS:
        image_steps += [GenerateImageStep(aspect_ratio), CompositeStep(aspect_ratio)]

    return [
        FetchTaskStep(),
        ResolveOwnerByListStep(),
        SelectReferenceAssetStep(),
        SelectBackgroundStep(),
        ExtractContextFieldsStep(),
        GenerateTitleStep(),
        *image_steps,
        PersistThumbnailsStep(),
        UpdateTaskStep(),
    ]
