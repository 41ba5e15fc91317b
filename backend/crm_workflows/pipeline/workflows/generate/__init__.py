"""
Generate-thumbnail workflow — queue-drained.

Exports:
    - generate_flow(): the ordered step list run by the engine
    - GenerateWorkflow: enqueue / execute / retry around the flow
"""

from crm_workflows.pipeline.workflows.generate.flow import generate_flow
from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow

__all__ = ["generate_flow", "GenerateWorkflow"]
