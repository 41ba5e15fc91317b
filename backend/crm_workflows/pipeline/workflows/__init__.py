"""
Workflow-specific pipeline modules.

Each workflow gets a sub-package (e.g. workflows/schedule/) containing:
    - flow.py    — the ordered step list
    - steps.py   — the workflow's PipelineStep subclasses
    - runner.py  — trigger handling around WorkflowEngine.run_steps
"""
