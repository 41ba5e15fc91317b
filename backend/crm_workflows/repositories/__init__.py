"""
Repositories package — data-access layer.

Each repository file handles all DB operations for one table.
Repositories do NOT handle HTTP concerns or workflow state rules.

Convention:
    - One file per table (workflow_runs.py, workflow_run_steps.py)
    - All functions accept `AsyncSession` as the first argument
    - Use `flush()` internally; commit/rollback is owned by the caller
      (RunRegistry / StepLogger open one transaction per operation)
"""
