#!/usr/bin/env python3
"""
CRM Workflow Orchestrator — operator tool

Single entry point for running the services and poking at the run registry.
Usage: python manage.py <command> [options]
"""

import asyncio
import json
import logging
import os
import subprocess
import sys
from datetime import datetime
from typing import List, Optional


BACKEND_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "backend")


# ═══════════════════════════════════════════════════════════
#  Logging Setup
# ═══════════════════════════════════════════════════════════

class ColorFormatter(logging.Formatter):
    """Console formatter with ANSI colors and level symbols."""

    COLORS = {
        "INFO": "\033[96m",        # Cyan
        "SUCCESS": "\033[92m",     # Green
        "WARNING": "\033[93m",     # Yellow
        "ERROR": "\033[91m",       # Red
        "CRITICAL": "\033[91m\033[1m",
        "DEBUG": "\033[94m",       # Blue
        "HEADER": "\033[95m",      # Magenta
        "BOLD": "\033[1m",
        "RESET": "\033[0m",
    }

    SYMBOLS = {
        "INFO": "→",
        "SUCCESS": "✓",
        "WARNING": "⚠",
        "ERROR": "✗",
        "CRITICAL": "☠",
        "DEBUG": "•",
        "STEP": "▶",
    }

    MARKERS = ("SUCCESS", "WARNING", "ERROR", "STEP")

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _colorize(self, text: str, color_name: str) -> str:
        if not self.use_colors:
            return text
        color = self.COLORS.get(color_name, "")
        return f"{color}{text}{self.COLORS['RESET']}" if color else text

    def format(self, record: logging.LogRecord) -> str:
        msg = str(record.msg)

        symbol, color = self.SYMBOLS.get(record.levelname, ""), record.levelname
        for marker in self.MARKERS:
            if f"[{marker}]" in msg:
                msg = msg.replace(f"[{marker}] ", "").replace(f"[{marker}]", "")
                symbol = self.SYMBOLS[marker]
                color = "INFO" if marker == "STEP" else marker
                break

        if symbol and not msg.startswith(("===", " ")):
            msg = f"{symbol} {msg}"

        if msg.startswith("==="):
            record.msg = self._colorize(msg, "HEADER")
        else:
            record.msg = self._colorize(msg, color)
        return super().format(record)


_log_dir = "logs"
os.makedirs(_log_dir, exist_ok=True)
_log_file = os.path.join(_log_dir, f"manage-{datetime.now():%Y%m%d}.log")

_file_handler = logging.FileHandler(_log_file, encoding="utf-8")
_file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))

_console_handler = logging.StreamHandler()
_console_handler.setFormatter(ColorFormatter())

logging.basicConfig(level=logging.INFO, handlers=[_file_handler, _console_handler])
logger = logging.getLogger("manage")


def _option(opts: List[str], name: str) -> Optional[str]:
    """Value of `--name=value` in `opts`, if present."""
    prefix = f"--{name}="
    for o in opts:
        if o.startswith(prefix):
            return o.split("=", 1)[1]
    return None


# ═══════════════════════════════════════════════════════════
#  Workflow Operations (in-process)
# ═══════════════════════════════════════════════════════════

class WorkflowOps:
    """Registry and queue operations run directly against the database."""

    async def _drain(self, until_empty: bool) -> None:
        from crm_workflows.pipeline.drainer import build_drainer
        from crm_workflows.pipeline.services import open_services

        async with open_services() as services:
            # Local loop instead of publishing a continuation to the worker
            continuation = None if until_empty else services.dispatch_drain
            drainer = build_drainer(services, continuation=continuation)
            batch = 1
            while True:
                logger.info(f"[STEP] Draining batch {batch}…")
                result = await drainer.drain()
                logger.info(f"  processed={result.processed} remaining={result.remaining}")
                if not until_empty or result.remaining == 0 or result.processed == 0:
                    break
                batch += 1

    def drain(self, until_empty: bool = False) -> None:
        logger.info("\n=== Drain generate-thumbnail queue ===")
        asyncio.run(self._drain(until_empty))
        logger.info("[SUCCESS] Drain finished")

    async def _reap(self) -> dict:
        from crm_workflows.pipeline.services import open_services

        async with open_services() as services:
            return await services.registry.reap_expired()

    def reap(self) -> None:
        logger.info("\n=== Reap expired leases ===")
        summary = asyncio.run(self._reap())
        logger.info(f"[SUCCESS] requeued={len(summary['requeued'])} failed={len(summary['failed'])}")
        for run_id in summary["requeued"]:
            logger.info(f"  requeued {run_id}")
        for run_id in summary["failed"]:
            logger.warning(f"  failed {run_id}")

    async def _enqueue(self, task_id: str) -> dict:
        from crm_workflows.core.constants import TriggerSource
        from crm_workflows.pipeline.services import open_services
        from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow

        async with open_services() as services:
            return await GenerateWorkflow(services).enqueue(task_id, triggered_by=TriggerSource.MANUAL)

    def enqueue(self, task_id: str) -> None:
        logger.info(f"\n=== Enqueue thumbnail generation for {task_id} ===")
        body = asyncio.run(self._enqueue(task_id))
        logger.info(f"[SUCCESS] {json.dumps(body)}")

    async def _runs(self, status: Optional[str], workflow: Optional[str], limit: int) -> list:
        from crm_workflows.pipeline.services import open_services

        async with open_services() as services:
            return await services.registry.list_runs(workflow_name=workflow, status=status, limit=limit)

    def runs(self, status: Optional[str] = None, workflow: Optional[str] = None, limit: int = 20) -> None:
        logger.info("\n=== Workflow runs ===")
        runs = asyncio.run(self._runs(status, workflow, limit))
        if not runs:
            logger.info("  (none)")
        for r in runs:
            created = r.created_at.isoformat(timespec="seconds") if r.created_at else "-"
            line = f"  {r.id}  {r.workflow_name:<20} {r.status:<8} {created}  {r.idempotency_key}"
            if r.error_message:
                line += f"  [{r.error_message[:80]}]"
            logger.info(line)

    async def _retry(self, run_id: str) -> dict:
        from crm_workflows.pipeline.flow_resolver import resolve_workflow
        from crm_workflows.pipeline.services import open_services
        from crm_workflows.pipeline.workflows.generate.runner import GenerateWorkflow

        async with open_services() as services:
            run = await services.registry.get_run(run_id)
            if run is None:
                raise LookupError(f"Run {run_id} not found")
            workflow = resolve_workflow(run.workflow_name, services)
            if isinstance(workflow, GenerateWorkflow):
                run = await workflow.retry(run)
                return {"run_id": str(run.id), "status": run.status, "queued": True}
            outcome = await workflow.retry(run)
            return outcome.to_dict()

    def retry(self, run_id: str) -> None:
        logger.info(f"\n=== Retry run {run_id} ===")
        body = asyncio.run(self._retry(run_id))
        logger.info(f"[SUCCESS] {json.dumps(body, default=str)}")


# ═══════════════════════════════════════════════════════════
#  Service Processes
# ═══════════════════════════════════════════════════════════

class ServiceRunner:
    """Foreground processes: API, worker, beat, migrations."""

    def _exec(self, cmd: List[str]) -> None:
        logger.info(f"[STEP] Running: {' '.join(cmd)}")
        try:
            subprocess.run(cmd, check=True, cwd=BACKEND_DIR)
        except KeyboardInterrupt:
            logger.info("\n[SUCCESS] Stopped")

    def serve(self, port: str = "8000") -> None:
        logger.info("\n=== API server ===")
        self._exec(["uvicorn", "crm_workflows.main:app", "--host", "0.0.0.0", "--port", port])

    def worker(self) -> None:
        logger.info("\n=== Celery worker ===")
        self._exec(["celery", "-A", "crm_workflows.tasks", "worker", "-Q", "workflows,default", "-l", "info"])

    def beat(self) -> None:
        logger.info("\n=== Celery beat (drain supervisor + reaper) ===")
        self._exec(["celery", "-A", "crm_workflows.tasks", "beat", "-l", "info"])

    def migrate(self) -> None:
        logger.info("\n=== Database migrations ===")
        self._exec(["alembic", "upgrade", "head"])
        logger.info("[SUCCESS] Database migrations applied!")

    def test(self, base_url: str = "http://localhost:8000") -> None:
        """Smoke-test a running API."""
        import httpx

        logger.info("\n=== Smoke test ===")
        try:
            logger.info("[STEP] Testing API health…")
            data = httpx.get(f"{base_url}/health", timeout=10).json()
            logger.info(f"[SUCCESS] API: status={data.get('status')} env={data.get('env')}")
        except httpx.HTTPError as exc:
            logger.error(f"[ERROR] API health check failed: {exc}")
            return

        try:
            logger.info("[STEP] Testing run listing…")
            resp = httpx.get(f"{base_url}/api/v1/workflow-runs", params={"limit": 1}, timeout=10)
            resp.raise_for_status()
            logger.info("[SUCCESS] Run registry is reachable")
        except httpx.HTTPError as exc:
            logger.error(f"[ERROR] Run listing failed: {exc}")


# ═══════════════════════════════════════════════════════════
#  CLI
# ═══════════════════════════════════════════════════════════

_C = ColorFormatter.COLORS

USAGE = f"""
{_C['HEADER']}CRM Workflow Orchestrator — operator tool{_C['RESET']}
{'═' * 50}

{_C['BOLD']}Usage:{_C['RESET']} python manage.py <command> [options]

{_C['BOLD']}Commands:{_C['RESET']}
    {_C['INFO']}drain{_C['RESET']}             Drain one generate-thumbnail batch (--all: until empty)
    {_C['INFO']}reap{_C['RESET']}              Recover runs with expired leases
    {_C['INFO']}enqueue{_C['RESET']} TASK_ID   Queue thumbnail generation for a task
    {_C['INFO']}runs{_C['RESET']}              List runs (--status=, --workflow=, --limit=)
    {_C['WARNING']}retry{_C['RESET']} RUN_ID      Retry a failed or skipped run
    {_C['INFO']}serve{_C['RESET']}             Start the API (--port=8000)
    {_C['INFO']}worker{_C['RESET']}            Start a Celery worker
    {_C['INFO']}beat{_C['RESET']}              Start Celery beat
    {_C['INFO']}migrate{_C['RESET']}           Run Alembic migrations
    {_C['INFO']}test{_C['RESET']}              Smoke-test a running API (--url=)

{_C['BOLD']}Examples:{_C['RESET']}
    python manage.py enqueue 86a1b2c3d
    python manage.py drain --all
    python manage.py runs --status=failed --workflow=schedule
"""


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(USAGE)
        sys.exit(0)

    command = sys.argv[1]
    opts = sys.argv[2:]
    args = [o for o in opts if not o.startswith("--")]

    ops = WorkflowOps()
    services = ServiceRunner()

    try:
        if command == "drain":
            ops.drain(until_empty="--all" in opts)
        elif command == "reap":
            ops.reap()
        elif command == "enqueue":
            if not args:
                logger.error("enqueue needs a TASK_ID")
                sys.exit(1)
            ops.enqueue(args[0])
        elif command == "runs":
            ops.runs(
                status=_option(opts, "status"),
                workflow=_option(opts, "workflow"),
                limit=int(_option(opts, "limit") or 20),
            )
        elif command == "retry":
            if not args:
                logger.error("retry needs a RUN_ID")
                sys.exit(1)
            ops.retry(args[0])
        elif command == "serve":
            services.serve(port=_option(opts, "port") or "8000")
        elif command == "worker":
            services.worker()
        elif command == "beat":
            services.beat()
        elif command == "migrate":
            services.migrate()
        elif command == "test":
            services.test(base_url=_option(opts, "url") or "http://localhost:8000")
        else:
            logger.error(f"Unknown command: {command}")
            print(USAGE)
            sys.exit(1)
    except Exception as exc:
        logger.error(f"Operation failed: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
