"""
Celery settings for the workflow worker and beat.

Read via `celery_app.config_from_object("celeryconfig")` in
crm_workflows/tasks/__init__.py.  Redis URLs and beat intervals share the
settings object used by the API process.
"""

from crm_workflows.core.config import settings

# ═══════════════════════════════════════════════════════════
#  Redis broker / results, JSON payloads
# ═══════════════════════════════════════════════════════════

broker_url = settings.CELERY_BROKER_URL
result_backend = settings.CELERY_RESULT_BACKEND
result_expires = 86400

task_serializer = "json"
result_serializer = "json"
accept_content = ["json"]

timezone = "UTC"
enable_utc = True

# ═══════════════════════════════════════════════════════════
#  Drain execution
# ═══════════════════════════════════════════════════════════

# Ack after completion; a lost drain is re-kicked by beat anyway
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1

# Five runs with image generation and pacing fit well inside this
task_soft_time_limit = 1500
task_time_limit = 1560

# genai / supabase clients hold memory
worker_max_tasks_per_child = 50
worker_send_task_events = False
task_send_sent_event = False

# Dedicated worker:  celery -A crm_workflows.tasks worker -Q workflows
task_routes = {
    "crm_workflows.tasks.queue_tasks.*": {"queue": "workflows"},
}
task_default_queue = "default"

# ═══════════════════════════════════════════════════════════
#  Beat: drain supervisor + lease reaper
# ═══════════════════════════════════════════════════════════

beat_schedule = {
    "drain-generate-thumbnail-queue": {
        "task": "crm_workflows.tasks.queue_tasks.drain_generate_queue",
        "schedule": float(settings.DRAIN_SUPERVISOR_INTERVAL_SECONDS),
    },
    "reap-expired-runs": {
        "task": "crm_workflows.tasks.queue_tasks.reap_expired_runs",
        "schedule": float(settings.REAPER_INTERVAL_SECONDS),
    },
}
