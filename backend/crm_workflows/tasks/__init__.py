"""
Celery application factory.
"""

from celery import Celery
from celery.signals import worker_process_init

# Task modules imported when the worker boots
celery_app = Celery("crm_workflows", include=["crm_workflows.tasks.queue_tasks"])
celery_app.config_from_object("celeryconfig")


@worker_process_init.connect
def _configure_worker_logging(**kwargs) -> None:
    from crm_workflows.core.config import settings
    from crm_workflows.core.logging import setup_logging

    setup_logging("DEBUG" if settings.APP_ENV == "development" else "INFO")
