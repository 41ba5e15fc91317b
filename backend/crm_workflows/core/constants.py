"""Shared constants and enums used across the application."""

from enum import StrEnum


class WorkflowName(StrEnum):
    """Pipeline definitions known to the orchestrator."""

    SCHEDULE = "schedule"
    GENERATE_THUMBNAIL = "generate-thumbnail"


class RunStatus(StrEnum):
    """Lifecycle status of a workflow run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.SKIPPED})

# Workflows whose queued rows are drained by the worker rather than run inline
QUEUE_DRAINED_WORKFLOWS = frozenset({WorkflowName.GENERATE_THUMBNAIL})


class StepStatus(StrEnum):
    """Status of an individual step row."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggerSource(StrEnum):
    """Provenance of a workflow run."""

    WEBHOOK = "webhook"
    QUEUE = "queue"
    MANUAL = "manual"


class SocialNetwork(StrEnum):
    """Scheduler network identifiers."""

    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    LINKEDIN = "LINKEDIN"
    THREADS = "THREADS"
    TIKTOK = "TIKTOK"
    TWITTER = "TWITTER"
    GOOGLE_BUSINESS = "GOOGLE_MY_BUSINESS"
    YOUTUBE = "YOUTUBE"


class APIRequestMethod(StrEnum):
    """HTTP methods used by outbound integrations."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


# Longest error text persisted on a run or step row
MAX_ERROR_LENGTH = 2000

# Longest downstream response body captured in an ExternalServiceError
MAX_RESPONSE_BODY_LENGTH = 500
