"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "workflows_user"
    POSTGRES_PASSWORD: str = "workflows_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "crm_workflows"

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Sync URL for Alembic migrations (psycopg2)."""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # ── Supabase (CRM directory + blob storage) ──
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    STORAGE_BUCKET_NAME: str = "agent-assets"

    # ── Task tracker (ClickUp) ────────────────
    CLICKUP_API_BASE_URL: str = "https://api.clickup.com/api/v2"
    CLICKUP_API_TOKEN: str = ""
    CLICKUP_WEBHOOK_SECRET: str = ""
    CLICKUP_THUMBNAIL_FIELD_ID: str = "d1d4739b-5009-4cac-b8ec-a1e16de2be05"

    # ── Asset store (Shade) ───────────────────
    SHADE_API_BASE_URL: str = "https://api.shade.inc"
    SHADE_API_KEY: str = ""
    SHADE_DRIVE_ID: str = ""

    # ── Social scheduler (Metricool) ──────────
    METRICOOL_BASE_URL: str = "https://app.metricool.com"
    METRICOOL_API_KEY: str = ""

    # ── Google Gemini ────────────────────────
    GOOGLE_API_KEY: str = ""
    GEMINI_TITLE_MODEL: str = "gemini-2.5-flash"
    GEMINI_IMAGE_MODEL: str = "gemini-2.5-flash-image"

    # ── Compositor (Placid) ───────────────────
    PLACID_API_BASE_URL: str = "https://api.placid.app/api/rest"
    PLACID_API_TOKEN: str = ""
    PLACID_TEMPLATE_UUID: str = "nlhaoglryb9fg"

    # ── Outbound HTTP ─────────────────────────
    HTTP_TIMEOUT_SECONDS: float = 60.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_BACKOFF_CAP_MS: int = 8000

    # ── Queue drain ───────────────────────────
    DRAIN_BATCH_SIZE: int = 5
    DRAIN_ITEM_DELAY_MS: int = 5000
    DRAIN_SUPERVISOR_INTERVAL_SECONDS: int = 300

    # ── Run leases ────────────────────────────
    RUN_LEASE_SECONDS: int = 900
    REAPER_INTERVAL_SECONDS: int = 60

    # ── Schedule pipeline ─────────────────────
    SCHEDULE_GATE_STATUS: str = "ready to schedule"
    SCHEDULE_TIMEZONE: str = "America/New_York"
    FIELD_CLIENT_ID: str = "Client ID (Supabase)"
    FIELD_ASSET_ID: str = "Shade Asset ID"
    FIELD_PUBLISH_DATE: str = "Publish Date"

    # ── Generate pipeline ─────────────────────
    FIELD_TRANSCRIPT: str = "Video Transcription"
    FIELD_PROMPT: str = "Prompt"
    DEFAULT_BACKGROUND_PROMPT: str = (
        "A clean, modern professional office with soft natural lighting and subtle depth of field"
    )
    TITLE_FALLBACK_LENGTH: int = 40

    # ── Application ───────────────────────────
    APP_ENV: str = "development"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}


settings = Settings()
