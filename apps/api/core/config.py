from functools import lru_cache
import logging
import os

from croniter import croniter


logger = logging.getLogger(__name__)


class Settings:
    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", "consent-lifecycle-api")
        self.app_version = os.getenv("APP_VERSION", "0.1.0")
        self.env = os.getenv("ENV", "dev").lower()
        if self.env not in {"dev", "test", "staging", "prod"}:
            raise RuntimeError("ENV must be one of: dev, test, staging, prod")
        self.log_level = os.getenv("LOG_LEVEL", "DEBUG" if self.env in {"dev", "test"} else "INFO").upper().strip()

        self.tenant_database_url_template = os.getenv("TENANT_DATABASE_URL_TEMPLATE", "").strip()
        if not self.tenant_database_url_template:
            if self.env == "prod":
                raise RuntimeError("TENANT_DATABASE_URL_TEMPLATE is required in prod")
            self.tenant_database_url_template = "postgresql+psycopg://postgres@localhost:5433/{database}"
            logger.warning("TENANT_DATABASE_URL_TEMPLATE not set, using local dev default")
        self.tenant_database_prefix = os.getenv("TENANT_DATABASE_PREFIX", "tenant_db_").strip()
        self.catalog_database = os.getenv("CATALOG_DATABASE", "postgres").strip()

        self.db_pool_size = int(os.getenv("DB_POOL_SIZE", "5"))
        self.db_max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "10"))
        self.db_pool_timeout = int(os.getenv("DB_POOL_TIMEOUT", "30"))
        self.db_pool_recycle = int(os.getenv("DB_POOL_RECYCLE", "1800"))
        self.auto_create_schema = os.getenv("AUTO_CREATE_SCHEMA", "false").lower() == "true"

        self.consent_handle_expiry_minutes = int(os.getenv("CONSENT_HANDLE_EXPIRY_MINUTES", "15"))

        self.scheduler_enabled = os.getenv("SCHEDULER_ENABLED", "false").lower() == "true"
        self.consent_handle_expiry_cron = os.getenv("SCHEDULER_CONSENT_HANDLE_EXPIRY_CRON", "* * * * *").strip()
        self.consent_expiry_cron = os.getenv("SCHEDULER_CONSENT_EXPIRY_CRON", "0 0 * * *").strip()

        self.notification_enabled = os.getenv("NOTIFICATION_ENABLED", "false").lower() == "true"
        self.notification_base_url = os.getenv("NOTIFICATION_BASE_URL", "http://localhost:9003").rstrip("/")
        self.notification_trigger_path = os.getenv("NOTIFICATION_TRIGGER_PATH", "/notification/v1/events/trigger")
        self.audit_enabled = os.getenv("AUDIT_ENABLED", "false").lower() == "true"
        self.audit_base_url = os.getenv("AUDIT_BASE_URL", "http://localhost:9005").rstrip("/")
        self.audit_path = os.getenv("AUDIT_PATH", "/audit/v1/audits")
        self.outbound_http_timeout_seconds = int(os.getenv("OUTBOUND_HTTP_TIMEOUT_SECONDS", "10"))

        self.dispatch_max_workers = int(os.getenv("DISPATCH_MAX_WORKERS", "4"))
        self.dispatch_queue_size = int(os.getenv("DISPATCH_QUEUE_SIZE", "100"))

        self.cors_allowed_origins = self._parse_cors_origins()
        self.validate()

    @property
    def notification_url(self) -> str:
        return f"{self.notification_base_url}{self.notification_trigger_path}"

    @property
    def audit_url(self) -> str:
        return f"{self.audit_base_url}{self.audit_path}"

    def _parse_cors_origins(self) -> list[str]:
        raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
        if raw.strip():
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        if self.env == "dev":
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        return []

    def validate(self) -> None:
        if "{database}" not in self.tenant_database_url_template:
            raise RuntimeError("TENANT_DATABASE_URL_TEMPLATE must contain a {database} placeholder")
        if not self.tenant_database_prefix:
            raise RuntimeError("TENANT_DATABASE_PREFIX must not be empty")
        if self.consent_handle_expiry_minutes <= 0:
            raise RuntimeError("CONSENT_HANDLE_EXPIRY_MINUTES must be > 0")
        if self.dispatch_max_workers <= 0 or self.dispatch_queue_size <= 0:
            raise RuntimeError("DISPATCH_MAX_WORKERS and DISPATCH_QUEUE_SIZE must be > 0")
        if self.outbound_http_timeout_seconds <= 0:
            raise RuntimeError("OUTBOUND_HTTP_TIMEOUT_SECONDS must be > 0")
        for name, expression in (
            ("SCHEDULER_CONSENT_HANDLE_EXPIRY_CRON", self.consent_handle_expiry_cron),
            ("SCHEDULER_CONSENT_EXPIRY_CRON", self.consent_expiry_cron),
        ):
            if not croniter.is_valid(expression):
                raise RuntimeError(f"{name} is not a valid cron expression")
        if self.env == "prod":
            if not self.cors_allowed_origins:
                raise RuntimeError("CORS_ALLOWED_ORIGINS must be explicitly set in prod")
            if self.auto_create_schema:
                raise RuntimeError("AUTO_CREATE_SCHEMA must be false in prod")
            if self.log_level == "DEBUG":
                raise RuntimeError("LOG_LEVEL=DEBUG is not allowed in prod")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()
