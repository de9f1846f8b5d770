# report_compiler/core/config.py
"""Environment-driven settings for the report compiler."""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Built once per process by get_settings()."""

    database_url: str = "sqlite:///./report_compiler_config.db"
    data_warehouse_url: str = "sqlite:///./report_compiler_warehouse.db"

    cache_ttl_seconds: int = 300
    max_row_limit: int = 5000
    analytics_default_limit: int = 100
    preview_default_limit: int = 500
    async_model_threshold: int = 3

    poll_interval_seconds: float = 1.5
    poll_backoff: float = 1.5
    poll_max_interval_seconds: float = 10.0
    poll_max_attempts: int = 60

    api_url: str = "http://localhost:8000"
    application_id: str = "Unknown"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from the environment (and .env if present)."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        data_warehouse_url=os.getenv("DATA_WAREHOUSE_URL", Settings.data_warehouse_url),
        cache_ttl_seconds=_env_int("REPORT_CACHE_TTL_SECONDS", Settings.cache_ttl_seconds),
        max_row_limit=_env_int("REPORT_MAX_ROW_LIMIT", Settings.max_row_limit),
        analytics_default_limit=_env_int(
            "REPORT_ANALYTICS_DEFAULT_LIMIT", Settings.analytics_default_limit
        ),
        preview_default_limit=_env_int("REPORT_PREVIEW_DEFAULT_LIMIT", Settings.preview_default_limit),
        async_model_threshold=_env_int("REPORT_ASYNC_MODEL_THRESHOLD", Settings.async_model_threshold),
        poll_interval_seconds=_env_float("REPORT_POLL_INTERVAL_SECONDS", Settings.poll_interval_seconds),
        poll_backoff=_env_float("REPORT_POLL_BACKOFF", Settings.poll_backoff),
        poll_max_interval_seconds=_env_float(
            "REPORT_POLL_MAX_INTERVAL_SECONDS", Settings.poll_max_interval_seconds
        ),
        poll_max_attempts=_env_int("REPORT_POLL_MAX_ATTEMPTS", Settings.poll_max_attempts),
        api_url=os.getenv("REPORT_API_URL", Settings.api_url),
        application_id=os.getenv("APPLICATION_ID", Settings.application_id),
    )


def celery_always_eager() -> bool:
    """Whether Celery should run tasks inline (tests, local development)."""
    return _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
