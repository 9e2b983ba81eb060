"""
Runtime configuration read from the environment (and a local .env file).
"""
from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        parsed = float(raw)
        if parsed <= 0:
            return default
        return parsed
    except ValueError:
        return default


def _env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        parsed = int(raw)
        if parsed <= 0:
            return default
        return parsed
    except ValueError:
        return default


class Settings(BaseModel):
    gemini_project_id: str | None = None
    gemini_location: str = "us-central1"

    # Output location for generated assets, e.g. gs://my-bucket/generated
    gcs_storage_uri: str | None = None
    gcs_endpoint: str = "https://storage.googleapis.com"
    gcs_hmac_access_key_id: str | None = None
    gcs_hmac_secret: str | None = None

    # When unset the engine calls the generation endpoints in-process.
    generation_api_url: str | None = None
    generation_http_timeout_seconds: float = 600.0

    video_poll_interval_seconds: float = 5.0
    video_max_polls: int = 60

    log_level: str = "INFO"
    cors_origin_regex: str = r"^http:\/\/localhost:\d+$|^http:\/\/127\.0\.0\.1:\d+$"


def load_settings() -> Settings:
    """Build settings from the current environment."""
    defaults = Settings()
    return Settings(
        gemini_project_id=_env_str("GEMINI_PROJECT_ID"),
        gemini_location=_env_str("GEMINI_LOCATION", defaults.gemini_location),
        gcs_storage_uri=_env_str("GCS_STORAGE_URI"),
        gcs_endpoint=_env_str("GCS_ENDPOINT", defaults.gcs_endpoint),
        gcs_hmac_access_key_id=_env_str("GCS_HMAC_ACCESS_KEY_ID"),
        gcs_hmac_secret=_env_str("GCS_HMAC_SECRET"),
        generation_api_url=_env_str("GENERATION_API_URL"),
        generation_http_timeout_seconds=_env_positive_float(
            "GENERATION_HTTP_TIMEOUT_SECONDS", defaults.generation_http_timeout_seconds
        ),
        video_poll_interval_seconds=_env_positive_float(
            "VIDEO_POLL_INTERVAL_SECONDS", defaults.video_poll_interval_seconds
        ),
        video_max_polls=_env_positive_int("VIDEO_MAX_POLLS", defaults.video_max_polls),
        log_level=(_env_str("LOG_LEVEL", defaults.log_level) or defaults.log_level).upper(),
        cors_origin_regex=_env_str("CORS_ORIGIN_REGEX", defaults.cors_origin_regex),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (cached)."""
    return load_settings()
