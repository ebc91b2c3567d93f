"""Runtime settings for the Pioneer backend.

Everything tunable lives on ``Settings``; the app builds one instance at
startup and hands it to the loop, the interlock and the HTTP clients.
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

_BACKEND_DIR = Path(__file__).resolve().parent


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int, min_value: int, max_value: int) -> int:
    raw = os.getenv(name)
    if raw in (None, ""):
        value = default
    else:
        try:
            value = int(raw)
        except ValueError:
            value = default
    return max(min_value, min(max_value, value))


def _env_float(name: str, default: float, min_value: float, max_value: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        value = default
    else:
        try:
            value = float(raw)
        except ValueError:
            value = default
    return max(min_value, min(max_value, value))


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Application configuration."""

    model_config = ConfigDict(protected_namespaces=())

    # LLM
    anthropic_api_key: Optional[str] = None
    anthropic_api_url: str = "https://api.anthropic.com/v1/messages"
    anthropic_version: str = "2023-06-01"
    anthropic_model: str = "claude-sonnet-4-5"
    anthropic_max_tokens: int = 4096
    llm_timeout_sec: float = 90.0
    llm_max_retry_attempts: int = 3
    llm_retry_backoff_base_sec: float = 1.5

    # Publishing aggregator
    late_api_key: Optional[str] = None
    late_base_url: str = "https://getlate.dev/api/v1"
    late_profile_id: str = ""
    publish_timezone: str = "America/Puerto_Rico"

    # Image provider
    replicate_api_token: Optional[str] = None
    replicate_base_url: str = "https://api.replicate.com/v1"
    image_markup_multiplier: float = 5.0

    # App
    app_url: str = "http://localhost:3000"
    cors_origins: list[str] = ["http://localhost:3000"]
    oauth_cookie_secret: str = "pioneer-dev-cookie-secret"
    oauth_cookie_secure: bool = False
    cron_secret: Optional[str] = None

    # Loop bounds
    max_tool_use_iterations: int = 7
    max_end_turn_retries: int = 2

    # Context summaries
    summary_min_new_messages: int = 10
    summary_window_messages: int = 50

    # Telemetry
    telemetry_enabled: bool = True
    telemetry_path: Path = _BACKEND_DIR / "guardian_telemetry.log"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Build settings from the process environment (and backend/.env)."""
        load_dotenv(dotenv_path=env_file or (_BACKEND_DIR / ".env"), override=False)
        origins = _env("CORS_ORIGINS", "http://localhost:3000") or ""
        telemetry_log = _env("GUARDIAN_TELEMETRY_LOG", "guardian_telemetry.log")
        return cls(
            anthropic_api_key=_env("ANTHROPIC_API_KEY"),
            anthropic_api_url=_env("ANTHROPIC_API_URL", "https://api.anthropic.com/v1/messages"),
            anthropic_model=_env("ANTHROPIC_MODEL", "claude-sonnet-4-5"),
            anthropic_max_tokens=_env_int("ANTHROPIC_MAX_TOKENS", 4096, 256, 16000),
            llm_timeout_sec=_env_float("LLM_TIMEOUT_SEC", 90.0, 5.0, 300.0),
            llm_max_retry_attempts=_env_int("LLM_MAX_RETRY_ATTEMPTS", 3, 1, 6),
            llm_retry_backoff_base_sec=_env_float("LLM_RETRY_BACKOFF_BASE_SEC", 1.5, 0.0, 10.0),
            late_api_key=_env("LATE_API_KEY"),
            late_base_url=(_env("LATE_API_BASE", "https://getlate.dev/api/v1") or "").rstrip("/"),
            late_profile_id=_env("LATE_PROFILE_ID", "") or "",
            publish_timezone=_env("PUBLISH_TIMEZONE", "America/Puerto_Rico"),
            replicate_api_token=_env("REPLICATE_API_TOKEN"),
            image_markup_multiplier=_env_float("IMAGE_MARKUP_MULTIPLIER", 5.0, 1.0, 20.0),
            app_url=(_env("APP_URL", "http://localhost:3000") or "").rstrip("/"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            oauth_cookie_secret=_env("OAUTH_COOKIE_SECRET", _env("LATE_API_KEY", "pioneer-dev-cookie-secret")),
            oauth_cookie_secure=_env_bool("OAUTH_COOKIE_SECURE", False),
            cron_secret=_env("CRON_SECRET"),
            max_tool_use_iterations=_env_int("MAX_TOOL_USE_ITERATIONS", 7, 1, 20),
            max_end_turn_retries=_env_int("MAX_END_TURN_RETRIES", 2, 0, 5),
            summary_min_new_messages=_env_int("SUMMARY_MIN_NEW_MESSAGES", 10, 1, 200),
            summary_window_messages=_env_int("SUMMARY_WINDOW_MESSAGES", 50, 5, 500),
            telemetry_enabled=_env_bool("GUARDIAN_TELEMETRY_ENABLED", True),
            telemetry_path=_BACKEND_DIR / telemetry_log,
        )
