"""Application configuration: loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"

# Polling faster than this would hammer the backend
MIN_POLL_SECONDS = 5


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    PROJECT_ROOT: Path = _PROJECT_ROOT

    # Backend API (settings.json overrides .env)
    API_BASE_URL: str = _runtime.get(
        "api_base_url",
        os.getenv("API_BASE_URL", "http://localhost:8000/api"),
    )
    API_TOKEN: str = _runtime.get(
        "api_token",
        os.getenv("API_TOKEN", ""),
    )
    API_TIMEOUT: float = float(_runtime.get(
        "api_timeout",
        os.getenv("API_TIMEOUT", "15"),
    ))

    # Retry policy for transient failures
    RETRY_MAX_ATTEMPTS: int = int(_runtime.get(
        "retry_max_attempts",
        os.getenv("RETRY_MAX_ATTEMPTS", "3"),
    ))
    RETRY_BACKOFF_MS: int = int(_runtime.get(
        "retry_backoff_ms",
        os.getenv("RETRY_BACKOFF_MS", "1000"),
    ))

    # Polling intervals (seconds)
    WORK_ORDER_POLL_SECONDS: int = int(_runtime.get(
        "work_order_poll_seconds",
        os.getenv("WORK_ORDER_POLL_SECONDS", "30"),
    ))
    AGGREGATE_POLL_SECONDS: int = int(_runtime.get(
        "aggregate_poll_seconds",
        os.getenv("AGGREGATE_POLL_SECONDS", "300"),
    ))

    # Name recorded as requested_by on part requests and as comment author
    OPERATOR_NAME: str = _runtime.get(
        "operator_name",
        os.getenv("OPERATOR_NAME", "operator"),
    )

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_api_settings(cls, base_url: str, token: str, timeout: float):
        """Update backend connection settings at runtime and persist to disk."""
        cls.API_BASE_URL = base_url
        cls.API_TOKEN = token
        cls.API_TIMEOUT = timeout

        settings = _load_settings()
        settings["api_base_url"] = base_url
        settings["api_token"] = token
        settings["api_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_poll_intervals(cls, work_orders: int, aggregates: int):
        """Update polling intervals (in seconds) and persist."""
        cls.WORK_ORDER_POLL_SECONDS = max(work_orders, MIN_POLL_SECONDS)
        cls.AGGREGATE_POLL_SECONDS = max(aggregates, MIN_POLL_SECONDS)

        settings = _load_settings()
        settings["work_order_poll_seconds"] = cls.WORK_ORDER_POLL_SECONDS
        settings["aggregate_poll_seconds"] = cls.AGGREGATE_POLL_SECONDS
        _save_settings(settings)

    @classmethod
    def update_operator(cls, name: str):
        """Update the operator name and persist."""
        cls.OPERATOR_NAME = name
        settings = _load_settings()
        settings["operator_name"] = name
        _save_settings(settings)
