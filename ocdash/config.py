"""OCDash Backend Configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _default_storage_root() -> Path:
    data_home = os.getenv("XDG_DATA_HOME")
    base = Path(data_home) if data_home else Path.home() / ".local" / "share"
    return base / "opencode" / "storage"


# Artifact tree written by the agent runtime (session/, message/, part/)
STORAGE_ROOT = Path(os.getenv("OCDASH_STORAGE_ROOT", "") or _default_storage_root())
PROJECT_ROOT = Path(os.getenv("OCDASH_PROJECT_ROOT", "") or os.getcwd())

# Engine tuning
POLL_INTERVAL_MS = _env_int("OCDASH_POLL_INTERVAL_MS", 2000)
RECENT_MESSAGE_CAP = _env_int("OCDASH_RECENT_MESSAGE_CAP", 200)
TIMESERIES_WINDOW_MS = _env_int("OCDASH_TIMESERIES_WINDOW_MS", 300_000)
TIMESERIES_BUCKET_MS = _env_int("OCDASH_TIMESERIES_BUCKET_MS", 2_000)
WATCH_ENABLED = _env_bool("OCDASH_WATCH_ENABLED", True)

# Observability
OTEL_ENABLED = _env_bool("OCDASH_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("OCDASH_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("OCDASH_OTEL_SERVICE_NAME", "ocdash-backend")
PROM_PORT = _env_int("OCDASH_PROM_PORT", 9464)

# Server settings
HOST = os.getenv("OCDASH_HOST", "127.0.0.1")
PORT = _env_int("OCDASH_PORT", 51234)

# CORS
FRONTEND_ORIGIN = os.getenv("OCDASH_FRONTEND_ORIGIN", "http://localhost:5173")
