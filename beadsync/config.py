"""beadsync configuration."""
import os


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


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default

# bd executable and on-disk layout
BD_COMMAND = os.getenv("BEADSYNC_BD_COMMAND", "bd")
BEADS_DIR_NAME = ".beads"
DATA_FILE = os.getenv("BEADSYNC_DATA_FILE", ".beads/issues.jsonl")
MIN_DEPENDENCY_VERSION = os.getenv("BEADSYNC_MIN_DEPENDENCY_VERSION", "0.29.0")

# CLI execution policy defaults
CLI_TIMEOUT_MS = _env_int("BEADSYNC_CLI_TIMEOUT_MS", 15000)
CLI_RETRY_COUNT = _env_int("BEADSYNC_CLI_RETRY_COUNT", 1)
CLI_RETRY_BACKOFF_MS = _env_int("BEADSYNC_CLI_RETRY_BACKOFF_MS", 500)
CLI_OFFLINE_THRESHOLD_MS = _env_int("BEADSYNC_CLI_OFFLINE_THRESHOLD_MS", 30000)
CLI_MAX_BUFFER_BYTES = _env_int("BEADSYNC_CLI_MAX_BUFFER_BYTES", 10 * 1024 * 1024)

# Snapshot store tuning
WATCH_DEBOUNCE_MS = _env_int("BEADSYNC_WATCH_DEBOUNCE_MS", 750)
STALE_THRESHOLD_HOURS = _env_float("BEADSYNC_STALE_THRESHOLD_HOURS", 24.0)

# Observability
OTEL_ENABLED = _env_bool("BEADSYNC_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("BEADSYNC_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("BEADSYNC_OTEL_SERVICE_NAME", "beadsync")
PROM_PORT = _env_int("BEADSYNC_PROM_PORT", 0)
