"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "livesync.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

DEFAULT_API_BASE_URL = "http://localhost:8080/api"
DEFAULT_REQUEST_TIMEOUT = 10.0

# Job family reconciled by the engine
LEARNING_BUILD_JOB_TYPE = "learning_build"

TELEMETRY_BUFFER_KEY = "telemetry_buffer"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def resolve_api_base_url(env_value: str | None = None) -> str:
    """Resolve API_BASE_URL, without a trailing slash."""
    value = env_value or os.getenv("API_BASE_URL") or DEFAULT_API_BASE_URL
    return value.rstrip("/")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class ConnectionSettings:
    """Push-channel connect/retry tunables."""

    missing_token_delay: float = 2.0
    retry_base_delay: float = 1.0
    retry_factor: float = 2.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 0.25  # fraction of the delay
    recent_messages: int = 50


@dataclass
class JobSettings:
    """Job reconciliation tunables."""

    job_type: str = LEARNING_BUILD_JOB_TYPE
    poll_interval: float = 3.0
    progress_bucket: int = 5


@dataclass
class TelemetrySettings:
    """Telemetry queue tunables."""

    max_batch_size: int = 200
    flush_delay: float = 1.2
    flush_threshold: int = 40
    dedupe_ttl: float = 30.0
    max_persisted: int = 500
    max_age: float = 24 * 60 * 60
    storage_key: str = TELEMETRY_BUFFER_KEY
    schema_version: int = 1
    event_version: int = 1


@dataclass
class SyncSettings:
    """All tunables of one sync session."""

    connection: ConnectionSettings = field(default_factory=ConnectionSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings, applying overrides from the environment."""
        connection = ConnectionSettings(
            missing_token_delay=_env_float("SSE_MISSING_TOKEN_DELAY", 2.0),
            retry_base_delay=_env_float("SSE_RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("SSE_RETRY_MAX_DELAY", 30.0),
            retry_jitter=_env_float("SSE_RETRY_JITTER", 0.25),
        )
        jobs = JobSettings(
            job_type=os.getenv("JOB_TYPE", LEARNING_BUILD_JOB_TYPE),
            poll_interval=_env_float("JOB_POLL_INTERVAL", 3.0),
        )
        telemetry = TelemetrySettings(
            max_batch_size=_env_int("TELEMETRY_MAX_BATCH", 200),
            flush_delay=_env_float("TELEMETRY_FLUSH_DELAY", 1.2),
            flush_threshold=_env_int("TELEMETRY_FLUSH_THRESHOLD", 40),
            dedupe_ttl=_env_float("TELEMETRY_DEDUPE_TTL", 30.0),
        )
        return cls(connection=connection, jobs=jobs, telemetry=telemetry)
