"""Runtime configuration for the job store, queue, worker and HTTP API."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_BACKENDS = ("echo", "command")


@dataclass(slots=True)
class QueueSettings:
    """Queue store and redelivery policy."""

    db_path: Path | None = None
    name: str = "llm-jobs"
    visibility_timeout_seconds: int = 900
    max_receive_count: int = 5
    retry_delay_seconds: int = 30


@dataclass(slots=True)
class WorkerSettings:
    """Consumer behaviour for the continuous worker and the batch consumer."""

    worker_id: str = field(default_factory=lambda: f"{socket.gethostname()}-{os.getpid()}")
    continuous: bool = True
    receive_wait_seconds: float = 1.0
    poll_interval_seconds: float = 1.0
    batch_size: int = 5
    cancel_poll_interval_seconds: float = 0.25
    queued_timeout_seconds: int = 0


@dataclass(slots=True)
class ExecutorSettings:
    """Task executor selection."""

    backend: str = "echo"
    command_template: str = ""
    timeout_seconds: int = 600
    echo_delay_seconds: float = 0.0


@dataclass(slots=True)
class ApiSettings:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: tuple[str, ...] = ()


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".jobline.db")
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5_000

    @property
    def queue_db_path(self) -> Path:
        """Queue database; shares the job store file unless configured."""

        return self.queue.db_path or self.db_path

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        queue_db_path = os.getenv("JOBLINE_QUEUE_DB_PATH", "").strip()
        worker_id = os.getenv("JOBLINE_WORKER_ID", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("JOBLINE_DB_PATH", ".jobline.db")),
            queue=QueueSettings(
                db_path=Path(queue_db_path) if queue_db_path else None,
                name=os.getenv("JOBLINE_QUEUE_NAME", "llm-jobs"),
                visibility_timeout_seconds=_env_int(
                    "JOBLINE_QUEUE_VISIBILITY_TIMEOUT_SECONDS",
                    default=900,
                ),
                max_receive_count=_env_int("JOBLINE_QUEUE_MAX_RECEIVE_COUNT", default=5),
                retry_delay_seconds=_env_int("JOBLINE_QUEUE_RETRY_DELAY_SECONDS", default=30),
            ),
            worker=WorkerSettings(
                worker_id=worker_id or f"{socket.gethostname()}-{os.getpid()}",
                continuous=_env_bool("JOBLINE_WORKER_CONTINUOUS", default=True),
                receive_wait_seconds=_env_float(
                    "JOBLINE_WORKER_RECEIVE_WAIT_SECONDS",
                    default=1.0,
                ),
                poll_interval_seconds=_env_float(
                    "JOBLINE_WORKER_POLL_INTERVAL_SECONDS",
                    default=1.0,
                ),
                batch_size=_env_int("JOBLINE_WORKER_BATCH_SIZE", default=5),
                cancel_poll_interval_seconds=_env_float(
                    "JOBLINE_WORKER_CANCEL_POLL_INTERVAL_SECONDS",
                    default=0.25,
                ),
                queued_timeout_seconds=_env_int(
                    "JOBLINE_WORKER_QUEUED_TIMEOUT_SECONDS",
                    default=0,
                ),
            ),
            executor=ExecutorSettings(
                backend=os.getenv("JOBLINE_EXECUTOR_BACKEND", "echo").strip().lower(),
                command_template=os.getenv("JOBLINE_EXECUTOR_COMMAND_TEMPLATE", ""),
                timeout_seconds=_env_int("JOBLINE_EXECUTOR_TIMEOUT_SECONDS", default=600),
                echo_delay_seconds=_env_float("JOBLINE_EXECUTOR_ECHO_DELAY_SECONDS", default=0.0),
            ),
            api=ApiSettings(
                host=os.getenv("JOBLINE_API_HOST", "127.0.0.1"),
                port=_env_int("JOBLINE_API_PORT", default=8000),
                cors_origins=_collect_csv("JOBLINE_API_CORS_ORIGINS"),
            ),
            log_level=os.getenv("JOBLINE_LOG_LEVEL", "INFO").strip().upper(),
            sqlite_busy_timeout_ms=_env_int("JOBLINE_SQLITE_BUSY_TIMEOUT_MS", default=5_000),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot honour."""

        if self.queue.visibility_timeout_seconds <= 0:
            raise ValueError("JOBLINE_QUEUE_VISIBILITY_TIMEOUT_SECONDS must be > 0.")
        if self.queue.max_receive_count <= 0:
            raise ValueError("JOBLINE_QUEUE_MAX_RECEIVE_COUNT must be > 0.")
        if self.queue.retry_delay_seconds < 0:
            raise ValueError("JOBLINE_QUEUE_RETRY_DELAY_SECONDS must be >= 0.")
        if self.worker.batch_size <= 0:
            raise ValueError("JOBLINE_WORKER_BATCH_SIZE must be > 0.")
        if self.worker.queued_timeout_seconds < 0:
            raise ValueError("JOBLINE_WORKER_QUEUED_TIMEOUT_SECONDS must be >= 0.")
        if self.executor.backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported JOBLINE_EXECUTOR_BACKEND: {self.executor.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_BACKENDS)}.",
            )
        if self.executor.backend == "command" and not self.executor.command_template.strip():
            raise ValueError(
                "JOBLINE_EXECUTOR_COMMAND_TEMPLATE is required for the command backend.",
            )
        if self.executor.timeout_seconds <= 0:
            raise ValueError("JOBLINE_EXECUTOR_TIMEOUT_SECONDS must be > 0.")


def _collect_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_int(name: str, *, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, *, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
