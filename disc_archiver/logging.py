from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger
    from disc_archiver.app.context import AppContext

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "DISC_ARCHIVER_LOG_DIR",
        Path.home() / ".local" / "state" / "disc-archiver" / "logs",
    )
)


def _should_log_presence(record) -> bool:
    """Filter per-tick presence poll logs - only show in TRACE mode."""
    extra = record["extra"]
    tags = extra.get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "presence" in tags and extra.get("event_type") == "presence_poll":
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_progress(record) -> bool:
    """Filter copy progress logs - only show in TRACE mode."""
    if record["extra"].get("event_type") == "copy_progress":
        return record["level"].no <= logger.level("TRACE").no
    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_presence(record) and _should_log_progress(record)


def setup_logging(
    app_context: AppContext | None,
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        app_context: Application context receiving recent log entries
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/disc-archiver/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <15}</cyan> | "
            "<blue>{extra[job_id]: <15}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <15} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <15} | "
                "{extra[job_id]: <15} | "
                "{message}"
            ),
        )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    if app_context is not None:
        min_level = "TRACE" if trace else "DEBUG" if debug else "INFO"

        def _app_context_sink(message) -> None:
            record = message.record
            if record["level"].no >= logger.level(min_level).no:
                app_context.add_log(
                    record["message"],
                    level=record["level"].name.lower(),
                    tags=record["extra"].get("tags", []),
                    timestamp=record["time"],
                    source=record["extra"].get("source"),
                )

        logger.add(_app_context_sink, enqueue=True, filter=_combined_filter)

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["copy", "drive"])
        source: Source component (e.g., "drive", "presence", "web")
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion, and failure with duration tracking.

    Example:
        with operation_context("copy", device="/dev/sr0", volume="FOO") as log:
            log.debug("Opening device")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_drive(device_path: str) -> Logger:
        """Logger for one drive's lifecycle engine."""
        return logger.bind(
            job_id=device_path, source="drive", tags=["drive", "lifecycle"]
        )

    @staticmethod
    def for_inventory() -> Logger:
        """Logger for startup drive discovery."""
        return logger.bind(source="inventory", tags=["inventory", "hardware"])

    @staticmethod
    def for_presence() -> Logger:
        """Logger for disc presence polling."""
        return logger.bind(source="presence", tags=["presence", "hardware"])

    @staticmethod
    def for_actuator() -> Logger:
        """Logger for eject/close commands."""
        return logger.bind(source="actuator", tags=["actuator", "hardware"])

    @staticmethod
    def for_web(connection_id: str | None = None) -> Logger:
        """Logger for the operator web surface."""
        if connection_id is None:
            connection_id = "-"
        return logger.bind(
            source="web", tags=["web", "ws"], connection_id=connection_id
        )

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, shutdown, config)."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """
    Logger wrapper that throttles high-frequency log events.

    Used for copy progress so a multi-gigabyte disc does not emit a record
    per block.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def trace(self, key: str, message: str, **kwargs) -> None:
        """Log at TRACE level, throttled by key."""
        self._throttled_log("TRACE", key, message, **kwargs)

    def _throttled_log(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        last_time = self.last_log_time.get(key, 0)

        if now - last_time >= self.interval:
            log_method = getattr(self.log, level.lower())
            log_method(message, **kwargs)
            self.last_log_time[key] = now
