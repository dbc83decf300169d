from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger
    from disk_wipefs.domain.models import StageResult, VerificationReport

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "DISK_WIPEFS_LOG_DIR",
        Path.home() / ".local" / "state" / "disk-wipefs" / "logs",
    )
)

# TRACE already exists in loguru at level 5, below DEBUG.


def _should_log_command_output(record) -> bool:
    """Command stdout/stderr dumps are only shown in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_cache(record) -> bool:
    """Filter lsblk cache hit logs."""
    message = record["message"].lower()

    if "cache hit" in message or "cached" in message:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return _should_log_command_output(record) and _should_log_cache(record)


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    file_logging: bool = True,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Fatal invocation errors (no root, no targets, missing tools)
    - WARNING: Best-effort sub-steps that failed
    - SUCCESS/INFO: Targets, stages, dry-run actions, summary
    - DEBUG: Every external command and its return code
    - TRACE: Command output and lsblk cache activity

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/disk-wipefs/logs)
        file_logging: Set False to only log to the console
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    if not file_logging:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning(f"Cannot create log directory {log_dir}: {error}; file logging disabled")
        return logger

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Every command (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Command output (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            backtrace=False,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <15} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        serialize=True,
        format="{message}",
    )

    return logger


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking an invocation with automatic timing.

    Logs start, completion and failure with the elapsed duration.

    Example:
        with operation_context("wipe", targets=["/dev/sdb"]) as log:
            log.info("Resolving targets")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.debug(f"{operation.capitalize()} started", **details)

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

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_target(device: str, job_id: str | None = None) -> Logger:
        """Logger for the per-target pipeline."""
        if job_id is None:
            job_id = f"{os.path.basename(device)}-{uuid.uuid4().hex[:6]}"
        return logger.bind(
            job_id=job_id, source="pipeline", tags=["pipeline", "target"], device=device
        )

    @staticmethod
    def for_resolver() -> Logger:
        """Logger for target resolution and protection rules."""
        return logger.bind(source="resolver", tags=["resolver"])

    @staticmethod
    def for_devices() -> Logger:
        """Logger for lsblk device enumeration."""
        return logger.bind(source="devices", tags=["devices", "lsblk"])

    @staticmethod
    def for_commands() -> Logger:
        """Logger for external command execution."""
        return logger.bind(source="command", tags=["command"])

    @staticmethod
    def for_gateway() -> Logger:
        """Logger for mount, swap, LVM and device-mapper state changes."""
        return logger.bind(source="gateway", tags=["gateway", "lvm", "dm"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, privilege and tool checks)."""
        return logger.bind(source="system", tags=["system"])


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Provides methods for logging pipeline events with consistent
    structure and fields.
    """

    @staticmethod
    def log_target_started(log: Logger, device: str, mode: str, **extra) -> None:
        """Log the start of a target's pipeline."""
        log.info(
            f"=== Processing {device} ===",
            event_type="target_started",
            device=device,
            execution_mode=mode,
            **extra,
        )

    @staticmethod
    def log_stage_result(log: Logger, result: StageResult, **extra) -> None:
        """Log the aggregated outcome of one stage."""
        fields = dict(
            event_type="stage_result",
            stage=result.stage,
            device=result.device,
            status=result.status.value,
            warnings=len(result.warnings),
            **extra,
        )
        if result.status.value == "warned":
            log.warning(
                f"Stage {result.stage} finished with {len(result.warnings)} warning(s)",
                **fields,
            )
        elif result.status.value == "failed":
            log.error(f"Stage {result.stage} failed: {result.message}", **fields)
        else:
            log.info(f"Stage {result.stage} {result.status.value}", **fields)

    @staticmethod
    def log_verification(log: Logger, report: VerificationReport, **extra) -> None:
        """Log the post-pipeline verification report."""
        if report.is_clean:
            log.success(
                f"{report.device} appears clean (no partitions or PVs detected)",
                event_type="verification",
                device=report.device,
                clean=True,
                **extra,
            )
            return
        log.info(
            f"After cleanup, {report.device} still shows residual state",
            event_type="verification",
            device=report.device,
            clean=False,
            partitions=list(report.partitions),
            physical_volumes=list(report.physical_volumes),
            **extra,
        )
