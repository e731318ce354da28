"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from answer_sync.config import settings

_configured = False


def configure_logging() -> None:
    """Install the console and rotating file sinks. Safe to call more than once."""
    global _configured
    if _configured:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    # Add console handler with color
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.app_log_level.upper(),
        colorize=True,
    )

    # Add file handler
    logger.add(
        log_dir / "answer_sync_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",  # New file at midnight
        retention="7 days",  # Keep logs for 7 days
        compression="zip",
    )

    # Reduce noise from framework/network libraries
    for logger_name in (
        "uvicorn",
        "uvicorn.error",
        "uvicorn.access",
        "fastapi",
        "httpx",
        "httpcore",
        "hpack",
        "asyncio",
    ):
        logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())

    _configured = True


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a database operation."""
    op_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "table": table,
        "status": status,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"DB_OPERATION_FAILED: {op_data}")
    else:
        logger.debug(f"DB_OPERATION: {op_data}")


def log_poll_outcome(
    snapshot_id: str,
    outcome: str,
    kind: Optional[str] = None,
    status_code: Optional[int] = None,
) -> None:
    """Log the result of one snapshot poll."""
    poll_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "snapshot_id": snapshot_id,
        "outcome": outcome,
        "kind": kind,
        "status_code": status_code,
    }
    if outcome == "transient_error":
        logger.warning(f"SNAPSHOT_POLL: {poll_data}")
    else:
        logger.info(f"SNAPSHOT_POLL: {poll_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
