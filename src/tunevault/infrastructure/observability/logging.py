"""Structured logging configuration with JSON formatting and sync run ids."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, every sync run gets a short id that is stamped on EVERY log line emitted
# while it runs - scanner thread included, because asyncio.to_thread copies the context.
# When someone says "the 3am sync marked half my library removed", grep for that run id and
# you see the whole story. Default "" covers startup and management calls.
sync_run_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "sync_run_id", default=""
)


def get_sync_run_id() -> str:
    """Get the current sync run id from context ("" if none)."""
    return sync_run_id_var.get()


def set_sync_run_id(run_id: str | None = None) -> str:
    """Set the sync run id in context, generating one if not given.

    Args:
        run_id: Id to set. If None, a new short UUID is generated

    Returns:
        The id that was set
    """
    if run_id is None:
        run_id = uuid.uuid4().hex[:12]
    sync_run_id_var.set(run_id)
    return run_id


class SyncRunIdFilter(logging.Filter):
    """Add sync_run_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.sync_run_id = get_sync_run_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Formatter that prints exception chains compactly, root cause first.

    Example output:
    12:00:01 │ ERROR   │ tunevault.application.services.sync_service:120 │ Remote source 1 failed
    ╰─► httpx.ConnectError: All connection attempts failed
        File "spotify_client.py", line 210, in _request
          response = await client.send(request)
    ╰─► UnexpectedStatus: Unexpected status 503 from albums
    """

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        run_id = getattr(record, "sync_run_id", "")
        return f"[{run_id}] {text}" if run_id else text

    def formatException(self, ei: Any) -> str:
        _exc_type, exc_value, _exc_tb = ei
        if exc_value is None:
            return ""

        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__
        chain.reverse()

        lines: list[str] = []
        for exc in chain:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            # Only our own frames - library internals are noise in container logs
            for frame in traceback.extract_tb(exc.__traceback__):
                if "/site-packages/" in frame.filename or "tunevault" not in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")
        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """JSON formatter with level, logger and location fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        run_id = getattr(record, "sync_run_id", "")
        if run_id:
            log_record["sync_run_id"] = run_id

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)


# Listen future me, call this ONCE at startup. It replaces every handler on the root logger
# (so tests and reloads don't stack handlers) and quiets httpx/aiosqlite, which otherwise
# log every single request and statement at INFO/DEBUG.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "tunevault",
) -> None:
    """Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for logs (recommended for production)
        app_name: Application name to include in logs
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(SyncRunIdFilter())

    if json_format:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
