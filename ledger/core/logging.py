"""
Structured Logging Infrastructure

JSON log records carrying two kinds of context:
- a correlation ID per HTTP request or Celery task run
- the ledger context of the money operation in progress (order, user,
  operation), so every wallet write logged deep inside a payout or a
  settlement can be tied back to the order that caused it
"""
import logging
import json
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from functools import wraps
from typing import Any, Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
ledger_context_var: ContextVar[dict[str, Any]] = ContextVar("ledger_context", default={})

_app_name = "commission-ledger"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "app": _app_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        context = ledger_context_var.get()
        if context:
            log_entry["ledger"] = context

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry["extra"] = extra_data

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """Logger whose level methods all accept an ``extra_data`` dict"""

    def _log(self, level, msg, args, extra_data: dict[str, Any] | None = None, **kwargs):
        if extra_data:
            extra = dict(kwargs.get("extra") or {})
            extra["extra_data"] = extra_data
            kwargs["extra"] = extra
        # skip this frame so module/line point at the caller
        kwargs["stacklevel"] = kwargs.get("stacklevel", 1) + 1
        super()._log(level, msg, args, **kwargs)


logging.setLoggerClass(StructuredLogger)


class LedgerContextFilter(logging.Filter):
    """Stamps correlation ID and ledger context onto records for the text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        context = ledger_context_var.get()
        record.ledger_context = (
            " ".join(f"{key}={value}" for key, value in context.items()) or "-"
        )
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "commission-ledger"
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON records for production, a readable line otherwise
        app_name: Application name stamped on every JSON record
    """
    global _app_name
    _app_name = app_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] "
            "[%(ledger_context)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        handler.addFilter(LedgerContextFilter())

    root_logger.addHandler(handler)

    # every statement of a payout would otherwise be echoed
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation ID, generating and persisting one if not set"""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


@contextmanager
def ledger_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Attach order/user/operation fields to every record logged inside the block.

    Nested blocks add to the outer context; None values are dropped.
    """
    context = {**ledger_context_var.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = ledger_context_var.set(context)
    try:
        yield context
    finally:
        ledger_context_var.reset(token)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """Log start, completion or failure of an async operation with its duration"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()

            with ledger_context(operation=operation_name):
                logger.debug(f"Starting {operation_name}")
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(
                        f"Failed {operation_name}: {e}",
                        extra_data={
                            "status": "failed",
                            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                            "error": str(e),
                        },
                        exc_info=True
                    )
                    raise

                logger.info(
                    f"Completed {operation_name}",
                    extra_data={
                        "status": "completed",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    }
                )
            return result

        return wrapper
    return decorator
