"""
Monitoring middleware and structured logging for the SLA engine.

Provides request timing, query counting, slow request logging and a JSON
log formatter that stamps every record with the current request id or
scheduler tick id.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sla_engine.core.clock import utcnow
from sla_engine.core.config import settings
from sla_engine.services.metrics_service import metrics_collector

logger = logging.getLogger(__name__)

# Context variables for request- and run-scoped data
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
tick_id_ctx: ContextVar[Optional[str]] = ContextVar("tick_id", default=None)
db_metrics_ctx: ContextVar[Optional["DatabaseMetrics"]] = ContextVar("db_metrics", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`
RESERVED_RECORD_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
))


@dataclass
class DatabaseMetrics:
    """Query count and time for a single request."""
    query_count: int = 0
    total_duration_ms: float = 0.0

    def add_query(self, duration_ms: float):
        self.query_count += 1
        self.total_duration_ms += duration_ms


def setup_db_event_listeners(engine: AsyncEngine):
    """
    Count and time queries per request.

    Call once during application startup.
    """
    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        starts = conn.info.get("query_start_time")
        if not starts:
            return
        duration_ms = (time.perf_counter() - starts.pop()) * 1000
        db_metrics = db_metrics_ctx.get()
        if db_metrics:
            db_metrics.add_query(duration_ms)

    logger.info("Database query timing listeners registered")


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


def get_tick_id() -> Optional[str]:
    """Get the current scheduler run ID from context."""
    return tick_id_ctx.get()


class MonitoringMiddleware(BaseHTTPMiddleware):
    """
    Performance monitoring middleware.

    Features:
    - Request ID tracking (X-Request-ID in and out)
    - Request timing and slow request logging
    - Database query counting
    - Prometheus request metrics
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_ctx.set(request_id)
        db_metrics_ctx.set(DatabaseMetrics())

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                "Request failed with exception",
                extra={
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "duration_ms": round(duration_ms, 2),
                    "error": str(e),
                    "event_type": "request_error"
                }
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        db_metrics = db_metrics_ctx.get()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        log_context = {
            "request_id": request_id,
            "method": method,
            "path": path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "db_query_count": db_metrics.query_count if db_metrics else 0,
            "event_type": "request_complete"
        }

        if duration_ms > settings.SLOW_REQUEST_THRESHOLD_MS:
            log_context["event_type"] = "slow_request"
            logger.warning(
                f"Slow request: {method} {path} took {duration_ms:.2f}ms",
                extra=log_context
            )
        elif settings.DEBUG or path.startswith("/api/"):
            logger.info(
                f"Request: {method} {path} - {response.status_code} - {duration_ms:.2f}ms",
                extra=log_context
            )

        metrics_collector.record_request(
            method=method,
            endpoint=path,
            status_code=response.status_code,
            duration_seconds=duration_ms / 1000
        )

        return response


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format for easy parsing by log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_ctx.get()
        if request_id:
            log_data["request_id"] = request_id

        tick_id = tick_id_ctx.get()
        if tick_id:
            log_data["tick_id"] = tick_id

        for key, value in record.__dict__.items():
            if key not in RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_structured_logging(log_level: str = "INFO", json_format: bool = True):
    """
    Configure application-wide structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, use JSON formatting; otherwise use standard format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if json_format:
        console_handler.setFormatter(StructuredJsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
                defaults={"request_id": "-"}
            )
        )

    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if settings.DEBUG else logging.WARNING
    )

    logger.info("Structured logging configured", extra={"json_format": json_format})
