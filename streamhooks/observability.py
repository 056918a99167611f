"""
Observability for StreamHooks.

1. **Structured Logging**
   - JSON log lines via python-json-logger, with every ``extra={...}``
     field included
   - Plain text format for development (``LOG_FORMAT=text``) and tests
     (``TESTING=true``)

2. **Prometheus Metrics**
   - HTTP request counters, duration histograms and in-flight gauge
   - Webhook notification counter, lifecycle phase gauge and shutdown
     step failure counter
   - Exposed at /metrics for Prometheus scraping

Usage:
    from streamhooks.observability import configure_logging, setup_observability

    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    app = FastAPI()
    setup_observability(app)
"""

import logging
import os
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from pythonjsonlogger import jsonlogger

SERVICE_NAME = os.getenv("SERVICE_NAME", "streamhooks")

# Standard LogRecord attributes, never copied as extra fields
RESERVED_LOG_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text", "filename",
    "funcName", "levelname", "levelno", "lineno", "module", "msecs",
    "message", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "thread", "threadName", "taskName",
    "service",
})


# =============================================================================
# Logging Configuration
# =============================================================================

class StructuredJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that includes the service name and all extra fields.

    Example output:
        {"timestamp": "2026-01-15T10:30:00Z", "level": "INFO",
         "logger": "streamhooks.lifecycle.startup",
         "message": "HTTP listening on port 8080", "service": "streamhooks",
         "port": 8080}
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs, timestamp=True)
        self.service_name = SERVICE_NAME

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self.service_name

        for key, value in record.__dict__.items():
            if key not in RESERVED_LOG_ATTRS and not key.startswith('_'):
                if key not in log_record:
                    log_record[key] = value


def configure_logging(level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure the root logger.

    In test mode (TESTING=true) the text format is always used to keep
    pytest output readable.
    """
    is_testing = os.getenv("TESTING", "false").lower() == "true"

    handler = logging.StreamHandler()
    if is_testing or log_format == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    else:
        handler.setFormatter(StructuredJsonFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # uvicorn propagates to the root logger (servers run with log_config=None)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers.clear()


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

http_requests_total = Counter(
    name="http_requests_total",
    documentation="Total number of HTTP requests processed",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    name="http_request_duration_seconds",
    documentation="HTTP request duration in seconds",
    labelnames=["method", "endpoint"]
)

active_requests = Gauge(
    name="active_requests",
    documentation="Number of HTTP requests currently being processed"
)

# Labelled by "online" (stream data present) or "offline" (empty payload)
webhook_messages_total = Counter(
    name="webhook_messages_total",
    documentation="Webhook notifications delivered to the message handler",
    labelnames=["event"]
)

# Ordinal of the current lifecycle phase (0 = initializing ... 5 = terminated)
lifecycle_phase = Gauge(
    name="lifecycle_phase",
    documentation="Current process lifecycle phase ordinal"
)

shutdown_step_failures_total = Counter(
    name="shutdown_step_failures_total",
    documentation="Teardown steps that recorded an error",
    labelnames=["step"]
)


# =============================================================================
# Setup Function
# =============================================================================

def _endpoint_label(request: Request) -> str:
    # Route templates keep the label cardinality bounded (webhook ids!)
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def setup_observability(app: FastAPI, metrics_path: Optional[str] = "/metrics") -> FastAPI:
    """
    Add Prometheus metrics middleware and the scrape endpoint to ``app``.

    Args:
        app: FastAPI application instance to instrument
        metrics_path: Path of the scrape endpoint, None to skip it

    Returns:
        The instrumented FastAPI application (same instance, for chaining)
    """

    @app.middleware("http")
    async def metrics_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        active_requests.inc()
        method = request.method
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            endpoint = _endpoint_label(request)
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start
            )
            http_requests_total.labels(method=method, endpoint=endpoint, status=str(status_code)).inc()
            active_requests.dec()

    if metrics_path:
        @app.get(metrics_path, include_in_schema=False)
        async def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
