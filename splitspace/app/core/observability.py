"""
Observability middleware and logging setup.

Every request gets a correlation ID. It is echoed in the response headers,
stamped on each log record and carried into outward ledger events.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from typing import Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from splitspace.app.core.config import settings

logger = logging.getLogger("splitspace.http")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [cid=%(correlation_id)s] %(message)s"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


class CorrelationIdFilter(logging.Filter):
    """Adds `correlation_id` to every record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def configure_logging():
    """Root logger format and level from settings."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level.upper())


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        start_time = time.time()

        try:
            response = await call_next(request)
            self._log(request, response, start_time, correlation_id)
        finally:
            correlation_id_var.reset(token)
        return response

    @staticmethod
    def _log(request: Request, response: Response, start_time: float, correlation_id: str):
        process_time = (time.time() - start_time) * 1000  # ms
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{process_time:.2f}"

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
        }

        # Log level based on status
        if response.status_code >= 500:
            logger.error("Request failed %s", log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected %s", log_data)
        else:
            logger.info("Request served %s", log_data)
