"""
Logging Middleware - Request/Response logging

Every request gets an id (the caller's X-Request-ID or a new one), echoed in
the response so a webhook delivery can be matched with its log lines.
Webhook requests also log the Evolution instance and event when the sender
puts them in headers.
"""
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from crm_bridge.utils.logger import get_logger

logger = get_logger(__name__)

# Polled by load balancers and monitors
QUIET_PATHS = {"/api/v1/health", "/api/v1/health/", "/webhook/health"}

REQUEST_ID_HEADER = "X-Request-ID"


def _request_context(request: Request) -> dict:
    context = {
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else "unknown",
    }
    if request.url.path.startswith("/webhook"):
        context["instance"] = request.headers.get("instance")
        context["event"] = request.headers.get("event")
    return context


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request and its outcome

    Adds X-Request-ID and X-Process-Time (ms) to responses.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex[:12]
        context = _request_context(request)
        label = f"[{request_id}] {context['method']} {context['path']}"
        if context.get("instance"):
            label += f" instance={context['instance']}"

        start_time = time.time()
        logger.info(f"→ {label}", extra={"request_id": request_id, **context})

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                f"✗ {label} ERROR ({duration_ms}ms): {e}",
                extra={"request_id": request_id, "duration_ms": duration_ms, **context},
                exc_info=True
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"← {label} {response.status_code} ({duration_ms}ms)",
            extra={
                "request_id": request_id,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                **context,
            }
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)
        return response
