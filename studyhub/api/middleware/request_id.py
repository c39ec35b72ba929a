"""
Request correlation middleware.

Every request gets an X-Request-ID (the caller's, or a fresh uuid) that is
echoed on the response and bound to request_id_var so all log lines written
while serving it carry the id. Writes and slow requests are logged with the
learner id forwarded by the gateway.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from studyhub.api.deps import USER_ID_HEADER
from studyhub.config import get_settings
from studyhub.logging_config import get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_WRITE_METHODS = frozenset(("POST", "PUT", "PATCH", "DELETE"))


def _request_id(request: Request) -> str:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind a request id for the lifetime of the request and log writes and slow calls."""

    def __init__(self, app, slow_request_ms: float | None = None):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms if slow_request_ms is not None else get_settings().slow_request_ms

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        try:
            start = time.perf_counter()
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            response.headers[REQUEST_ID_HEADER] = request_id

            extra = {
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "user_id": request.headers.get(USER_ID_HEADER),
            }
            if duration_ms > self.slow_request_ms:
                logger.warning("Slow request", extra=extra)
            elif request.method in _WRITE_METHODS:
                logger.info("Request handled", extra=extra)
            return response
        finally:
            request_id_var.reset(token)
