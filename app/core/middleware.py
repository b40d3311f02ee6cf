"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a request ID so the logs of one
generation or scan can be correlated:
- an incoming ``X-Request-ID`` (header name configurable) is reused, else a
  UUID4 is generated
- the ID is bound to contextvars for the lifetime of the request
- the response echoes the ID and the total handling time

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

# Incoming ids longer than this are replaced rather than echoed
_MAX_REQUEST_ID_LENGTH = 128


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request ID to the request context and echo it in the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` and
            ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    incoming = request.headers.get(header_name)
    if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
        request_id = incoming
    else:
        request_id = str(uuid.uuid4())

    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
