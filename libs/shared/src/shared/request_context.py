from __future__ import annotations

import time
from typing import Awaitable, Callable
from uuid import uuid4

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

REQUEST_ID_HEADER = "x-request-id"
PROCESS_TIME_HEADER = "x-process-time-ms"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Ensure every request has an `x-request-id` header for traceability.

    The id is bound to the loguru context for the duration of the request and
    the handling time is reported in `x-process-time-ms`.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        with logger.contextualize(request_id=request_id):
            response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if REQUEST_ID_HEADER not in response.headers:
            response.headers[REQUEST_ID_HEADER] = request_id
        response.headers[PROCESS_TIME_HEADER] = f"{elapsed_ms:.2f}"
        return response
