from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .schemas import ErrorResponse

_STATUS_CODES = {
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "INVALID_INPUT",
}


def _serialize_detail(detail: str | dict | list | None) -> str | None:
    if detail is None:
        return None
    return str(detail)


def error_response(
    status_code: int,
    error: str,
    code: str,
    detail: str | dict | list | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    payload = ErrorResponse(error=error, code=code, detail=_serialize_detail(detail), request_id=request_id)
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    code = _STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
    error = str(exc.detail) if exc.detail else exc.__class__.__name__
    return error_response(exc.status_code, error=error, code=code, request_id=request_id)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.bind(request_id=request_id, path=request.url.path).opt(exception=exc).error("http.unhandled_exception")
    # Internal details stay in the logs
    return error_response(500, error="Internal server error", code="INTERNAL_ERROR", request_id=request_id)
