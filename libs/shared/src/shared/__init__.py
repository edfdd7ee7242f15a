from .errors import error_response, http_exception_handler, unhandled_exception_handler
from .request_context import REQUEST_ID_HEADER, RequestIDMiddleware
from .schemas import ErrorResponse

__all__ = [
    "ErrorResponse",
    "REQUEST_ID_HEADER",
    "RequestIDMiddleware",
    "error_response",
    "http_exception_handler",
    "unhandled_exception_handler",
]
