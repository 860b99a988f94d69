"""
Structured error classes shared across the request pipeline.

Every error the pipeline surfaces to clients derives from StockroomError and
carries a stable machine-readable code plus the HTTP status it maps to.
The application registers stockroom_error_handler so handlers and
dependencies can raise these directly.

Client-visible outcomes are kept distinct:
- 401: log in again
- 402: pay to continue
- 500: server misconfiguration (e.g. tenant store not provisioned)
- 503: try again later
"""

import logging
from typing import Optional

from fastapi import status
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class StockroomError(Exception):
    """Base exception for pipeline errors."""

    error_code: str = "internal_error"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        if error_code:
            self.error_code = error_code
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.error_code,
            "message": self.message,
        }


class AuthenticationFailedError(StockroomError):
    """Raised when a request needs a caller identity and has none."""

    error_code = "unauthorized"
    http_status = status.HTTP_401_UNAUTHORIZED


async def stockroom_error_handler(request: Request, exc: StockroomError) -> JSONResponse:
    """Render a StockroomError as a JSON response."""
    if exc.http_status >= 500:
        logger.error(
            "Request failed with server error",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_code": exc.error_code,
                "error": exc.message,
            },
        )
    headers = None
    if exc.http_status == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.http_status == status.HTTP_503_SERVICE_UNAVAILABLE:
        headers = {"Retry-After": "5"}
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
        headers=headers,
    )
