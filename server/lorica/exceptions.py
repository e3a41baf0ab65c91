# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import math
from http import HTTPStatus

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class LoricaError(Exception):
    """Base exception for all proxy errors."""

    def __init__(self, message: str, status_code: int = 500, headers: dict[str, str] | None = None):
        self.message = message
        self.status_code = status_code
        self.headers: dict[str, str] = dict(headers or {})
        super().__init__(message)


class ConfigurationError(LoricaError):
    """Raised at startup when settings are missing or invalid. Never served."""

    def __init__(self, message: str):
        super().__init__(f"Invalid configuration: {message}", status_code=500)


class BadCORSRequestError(LoricaError):
    """Raised when a preflight request carries unacceptable CORS headers."""

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class MethodNotAllowedError(LoricaError):
    """Raised when a cross-origin request uses a verb other than GET."""

    def __init__(self, message: str = "Only GET requests accepted."):
        super().__init__(message, status_code=405)


class RateLimitExceededError(LoricaError):
    """Raised when a client key has no tokens left.

    The handler turns retry_after_seconds into a Retry-After header.
    """

    def __init__(self, client_key: str, retry_after_seconds: float):
        self.client_key = client_key
        self.retry_after_seconds = retry_after_seconds
        super().__init__("Too many requests.", status_code=429)


class UpstreamTransportError(LoricaError):
    """Raised when the upstream call times out or cannot connect."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Unable to complete the request to the Summon API.", status_code=500)


# ── Rendering ────────────────────────────────────────────────────────────────


def error_page(status_code: int, message: str, headers: dict[str, str] | None = None) -> HTMLResponse:
    """Small HTML error page; never includes internal detail."""
    reason = HTTPStatus(status_code).phrase
    body = f"<html><head></head><body><pre>{status_code} {reason} - {message}</pre></body></html>"
    return HTMLResponse(content=body, status_code=status_code, headers=headers)


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    The pipeline raises LoricaError subclasses; these handlers render them
    as HTML error pages, so the pipeline has no inline error responses.
    """

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError) -> HTMLResponse:
        retry_after = max(1, math.ceil(exc.retry_after_seconds))
        logger.warning(
            "rate_limited_response",
            client_key=exc.client_key,
            path=request.url.path,
            retry_after=retry_after,
        )
        return error_page(exc.status_code, exc.message, {**exc.headers, "Retry-After": str(retry_after)})

    @app.exception_handler(LoricaError)
    async def lorica_error_handler(request: Request, exc: LoricaError) -> HTMLResponse:
        if exc.status_code >= 500:
            logger.error("lorica_error", error=exc.message, error_type=type(exc).__name__, path=request.url.path)
        else:
            logger.warning(
                "request_rejected",
                error=exc.message,
                status=exc.status_code,
                method=request.method,
                path=request.url.path,
            )
        return error_page(exc.status_code, exc.message, exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> HTMLResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return error_page(500, "Internal server error.")
