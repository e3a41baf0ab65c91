# ─────────────────────────────────────────────────────────────────────────────
# Request Middleware — correlation id and per-request log context
# ─────────────────────────────────────────────────────────────────────────────
# Binds request_id, method, path and Origin into structlog contextvars for
# the lifetime of the request, so CORS, rate-limit and upstream log lines
# carry them without threading arguments through the pipeline. The pipeline
# adds client_key once it is resolved.
#
# A caller-supplied X-Request-ID is reused when it looks sane, so one id can
# follow a request through a front proxy and into our logs.
# ─────────────────────────────────────────────────────────────────────────────


import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Served locally; polled often enough that logging each hit is noise.
QUIET_PATHS = frozenset({"/health", "/metrics", "/metrics/prometheus"})

_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,64}")


def request_id_for(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER)
    if incoming and _REQUEST_ID_RE.fullmatch(incoming):
        return incoming
    return uuid.uuid4().hex[:8]


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Correlation id, bound log context and one request_completed line."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request_id_for(request)
        path = request.scope["path"]
        start = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
            origin=request.headers.get("origin"),
        ):
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start) * 1000
            if path not in QUIET_PATHS:
                logger.info(
                    "request_completed",
                    status=response.status_code,
                    duration_ms=round(duration_ms, 1),
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
