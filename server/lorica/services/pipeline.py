# ─────────────────────────────────────────────────────────────────────────────
# Proxy Pipeline — one request lifecycle
# ─────────────────────────────────────────────────────────────────────────────
# Received → CorsChecked → RateChecked → Signed → Forwarded
#
# Terminal states:
#   preflight_responded  valid OPTIONS answered by the CORS gate
#   rejected             400 / 405 from the CORS gate
#   rate_limited         429, upstream never contacted
#   upstream_error       500, single attempt failed
#   relayed              upstream status + body streamed back
#   failed               500, unexpected internal error
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from enum import StrEnum

import structlog
from starlette.responses import Response

from lorica import cors
from lorica.config import Settings
from lorica.exceptions import (
    BadCORSRequestError,
    LoricaError,
    MethodNotAllowedError,
    RateLimitExceededError,
    UpstreamTransportError,
)
from lorica.rate_limit import RateLimiter, resolve_client_key
from lorica.schemas import InboundRequest
from lorica.services.metrics import ProxyMetrics
from lorica.services.proxy import UpstreamForwarder
from lorica.signing import http_date, sign

logger = structlog.get_logger(__name__)


class RequestState(StrEnum):
    received = "received"
    cors_checked = "cors_checked"
    rate_checked = "rate_checked"
    signed = "signed"
    forwarded = "forwarded"
    # terminal
    preflight_responded = "preflight_responded"
    rejected = "rejected"
    rate_limited = "rate_limited"
    upstream_error = "upstream_error"
    relayed = "relayed"
    failed = "failed"


_TERMINAL_FOR_ERROR: dict[type[LoricaError], RequestState] = {
    BadCORSRequestError: RequestState.rejected,
    MethodNotAllowedError: RequestState.rejected,
    RateLimitExceededError: RequestState.rate_limited,
    UpstreamTransportError: RequestState.upstream_error,
}


class ProxyPipeline:
    """Composes CORS gate → rate limiter → signer → forwarder.

    Shared by all requests; holds no per-request state. Errors are raised
    as LoricaError subclasses and rendered by the exception handlers.
    """

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter,
        forwarder: UpstreamForwarder,
        metrics: ProxyMetrics | None = None,
    ) -> None:
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.forwarder = forwarder
        self.metrics = metrics or ProxyMetrics()

    async def handle(self, inbound: InboundRequest) -> Response:
        state = RequestState.received
        cors_headers: dict[str, str] = {}
        try:
            decision = cors.check(inbound, self.settings)
            state = RequestState.cors_checked
            if decision.response is not None:
                self._finish(inbound, RequestState.preflight_responded, decision.response.status_code)
                return decision.response
            cors_headers = decision.headers

            client_key = resolve_client_key(inbound, self.settings.trust_proxy_headers)
            structlog.contextvars.bind_contextvars(client_key=client_key)
            admission = self.rate_limiter.acquire(client_key)
            if not admission.allowed:
                raise RateLimitExceededError(client_key, admission.retry_after)
            state = RequestState.rate_checked

            timestamp = http_date()
            authorization = sign(
                self.settings,
                accept=inbound.accept or "",
                timestamp=timestamp,
                host=self.settings.upstream_host,
                path=inbound.path,
                query=inbound.query,
            )
            state = RequestState.signed
            logger.debug("request_signed", path=inbound.path, client_key=client_key)

            response = await self.forwarder.forward(inbound, timestamp, authorization, cors_headers)
            state = RequestState.forwarded
        except LoricaError as exc:
            exc.headers.update(cors_headers)
            terminal = _TERMINAL_FOR_ERROR.get(type(exc), RequestState.upstream_error)
            logger.debug("pipeline_stopped", last_state=state, terminal=terminal)
            self._finish(inbound, terminal, exc.status_code)
            raise
        except Exception:
            logger.error("pipeline_failed", last_state=state, path=inbound.path)
            self._finish(inbound, RequestState.failed, 500)
            raise

        self._finish(inbound, RequestState.relayed, response.status_code, upstream_ms=response.upstream_ms)
        return response

    def _finish(
        self,
        inbound: InboundRequest,
        terminal: RequestState,
        status_code: int,
        upstream_ms: float | None = None,
    ) -> None:
        self.metrics.record(terminal.value, status_code, upstream_ms)
        logger.debug("request_terminal_state", state=terminal, status=status_code, method=inbound.method)
