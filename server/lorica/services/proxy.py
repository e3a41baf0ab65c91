# ─────────────────────────────────────────────────────────────────────────────
# Proxy Forwarder — one signed GET to the Summon API, streamed back
# ─────────────────────────────────────────────────────────────────────────────
# One short-lived httpx.AsyncClient per inbound request: no pooling, the
# connection is closed after use. A single attempt, bounded by the
# configured timeout; transport failures become UpstreamTransportError.
# Only Content-Type is copied from the upstream response.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator

import anyio
import httpx
import structlog
from starlette.requests import ClientDisconnect
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from lorica.config import Settings
from lorica.exceptions import UpstreamTransportError
from lorica.schemas import InboundRequest

logger = structlog.get_logger(__name__)

# Upstream response headers relayed to the client. Cookies, caching and
# everything else are dropped.
RELAYED_HEADERS = ("content-type",)


def _wire(value: str) -> bytes:
    # ASGI servers decode header bytes as latin-1; httpx would encode str as ASCII.
    return value.encode("latin-1")


class RelayResponse(StreamingResponse):
    """Streams an upstream body and always releases the upstream resources."""

    def __init__(
        self,
        upstream: httpx.Response,
        client: httpx.AsyncClient,
        headers: dict[str, str],
        upstream_ms: float = 0.0,
    ) -> None:
        self.upstream_ms = upstream_ms
        self._upstream = upstream
        self._client = client
        self._released = False
        super().__init__(self._relay(), status_code=upstream.status_code, headers=headers)

    async def _relay(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._upstream.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            # Status and headers are already on the wire; all we can do is stop.
            logger.warning("upstream_stream_interrupted", error=str(exc), error_type=type(exc).__name__)

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self._upstream.aclose()
        await self._client.aclose()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except (OSError, ClientDisconnect) as exc:
            logger.info("client_disconnected_during_relay", error=str(exc))
        finally:
            # Runs even when the client task is being cancelled.
            with anyio.CancelScope(shield=True):
                await self.release()


class UpstreamForwarder:
    """Builds and executes the outbound request for one inbound request."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._timeout = settings.request_timeout_seconds

    def target_url(self, inbound: InboundRequest) -> httpx.URL:
        """Upstream base URL with the inbound raw path and raw query."""
        raw_path = inbound.raw_path or "/"
        if inbound.query:
            raw_path = f"{raw_path}?{inbound.query}"
        return self._settings.upstream_url.copy_with(raw_path=raw_path.encode("latin-1"))

    def outbound_headers(self, inbound: InboundRequest, timestamp: str, authorization: str) -> dict[str, bytes]:
        """Outbound headers as bytes; relayed values go back out as received."""
        headers = {
            "Accept": _wire(inbound.accept or ""),
            "x-summon-date": _wire(timestamp),
            "Authorization": _wire(authorization),
            "Connection": b"close",
        }
        if inbound.session_id is not None:
            headers["x-summon-session-id"] = _wire(inbound.session_id)
        return headers

    async def forward(
        self,
        inbound: InboundRequest,
        timestamp: str,
        authorization: str,
        extra_headers: dict[str, str] | None = None,
    ) -> RelayResponse:
        """Send the signed GET and wrap the upstream response for streaming.

        extra_headers (CORS) are added to the relayed response.
        Raises UpstreamTransportError on timeout, connection or TLS failure.
        """
        url = self.target_url(inbound)
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            limits=httpx.Limits(max_keepalive_connections=0),
            follow_redirects=False,
        )
        # The client is ours to close until RelayResponse takes it over.
        start = time.perf_counter()
        try:
            request = client.build_request("GET", url, headers=self.outbound_headers(inbound, timestamp, authorization))
            # httpx timeouts are per phase; wait_for bounds the whole exchange.
            upstream = await asyncio.wait_for(client.send(request, stream=True), timeout=self._timeout)
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            await client.aclose()
            logger.error(
                "upstream_request_failed",
                path=url.path,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
                timeout_s=self._timeout,
            )
            raise UpstreamTransportError(type(exc).__name__) from exc
        except BaseException:
            # Cancellation (shutdown, client gone) included.
            with anyio.CancelScope(shield=True):
                await client.aclose()
            raise

        upstream_ms = (time.perf_counter() - start) * 1000
        logger.debug("upstream_response", status=upstream.status_code, duration_ms=round(upstream_ms, 1))

        headers = {name: upstream.headers[name] for name in RELAYED_HEADERS if name in upstream.headers}
        headers.update(extra_headers or {})
        return RelayResponse(upstream, client, headers, upstream_ms=upstream_ms)
