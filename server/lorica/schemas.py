# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Schemas — inbound request view + service responses
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from pydantic import BaseModel, ConfigDict
from starlette.requests import Request


def _header(request: Request, name: str) -> str | None:
    """Header value, with empty treated as absent."""
    return request.headers.get(name) or None


class InboundRequest(BaseModel):
    """The parts of an inbound request the pipeline inspects. Read-only."""

    model_config = ConfigDict(frozen=True)

    method: str
    path: str  # decoded, used for signing
    raw_path: str  # as received, used for the outbound URL
    query: str = ""  # raw query string, no leading "?"
    origin: str | None = None
    accept: str | None = None
    session_id: str | None = None
    cors_request_method: str | None = None
    cors_request_headers: str | None = None
    forwarded_for: str | None = None
    real_ip: str | None = None
    peer: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "InboundRequest":
        # Not request.url: it re-splits the decoded path on an escaped "?".
        path = request.scope["path"]
        raw_path = request.scope.get("raw_path")
        return cls(
            method=request.method.upper(),
            path=path,
            raw_path=raw_path.decode("latin-1").partition("?")[0] if raw_path else path,
            query=request.scope.get("query_string", b"").decode("latin-1"),
            origin=_header(request, "origin"),
            accept=_header(request, "accept"),
            session_id=_header(request, "x-summon-session-id"),
            cors_request_method=_header(request, "access-control-request-method"),
            cors_request_headers=_header(request, "access-control-request-headers"),
            forwarded_for=_header(request, "x-forwarded-for"),
            real_ip=_header(request, "x-real-ip"),
            peer=request.client.host if request.client else None,
        )


class LivenessResponse(BaseModel):
    """Liveness probe — minimal, near-zero cost."""

    status: str = "ok"


class MetricsResponse(BaseModel):
    """JSON metrics snapshot."""

    requests_total: int
    outcomes: dict[str, int]
    status_codes: dict[str, int]
    upstream_latency_ms: dict[str, Any]
    uptime_seconds: int
