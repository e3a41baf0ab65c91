# ─────────────────────────────────────────────────────────────────────────────
# CORS Gate — preflight and simple cross-origin request handling
# ─────────────────────────────────────────────────────────────────────────────
# Runs before any upstream interaction. A valid preflight is answered here
# and never reaches the rate limiter or the upstream. Only GET is allowed
# for real cross-origin requests, with x-summon-session-id as the only
# non-simple request header.
# ─────────────────────────────────────────────────────────────────────────────


from dataclasses import dataclass, field

import structlog
from starlette.responses import Response

from lorica.config import ANY_ORIGIN, Settings
from lorica.exceptions import BadCORSRequestError, MethodNotAllowedError
from lorica.schemas import InboundRequest

logger = structlog.get_logger(__name__)

PREFLIGHT_METHOD = "OPTIONS"
ALLOWED_METHOD = "GET"
ALLOWED_HEADER = "x-summon-session-id"


@dataclass(frozen=True)
class CorsDecision:
    """Outcome of the gate: a terminal preflight response, or headers to carry on."""

    headers: dict[str, str] = field(default_factory=dict)
    response: Response | None = None


def allow_origin(settings: Settings, origin: str | None) -> str | None:
    """Access-Control-Allow-Origin value for origin, or None on no match."""
    allowed = settings.origin_allow_list
    if allowed is None:
        return ANY_ORIGIN
    if origin is None:
        return None
    for candidate in allowed:
        if candidate == origin:
            return candidate
    return None


def _origin_headers(settings: Settings, origin: str | None) -> dict[str, str]:
    value = allow_origin(settings, origin)
    return {"Access-Control-Allow-Origin": value} if value is not None else {}


def preflight(inbound: InboundRequest, settings: Settings) -> Response:
    """Answer a preflight request or raise BadCORSRequestError."""
    requested_method = inbound.cors_request_method
    if requested_method is None:
        raise BadCORSRequestError("Access-Control-Request-Method header should be set for OPTIONS request.")
    if requested_method != ALLOWED_METHOD:
        raise BadCORSRequestError("Access-Control-Request-Method header should only be GET.")
    requested_headers = inbound.cors_request_headers
    if requested_headers is not None and requested_headers != ALLOWED_HEADER:
        raise BadCORSRequestError("Access-Control-Request-Headers header should only contain x-summon-session-id.")

    headers = {
        "Access-Control-Allow-Methods": ALLOWED_METHOD,
        "Access-Control-Allow-Headers": ALLOWED_HEADER,
        "Access-Control-Max-Age": str(settings.cors_max_age),
        **_origin_headers(settings, inbound.origin),
    }
    return Response(status_code=200, headers=headers)


def check(inbound: InboundRequest, settings: Settings) -> CorsDecision:
    """Apply the CORS rules to one request.

    No Origin: not cross-origin, continue with no CORS headers.
    Origin + OPTIONS: preflight, terminal.
    Origin + anything but GET: 405.
    """
    if inbound.origin is None:
        return CorsDecision()

    if inbound.method == PREFLIGHT_METHOD:
        response = preflight(inbound, settings)
        logger.debug("cors_preflight_accepted", origin=inbound.origin, path=inbound.path)
        return CorsDecision(response=response)

    if inbound.method != ALLOWED_METHOD:
        raise MethodNotAllowedError()

    headers = _origin_headers(settings, inbound.origin)
    if not headers:
        # The browser enforces the block, not us.
        logger.debug("cors_origin_not_allowed", origin=inbound.origin)
    return CorsDecision(headers=headers)
