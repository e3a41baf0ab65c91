# ─────────────────────────────────────────────────────────────────────────────
# Request Signer — Summon API authorization header
# ─────────────────────────────────────────────────────────────────────────────
# Authorization: Summon <access id>;<base64(HMAC-SHA1(secret, canonical))>
#
# The canonical string is five newline-terminated lines:
#   accept, x-summon-date, host, path, sorted query
# Query pairs are used exactly as received (no decode / re-encode) and
# sorted by key bytes; repeated keys stay as separate pairs.
#
# The digest covers wire bytes. Header values and the query arrive as
# latin-1 text (one char per byte) and are encoded back the same way; the
# path is the ASGI-decoded path, encoded as UTF-8.
# ─────────────────────────────────────────────────────────────────────────────


import base64
import hashlib
import hmac
import time
from email.utils import formatdate

import structlog

from lorica.config import Settings

logger = structlog.get_logger(__name__)


def http_date(timestamp: float | None = None) -> str:
    """RFC 2616 date, e.g. 'Tue, 30 Jun 2009 12:10:24 GMT'."""
    return formatdate(time.time() if timestamp is None else timestamp, usegmt=True)


def canonical_query(query: str) -> str:
    """Sort raw 'key=value' pairs by key, keeping duplicates and encoding."""
    pairs = [pair for pair in query.split("&") if pair]
    pairs.sort(key=lambda pair: pair.partition("=")[0].encode())
    return "&".join(pairs)


def canonical_string(accept: str, timestamp: str, host: str, path: str, query: str) -> str:
    return "\n".join([accept, timestamp, host, path, canonical_query(query)]) + "\n"


def canonical_bytes(accept: str, timestamp: str, host: str, path: str, query: str) -> bytes:
    parts = [
        accept.encode("latin-1"),
        timestamp.encode("ascii"),
        host.encode(),
        path.encode(),
        canonical_query(query).encode("latin-1"),
    ]
    return b"".join(part + b"\n" for part in parts)


def digest(secret_key: str, message: bytes) -> str:
    mac = hmac.new(secret_key.encode(), message, hashlib.sha1)
    return base64.b64encode(mac.digest()).decode("ascii")


def sign(settings: Settings, accept: str, timestamp: str, host: str, path: str, query: str) -> str:
    """Build the Authorization header value for one upstream request.

    Deterministic: the same inputs always give the same header. The timestamp must be
    the exact string sent as x-summon-date.
    """
    logger.debug("canonical_string", canonical=canonical_string(accept, timestamp, host, path, query))
    message = canonical_bytes(accept, timestamp, host, path, query)
    return f"Summon {settings.access_id};{digest(settings.secret_key.get_secret_value(), message)}"
