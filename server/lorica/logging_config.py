# ─────────────────────────────────────────────────────────────────────────────
# Logging Configuration — structlog over stdlib logging
# ─────────────────────────────────────────────────────────────────────────────
# One pipeline for our own events and for stdlib records (uvicorn, httpx):
# both pass through the shared processors and the same renderer.
#
# Credentials never reach the output: any event key naming the secret key or
# the outbound Authorization header is masked before rendering.
# ─────────────────────────────────────────────────────────────────────────────


import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"authorization", "secret_key", "secretkey"})

# Chatty third-party loggers and the level they are capped at.
# httpx logs every outbound request line at INFO; uvicorn.access duplicates
# request_completed.
_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def redact_credentials(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values whose key names a credential."""
    for key in event_dict.keys() & SENSITIVE_KEYS:
        event_dict[key] = REDACTED
    return event_dict


def configure_logging(log_level: str = "WARNING", json_output: bool = True) -> None:
    """Route structlog and stdlib logging through one renderer.

    log_level is a stdlib level name; Settings has already mapped the
    warn/trace aliases.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    # Stdlib records (foreign_pre_chain) get the same context and redaction.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            # ConsoleRenderer formats exc_info itself.
            *([structlog.processors.format_exc_info] if json_output else []),
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper()))

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, root.level))
