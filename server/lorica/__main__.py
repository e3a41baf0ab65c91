"""Run the proxy: python -m lorica [flags].

Each option is resolved as: flag given on the command line, else the
LORICA_* environment variable, else the built-in default.
"""

import argparse
import sys
from typing import Any

import structlog
import uvicorn

from lorica import __version__
from lorica.config import ENV_PREFIX, Settings, load_settings
from lorica.exceptions import ConfigurationError
from lorica.logging_config import configure_logging
from lorica.main import create_app

logger = structlog.get_logger("lorica")

# flag dest → Settings field
_FLAG_FIELDS = {
    "host": "host",
    "port": "port",
    "summonapi": "summon_api_url",
    "accessid": "access_id",
    "secretkey": "secret_key",
    "allowedorigins": "allowed_origins",
    "loglevel": "log_level",
    "timeout": "request_timeout_seconds",
    "maxage": "cors_max_age",
    "ratelimit": "rate_limit_per_second",
    "burst": "rate_limit_burst",
    "trustproxyheaders": "trust_proxy_headers",
}


def build_parser() -> argparse.ArgumentParser:
    env_vars = "\n".join(f"  {ENV_PREFIX}{name.upper()}" for name in Settings.model_fields)
    parser = argparse.ArgumentParser(
        prog="lorica",
        description=f"Lorica: sign and proxy requests to the Summon API. Version {__version__}",
        epilog=f"The possible environment variables:\n{env_vars}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        # Unset flags stay out of the namespace so the environment can fill them.
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--address", help="Address for the server to bind on, host:port (default :8877).")
    parser.add_argument("--host", help="Host to bind on; overrides the host part of --address.")
    parser.add_argument("--port", type=int, help="Port to bind on; overrides the port part of --address.")
    parser.add_argument("--summonapi", help="Summon API base URL.")
    parser.add_argument("--accessid", help="Access ID.")
    parser.add_argument("--secretkey", help="Secret key.")
    parser.add_argument(
        "--allowedorigins",
        help='Allowed origins for CORS, delimited by ";". Use "*" to allow any origin.',
    )
    parser.add_argument(
        "--loglevel",
        help="Most verbose level logged: error < warn < info < debug < trace.",
    )
    parser.add_argument("--timeout", type=float, help="Upstream request timeout in seconds (default 10).")
    parser.add_argument("--maxage", type=int, help="Access-Control-Max-Age for preflight responses.")
    parser.add_argument(
        "--ratelimit",
        type=float,
        help="Requests per second allowed per client; enables rate limiting.",
    )
    parser.add_argument("--burst", type=int, help="Requests a client may make in a burst (default 1).")
    parser.add_argument(
        "--trustproxyheaders",
        action="store_true",
        help="Identify clients by X-Forwarded-For / X-Real-IP when rate limiting.",
    )
    return parser


def parse_address(address: str) -> dict[str, Any]:
    """':8877' → {'port': 8877}; 'localhost:9000' → {'host': ..., 'port': ...}."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return {"host": address}
    overrides: dict[str, Any] = {"port": port}
    if host:
        overrides["host"] = host.strip("[]")
    return overrides


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Settings keyword arguments for the flags actually given."""
    given = vars(args)
    overrides: dict[str, Any] = {}
    if "address" in given:
        overrides.update(parse_address(given["address"]))
    overrides.update({field: given[flag] for flag, field in _FLAG_FIELDS.items() if flag in given})
    if "ratelimit" in given:
        overrides["rate_limit_enabled"] = True
    return overrides


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(**overrides_from_args(args))
    except ConfigurationError as exc:
        configure_logging(log_level="ERROR", json_output=False)
        logger.critical("configuration_invalid", error=exc.message)
        sys.exit(1)

    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    logger.info("starting_lorica", version=__version__, **settings.describe())

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
