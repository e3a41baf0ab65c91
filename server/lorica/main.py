# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn lorica.main:create_app --factory --host 0.0.0.0 --port 8877

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from lorica import __version__
from lorica.config import Settings, get_settings
from lorica.exceptions import register_exception_handlers
from lorica.logging_config import configure_logging
from lorica.middleware import RequestContextMiddleware
from lorica.rate_limit import build_rate_limiter
from lorica.routes import health, prometheus, proxy
from lorica.services.metrics import PrometheusExporter, ProxyMetrics
from lorica.services.pipeline import ProxyPipeline
from lorica.services.proxy import UpstreamForwarder

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup/shutdown. All state is built in create_app()."""
    settings: Settings = app.state.settings
    logger.info(
        "lorica_started",
        upstream=str(settings.upstream_url),
        allowed_origins=settings.allowed_origins,
        rate_limit_enabled=settings.rate_limit_enabled,
    )
    yield
    logger.info("lorica_stopped")


def _warn_on_origin_config(settings: Settings) -> None:
    if settings.origin_allow_list is None:
        logger.warning("cors_any_origin_allowed", hint="Every Origin receives Access-Control-Allow-Origin: *")
    elif not settings.origin_allow_list:
        logger.warning(
            "cors_no_origins_configured",
            hint="Set LORICA_ALLOWED_ORIGINS. Browsers will block cross-origin reads.",
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory. Invoked by: uvicorn lorica.main:create_app --factory

    Tests pass Settings directly; the process entrypoint falls back to the
    environment via get_settings(), which raises ConfigurationError early.
    """
    if settings is None:
        settings = get_settings()
        configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="Lorica",
        description="CORS-aware signing proxy for the Summon API",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    metrics = ProxyMetrics()
    rate_limiter = build_rate_limiter(settings)
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.prometheus = PrometheusExporter()
    app.state.pipeline = ProxyPipeline(
        settings,
        rate_limiter=rate_limiter,
        forwarder=UpstreamForwarder(settings),
        metrics=metrics,
    )

    app.add_middleware(RequestContextMiddleware)

    _warn_on_origin_config(settings)
    if settings.rate_limit_enabled:
        logger.info(
            "rate_limit_enabled",
            per_second=settings.rate_limit_per_second,
            burst=settings.rate_limit_burst,
            trust_proxy_headers=settings.trust_proxy_headers,
        )

    register_exception_handlers(app)

    # Service routes first; the proxy route catches everything else.
    app.include_router(health.router, tags=["health"])
    app.include_router(prometheus.router, tags=["prometheus"])
    app.include_router(proxy.router)

    return app
