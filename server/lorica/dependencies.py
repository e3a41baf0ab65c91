# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: create_app builds → app.state stores → Depends() injects.
# No global variables. Every dependency is explicit in endpoint signatures.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from lorica.services.metrics import PrometheusExporter, ProxyMetrics
from lorica.services.pipeline import ProxyPipeline


def get_metrics(request: Request) -> ProxyMetrics:
    """Inject ProxyMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_pipeline(request: Request) -> ProxyPipeline:
    """Inject ProxyPipeline into endpoints via Depends()."""
    return request.app.state.pipeline  # type: ignore[no-any-return]


def get_prometheus(request: Request) -> PrometheusExporter:
    """Inject this app's PrometheusExporter into endpoints via Depends()."""
    return request.app.state.prometheus  # type: ignore[no-any-return]
