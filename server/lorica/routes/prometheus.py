# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Each app owns its own PrometheusExporter (built in create_app, stored on
# app.state), so separate apps never see each other's label sets.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from lorica.dependencies import get_metrics, get_prometheus
from lorica.services.metrics import PrometheusExporter, ProxyMetrics

router = APIRouter()


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: ProxyMetrics = Depends(get_metrics),
    exporter: PrometheusExporter = Depends(get_prometheus),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    return Response(content=exporter.render(metrics), media_type=CONTENT_TYPE_LATEST)
