# ─────────────────────────────────────────────────────────────────────────────
# Service Routes — liveness and metrics
# ─────────────────────────────────────────────────────────────────────────────
#   /health   → Liveness probe. Near-zero cost, always 200.
#   /metrics  → Request outcome counters and upstream latency.
# These paths are served locally and never proxied.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends

from lorica.dependencies import get_metrics
from lorica.schemas import LivenessResponse, MetricsResponse
from lorica.services.metrics import ProxyMetrics

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe — is the process alive?

    Keep it minimal: no deps, no I/O, never touches the upstream.
    """
    return LivenessResponse(status="ok")


@router.get("/metrics", response_model=MetricsResponse)
async def metrics_endpoint(metrics: ProxyMetrics = Depends(get_metrics)) -> MetricsResponse:
    """Outcome counts per terminal state and status code, upstream latency."""
    return MetricsResponse(**metrics.to_dict())
