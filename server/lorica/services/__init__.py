"""Request pipeline, upstream forwarder and metrics."""

from lorica.services.metrics import PrometheusExporter, ProxyMetrics
from lorica.services.pipeline import ProxyPipeline, RequestState
from lorica.services.proxy import RelayResponse, UpstreamForwarder

__all__ = [
    "PrometheusExporter",
    "ProxyMetrics",
    "ProxyPipeline",
    "RelayResponse",
    "RequestState",
    "UpstreamForwarder",
]
