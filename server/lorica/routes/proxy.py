# ─────────────────────────────────────────────────────────────────────────────
# Catch-all proxy route (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from lorica.dependencies import get_pipeline
from lorica.schemas import InboundRequest
from lorica.services.pipeline import ProxyPipeline

router = APIRouter()

# Every verb is routed here so the CORS gate, not the router, decides
# between 400, 405 and forwarding.
PROXY_METHODS = ["GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(request: Request, pipeline: ProxyPipeline = Depends(get_pipeline)) -> Response:
    """Sign and forward any path to the Summon API. Logic is in the pipeline."""
    return await pipeline.handle(InboundRequest.from_request(request))
