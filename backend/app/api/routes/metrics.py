"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - provider_latency_ms{role, provider, outcome}
    - provider_errors_total{role, provider, reason}
    - generation_total{tier, outcome}
    - generation_fallbacks_total{marker}
    - generation_cache_hits_total
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
