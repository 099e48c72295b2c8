"""Prometheus metrics endpoint.

Exposes evaluation, mutation, audit and snapshot metrics in the Prometheus
text format. No authentication; secure at the infrastructure level.
"""

from flagengine.core import metrics as flag_metrics
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(prefix="/metrics", tags=["observability"])


@router.get("", response_class=Response)
async def prometheus_metrics(request: Request):
    """Expose Prometheus metrics in text format."""
    flag_metrics.snapshot_version.set(request.app.state.flag_engine.snapshot.version)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
