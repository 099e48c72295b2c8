"""Audit API.

Read-only access to the audit trail, newest first. There are no write
endpoints: entries are produced only by the mutations they record.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from flagengine.api.schemas import AuditEntryResponse
from flagengine.core.actor import Actor
from flagengine.core.api_envelope import success_response
from flagengine.core.dependencies import get_admin_actor, get_engine
from flagengine.core.logging import get_logger
from flagengine.core.request_id import get_request_id
from flagengine.models.feature_flag import utcnow
from flagengine.services.engine import FlagEngine
from fastapi import APIRouter, Depends, Query, Request

router = APIRouter(prefix="/api/audit", tags=["audit"])
logger = get_logger(__name__)


def _envelope(request: Request, entries) -> dict:
    data = [AuditEntryResponse.from_view(entry).to_json_dict() for entry in entries]
    return success_response(data=data, request_id=get_request_id(request), total=len(data))


@router.get("", response_model=dict)
def recent_audit_entries(
    request: Request,
    limit: Optional[int] = Query(None, description="Maximum entries to return"),
    since_hours: Optional[int] = Query(None, alias="sinceHours", ge=1, description="Only entries from the last N hours"),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Most recent entries across all flags."""
    since = utcnow() - timedelta(hours=since_hours) if since_hours else None
    return _envelope(request, engine.ledger.recent(limit=limit, since=since))


@router.get("/flag/{flag_key}", response_model=dict)
def flag_audit_history(
    request: Request,
    flag_key: str,
    limit: Optional[int] = Query(None),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Full history of one flag, including its kill switch."""
    return _envelope(request, engine.ledger.for_flag(flag_key, limit=limit))


@router.get("/user/{performed_by}", response_model=dict)
def actor_audit_history(
    request: Request,
    performed_by: str,
    limit: Optional[int] = Query(None),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    return _envelope(request, engine.ledger.by_actor(performed_by, limit=limit))
