"""Kill Switch API.

Emergency override endpoints. Activation requires a reason; both transitions
are idempotent and always recorded in the audit trail.
"""

from __future__ import annotations

from flagengine.api.schemas import KillSwitchRequest, KillSwitchResponse
from flagengine.core.actor import Actor
from flagengine.core.api_envelope import success_response
from flagengine.core.dependencies import get_admin_actor, get_engine
from flagengine.core.logging import get_logger
from flagengine.core.request_id import get_request_id
from flagengine.services.engine import FlagEngine
from fastapi import APIRouter, Depends, Request

router = APIRouter(prefix="/api/admin/killswitch", tags=["admin", "kill-switch"])
logger = get_logger(__name__)


@router.get("/active", response_model=dict)
def list_active_kill_switches(
    request: Request,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    switches = engine.kill_switches.list_active()
    data = [KillSwitchResponse.from_view(switch).to_json_dict() for switch in switches]
    return success_response(data=data, request_id=get_request_id(request), total=len(data))


@router.get("/{flag_key}", response_model=dict)
def get_kill_switch(
    request: Request,
    flag_key: str,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Switch state of a flag; inactive if it was never activated."""
    switch = engine.kill_switches.get(flag_key)
    return success_response(data=KillSwitchResponse.from_view(switch).to_json_dict(), request_id=get_request_id(request))


@router.post("/{flag_key}/activate", response_model=dict)
def activate_kill_switch(
    request: Request,
    flag_key: str,
    body: KillSwitchRequest,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Force the flag off for every user until deactivated."""
    switch = engine.kill_switches.activate(flag_key, body.reason, actor)
    return success_response(data=KillSwitchResponse.from_view(switch).to_json_dict(), request_id=get_request_id(request))


@router.post("/{flag_key}/deactivate", response_model=dict)
def deactivate_kill_switch(
    request: Request,
    flag_key: str,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    switch = engine.kill_switches.deactivate(flag_key, actor)
    return success_response(data=KillSwitchResponse.from_view(switch).to_json_dict(), request_id=get_request_id(request))
