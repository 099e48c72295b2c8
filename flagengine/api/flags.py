"""Feature Flags API.

Administrative CRUD over flag configuration. Reads need an identified actor;
every mutating endpoint needs an admin actor, which is passed to the registry
and recorded in the audit trail.
"""

from __future__ import annotations

from flagengine.api.schemas import FlagCreateRequest, FlagResponse, FlagUpdateRequest, ToggleRequest
from flagengine.core.actor import Actor
from flagengine.core.api_envelope import success_response
from flagengine.core.dependencies import get_actor, get_admin_actor, get_engine
from flagengine.core.logging import get_logger
from flagengine.core.request_id import get_request_id
from flagengine.services.engine import FlagEngine
from flagengine.services.flag_registry import FlagCreate, FlagPatch
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api/flags", tags=["feature-flags"])
logger = get_logger(__name__)


@router.get("", response_model=dict)
def list_feature_flags(
    request: Request,
    include_archived: bool = Query(False, alias="includeArchived"),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    """List flags ordered by key. Archived flags only with ``includeArchived``."""
    flags = engine.registry.list(include_archived=include_archived)
    data = [FlagResponse.from_view(flag).to_json_dict() for flag in flags]
    return success_response(data=data, request_id=get_request_id(request), total=len(data))


@router.get("/key/{flag_key}", response_model=dict)
def get_feature_flag_by_key(
    request: Request,
    flag_key: str,
    include_archived: bool = Query(False, alias="includeArchived"),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    flag = engine.registry.get(flag_key, include_archived=include_archived)
    return success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request))


@router.get("/{flag_id}", response_model=dict)
def get_feature_flag(
    request: Request,
    flag_id: int,
    include_archived: bool = Query(False, alias="includeArchived"),
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_actor),
):
    flag = engine.registry.get_by_id(flag_id, include_archived=include_archived)
    return success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request))


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_feature_flag(
    request: Request,
    body: FlagCreateRequest,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Create a flag at version 0.

    Returns 409 if the key is taken, archived flags included.
    """
    flag = engine.registry.create(
        FlagCreate(
            key=body.key,
            name=body.name,
            description=body.description,
            enabled=body.enabled,
            rollout_percentage=body.rollout_percentage,
            target_user_ids=body.target_user_ids,
            excluded_user_ids=body.excluded_user_ids,
        ),
        actor,
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request)),
    )


@router.put("/{flag_id}", response_model=dict)
def update_feature_flag(
    request: Request,
    flag_id: int,
    body: FlagUpdateRequest,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Partial update guarded by ``version``; a stale version returns 409."""
    current = engine.registry.get_by_id(flag_id)
    flag = engine.registry.update(
        current.key,
        FlagPatch(
            key=body.key,
            name=body.name,
            description=body.description,
            enabled=body.enabled,
            rollout_percentage=body.rollout_percentage,
            target_user_ids=body.target_user_ids,
            excluded_user_ids=body.excluded_user_ids,
        ),
        expected_version=body.version,
        actor=actor,
    )
    return success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request))


@router.post("/{flag_key}/toggle", response_model=dict)
def toggle_feature_flag(
    request: Request,
    flag_key: str,
    body: ToggleRequest,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    flag = engine.registry.toggle(flag_key, body.enabled, actor)
    return success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request))


@router.delete("/{flag_key}", response_model=dict)
def archive_feature_flag(
    request: Request,
    flag_key: str,
    engine: FlagEngine = Depends(get_engine),
    actor: Actor = Depends(get_admin_actor),
):
    """Archive (soft-delete) a flag. The record stays for audit integrity."""
    flag = engine.registry.archive(flag_key, actor)
    return success_response(data=FlagResponse.from_view(flag).to_json_dict(), request_id=get_request_id(request))
