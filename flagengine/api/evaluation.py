"""Evaluation API.

Open to any caller. Evaluation reads the published snapshot only, so these
handlers never wait on a writer. The snapshot version used is returned in the
body and in the ``X-Snapshot-Version`` header.
"""

from __future__ import annotations

from flagengine.api.schemas import (
    BulkEvaluationRequest,
    BulkEvaluationResponse,
    EvaluationRequest,
    EvaluationResponse,
    MissingFlag,
)
from flagengine.core.api_envelope import success_response
from flagengine.core.dependencies import get_engine
from flagengine.core.logging import get_logger
from flagengine.core.request_id import get_request_id
from flagengine.services.engine import FlagEngine
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api/evaluate", tags=["evaluation"])
logger = get_logger(__name__)

SNAPSHOT_VERSION_HEADER = "X-Snapshot-Version"


def _evaluation_response(request: Request, engine: FlagEngine, flag_key: str, user_id: str) -> JSONResponse:
    result = engine.evaluator.evaluate(flag_key, user_id)
    return JSONResponse(
        content=success_response(
            data=EvaluationResponse.from_result(result).to_json_dict(),
            request_id=get_request_id(request),
        ),
        headers={SNAPSHOT_VERSION_HEADER: str(result.snapshot_version)},
    )


@router.post("", response_model=dict)
async def evaluate(request: Request, body: EvaluationRequest, engine: FlagEngine = Depends(get_engine)):
    """Evaluate one flag for one user."""
    return _evaluation_response(request, engine, body.flag_key, body.user_id)


@router.get("/{flag_key}/{user_id}", response_model=dict)
async def evaluate_get(request: Request, flag_key: str, user_id: str, engine: FlagEngine = Depends(get_engine)):
    return _evaluation_response(request, engine, flag_key, user_id)


@router.post("/bulk", response_model=dict)
async def evaluate_bulk(request: Request, body: BulkEvaluationRequest, engine: FlagEngine = Depends(get_engine)):
    """Evaluate many flag/user pairs against a single snapshot.

    Unknown or archived flags are listed under ``missing`` rather than
    failing the batch.
    """
    outcome = engine.evaluator.evaluate_many((item.flag_key, item.user_id) for item in body.evaluations)
    data = BulkEvaluationResponse(
        results=[EvaluationResponse.from_result(result) for result in outcome.results],
        missing=[MissingFlag(flag_key=flag_key, user_id=user_id) for flag_key, user_id in outcome.missing],
        snapshot_version=outcome.snapshot_version,
    ).to_json_dict()
    return JSONResponse(
        content=success_response(data=data, request_id=get_request_id(request)),
        headers={SNAPSHOT_VERSION_HEADER: str(outcome.snapshot_version)},
    )
