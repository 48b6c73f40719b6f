"""
HTTP роуты для батчей.

- POST /v1/batches
- GET  /v1/batches/stats
- GET  /v1/batches/{batch_id}
- POST /v1/batches/{batch_id}/evaluate

Авторизация: Depends(auth_dep)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from apps.api_gateway.deps import auth_dep, http_error
from digest_orchestrator.common.errors import AppError, NotFoundError
from digest_orchestrator.common.security import AuthContext
from digest_orchestrator.contracts.http_api import (
    BatchCreateRequest,
    BatchCreateResponse,
    BatchEvaluateResponse,
    BatchGetResponse,
    BatchStatsItem,
    BatchStatsResponse,
)
from digest_orchestrator.domain.state_machine import completion_ratio
from digest_orchestrator.services.batch_service import batch_statistics, create_batch, get_batch
from digest_orchestrator.services.completion_service import evaluate_batch

router = APIRouter()


@router.post("/batches", response_model=BatchCreateResponse)
def create(
    req: BatchCreateRequest,
    _: AuthContext = Depends(auth_dep),
) -> BatchCreateResponse:
    try:
        batch_id, timeout_at = create_batch(req.user_ids, req.expected_count)
    except AppError as e:
        raise http_error(e) from e
    return BatchCreateResponse(batch_id=batch_id, timeout_at=timeout_at)


@router.get("/batches/stats", response_model=BatchStatsResponse)
def stats(_: AuthContext = Depends(auth_dep)) -> BatchStatsResponse:
    return BatchStatsResponse(items=[BatchStatsItem(**item) for item in batch_statistics()])


@router.get("/batches/{batch_id}", response_model=BatchGetResponse)
def get(batch_id: str, _: AuthContext = Depends(auth_dep)) -> BatchGetResponse:
    try:
        b = get_batch(batch_id)
    except AppError as e:
        raise http_error(e) from e

    return BatchGetResponse(
        batch_id=b.batch_id,
        status=b.status.value,
        expected_count=b.expected_count,
        received_count=b.received_count,
        completion_ratio=round(completion_ratio(b.received_count, b.expected_count), 4),
        user_ids=list(b.user_ids or []),
        created_at=b.created_at,
        timeout_at=b.timeout_at,
        partial_completed_at=b.partial_completed_at,
        completed_at=b.completed_at,
        audio_requested_at=b.audio_requested_at,
        audio_completed_at=b.audio_completed_at,
        audio_failed_at=b.audio_failed_at,
        failed_at=b.failed_at,
        audio_url=b.audio_url,
        failure_reason=b.failure_reason,
    )


@router.post("/batches/{batch_id}/evaluate", response_model=BatchEvaluateResponse)
def evaluate(batch_id: str, _: AuthContext = Depends(auth_dep)) -> BatchEvaluateResponse:
    res = evaluate_batch(batch_id, reconcile=True)
    if not res.found:
        raise http_error(NotFoundError("Батч не найден", {"batch_id": batch_id}))
    return BatchEvaluateResponse(
        batch_id=batch_id,
        status=res.status.value if res.status else None,
        transitions=res.transitions,
        dispatched=res.dispatched,
    )
