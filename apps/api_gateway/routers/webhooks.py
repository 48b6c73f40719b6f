"""
Вебхуки внешних воркеров.

- POST /v1/webhooks/summary                   (summary.ready)
- POST /v1/webhooks/save-audio-url            (audio.ready)
- POST /v1/webhooks/audio-generation-failure  (audio.failed)
- POST /v1/webhooks/events                    (любое событие с полем type)

Авторизация: Depends(service_auth_dep)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from apps.api_gateway.deps import http_error, service_auth_dep
from digest_orchestrator.common.errors import AppError
from digest_orchestrator.common.security import AuthContext
from digest_orchestrator.contracts.http_api import WebhookAckResponse
from digest_orchestrator.contracts.webhook_events import (
    AudioFailedEvent,
    AudioReadyEvent,
    SummaryReadyEvent,
    parse_webhook_event,
)
from digest_orchestrator.services.ingest_service import (
    IngestResult,
    ingest_audio_failed,
    ingest_audio_ready,
    ingest_event,
    ingest_summary,
)

router = APIRouter()


def _ack(res: IngestResult) -> WebhookAckResponse:
    details = dict(res.details)
    if res.status:
        details["status"] = res.status
    return WebhookAckResponse(
        event=res.event,
        batch_id=res.batch_id,
        summary_id=res.summary_id,
        duplicate=res.duplicate,
        details=details,
    )


@router.post("/webhooks/summary", response_model=WebhookAckResponse)
def summary_ready(
    event: SummaryReadyEvent,
    _: AuthContext = Depends(service_auth_dep),
) -> WebhookAckResponse:
    try:
        return _ack(ingest_summary(event))
    except AppError as e:
        raise http_error(e) from e


@router.post("/webhooks/save-audio-url", response_model=WebhookAckResponse)
def audio_ready(
    event: AudioReadyEvent,
    _: AuthContext = Depends(service_auth_dep),
) -> WebhookAckResponse:
    try:
        return _ack(ingest_audio_ready(event))
    except AppError as e:
        raise http_error(e) from e


@router.post("/webhooks/audio-generation-failure", response_model=WebhookAckResponse)
def audio_failed(
    event: AudioFailedEvent,
    _: AuthContext = Depends(service_auth_dep),
) -> WebhookAckResponse:
    try:
        return _ack(ingest_audio_failed(event))
    except AppError as e:
        raise http_error(e) from e


@router.post("/webhooks/events", response_model=WebhookAckResponse)
def any_event(
    payload: dict[str, Any] = Body(...),
    _: AuthContext = Depends(service_auth_dep),
) -> WebhookAckResponse:
    try:
        event = parse_webhook_event(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False)) from e

    try:
        return _ack(ingest_event(event))
    except AppError as e:
        raise http_error(e) from e
