"""
Приём вебхуков внешних воркеров.

Используется в:
- HTTP вебхуках (apps/api_gateway/routers/webhooks.py)

Правила:
- summary.ready сохраняет юнит один раз на (batch_id, user_id);
  повтор не увеличивает счётчик и не запускает оценку
- audio.ready отмечает аудио у юнита один раз и перепроверяет батч
- audio.failed переводит батч в audio_failed безусловно
- ошибки хранилища пробрасываются вызывающему (HTTP 5xx)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError

from digest_orchestrator.common.errors import NotFoundError, ValidationError
from digest_orchestrator.common.ids import new_summary_id
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import WEBHOOK_EVENTS_TOTAL
from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.contracts.webhook_events import (
    AudioFailedEvent,
    AudioReadyEvent,
    SummaryReadyEvent,
)
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.models import Summary
from digest_orchestrator.storage.repositories import (
    BatchRepository,
    SummaryRepository,
    UserMixRepository,
)

from . import retry_ledger
from .completion_service import attempt_transition, check_audio_completion, on_summary_received
from .mixes import build_user_mix

log = get_project_logger()


@dataclass
class IngestResult:
    event: str
    batch_id: str | None = None
    summary_id: str | None = None
    duplicate: bool = False
    status: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# summary.ready
# =============================================================================
def ingest_summary(event: SummaryReadyEvent) -> IngestResult:
    now = utc_now_naive()
    summary_id = new_summary_id()
    received: int | None = None
    duplicate = False

    try:
        with db_session() as session:
            if BatchRepository(session).get(event.batch_id) is None:
                raise NotFoundError("Батч не найден", {"batch_id": event.batch_id})

            srepo = SummaryRepository(session)
            existing = srepo.find(batch_id=event.batch_id, user_id=event.user_id)
            if existing is not None:
                duplicate = True
                summary_id = existing.id
            else:
                unit = Summary(
                    id=summary_id,
                    batch_id=event.batch_id,
                    user_id=event.user_id,
                    summary=event.summary,
                    summary_type=event.summary_type,
                    created_at=now,
                    updated_at=now,
                )
                if event.summary_title:
                    unit.summary_title = event.summary_title
                srepo.add(unit)
                session.flush()
                received = BatchRepository(session).increment_received(event.batch_id)
    except IntegrityError:
        # параллельный дубль того же (batch_id, user_id)
        duplicate = True
        with db_session() as session:
            existing = SummaryRepository(session).find(
                batch_id=event.batch_id, user_id=event.user_id
            )
            summary_id = existing.id if existing else summary_id
    except NotFoundError:
        WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="not_found").inc()
        raise

    if duplicate:
        WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="duplicate").inc()
        log.info(
            "summary_duplicate_ignored",
            extra={
                "payload": {
                    "batch_id": event.batch_id,
                    "user_id": event.user_id,
                    "summary_id": summary_id,
                }
            },
        )
        return IngestResult(
            event=event.type, batch_id=event.batch_id, summary_id=summary_id, duplicate=True
        )

    WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="ok").inc()
    log.info(
        "summary_saved",
        extra={
            "payload": {
                "batch_id": event.batch_id,
                "user_id": event.user_id,
                "summary_id": summary_id,
                "received": received,
            }
        },
    )
    evaluation = on_summary_received(event.batch_id, received)
    return IngestResult(
        event=event.type,
        batch_id=event.batch_id,
        summary_id=summary_id,
        status=evaluation.status.value if evaluation.status else None,
        details={"received": received, "transitions": evaluation.transitions},
    )


# =============================================================================
# audio.ready
# =============================================================================
def _ingest_batch_audio(event: AudioReadyEvent) -> IngestResult:
    """
    Legacy-форма: аудио на весь батч, без summary_id.
    """
    now = utc_now_naive()
    batch_id = str(event.batch_id)
    with db_session() as session:
        brepo = BatchRepository(session)
        if brepo.get(batch_id) is None:
            raise NotFoundError("Батч не найден", {"batch_id": batch_id})
        UserMixRepository(session).add(
            build_user_mix(user_id=event.user_id, audio_url=event.audio_url, at=now)
        )
        brepo.set_audio_url(batch_id, event.audio_url)

    won = attempt_transition(
        batch_id,
        BatchStatus.audio_complete,
        sources={BatchStatus.audio_requested, BatchStatus.complete},
        audio_completed_at=now,
    )
    WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="ok").inc()
    log.info(
        "batch_audio_saved",
        extra={"payload": {"batch_id": batch_id, "user_id": event.user_id, "completed": won}},
    )
    return IngestResult(event=event.type, batch_id=batch_id, details={"batch_level": True})


def ingest_audio_ready(event: AudioReadyEvent) -> IngestResult:
    if event.is_batch_level:
        return _ingest_batch_audio(event)

    now = utc_now_naive()
    summary_id = str(event.summary_id)
    with db_session() as session:
        srepo = SummaryRepository(session)
        unit = srepo.get(summary_id)
        if unit is None:
            WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="not_found").inc()
            raise NotFoundError("Саммари не найдено", {"summary_id": summary_id})
        if unit.user_id != event.user_id:
            raise ValidationError(
                "user_id не совпадает с владельцем саммари",
                {"summary_id": summary_id, "user_id": event.user_id},
            )
        if event.batch_id and event.batch_id != unit.batch_id:
            log.warning(
                "audio_ready_batch_mismatch",
                extra={
                    "payload": {
                        "summary_id": summary_id,
                        "event_batch_id": event.batch_id,
                        "batch_id": unit.batch_id,
                    }
                },
            )
        batch_id = unit.batch_id

        updated = srepo.mark_audio_generated(
            summary_id=summary_id, user_id=event.user_id, audio_url=event.audio_url
        )
        retry_ledger.mark_success(session, summary_id=summary_id, now=now)
        if updated:
            UserMixRepository(session).add(
                build_user_mix(user_id=event.user_id, audio_url=event.audio_url, at=now)
            )

    WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="ok" if updated else "duplicate").inc()
    log.info(
        "summary_audio_saved",
        extra={
            "payload": {
                "batch_id": batch_id,
                "summary_id": summary_id,
                "user_id": event.user_id,
                "duplicate": not updated,
            }
        },
    )
    completed = check_audio_completion(batch_id, now=now)
    return IngestResult(
        event=event.type,
        batch_id=batch_id,
        summary_id=summary_id,
        duplicate=not updated,
        details={"batch_audio_complete": completed},
    )


# =============================================================================
# audio.failed
# =============================================================================
def ingest_audio_failed(event: AudioFailedEvent) -> IngestResult:
    now = utc_now_naive()
    with db_session() as session:
        if BatchRepository(session).get(event.batch_id) is None:
            WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="not_found").inc()
            raise NotFoundError("Батч не найден", {"batch_id": event.batch_id})

    won = attempt_transition(
        event.batch_id,
        BatchStatus.audio_failed,
        audio_failed_at=now,
        failure_reason=event.error_message,
    )
    WEBHOOK_EVENTS_TOTAL.labels(event=event.type, result="ok").inc()
    log.error(
        "batch_audio_failed",
        extra={
            "payload": {
                "batch_id": event.batch_id,
                "user_id": event.user_id,
                "error_message": event.error_message[:300],
                "applied": won,
            }
        },
    )
    return IngestResult(event=event.type, batch_id=event.batch_id, details={"applied": won})


def ingest_event(event: SummaryReadyEvent | AudioReadyEvent | AudioFailedEvent) -> IngestResult:
    if isinstance(event, SummaryReadyEvent):
        return ingest_summary(event)
    if isinstance(event, AudioReadyEvent):
        return ingest_audio_ready(event)
    return ingest_audio_failed(event)
