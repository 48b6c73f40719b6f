"""
Отправка задач очередей во внешние воркеры.

Используется в:
- apps/worker_dispatch (QUEUE_MODE=redis)
- inline executor диспетчера (QUEUE_MODE=inline)
"""

from __future__ import annotations

from typing import Any

from digest_orchestrator.clients.audio_service import AudioServiceClient
from digest_orchestrator.clients.summarizer import SummarizerClient
from digest_orchestrator.common.errors import AppError, ValidationError
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import DISPATCH_TOTAL
from digest_orchestrator.contracts.queue_events import AudioDispatchTask, SummarizeTask
from digest_orchestrator.queue.dispatcher import Q_AUDIO, Q_SUMMARIZE
from digest_orchestrator.storage.db import db_session

from . import retry_ledger

log = get_project_logger()


def send_summarize_task(task: SummarizeTask) -> None:
    """
    Ошибка пробрасывается: повтор решает воркер (requeue_with_backoff).
    """
    SummarizerClient.from_settings().summarize(task)
    log.info(
        "summarize_sent",
        extra={"payload": {"batch_id": task.batch_id, "user_id": task.user_id}},
    )


def send_audio_task(task: AudioDispatchTask) -> bool:
    """
    Ошибка не пробрасывается: юнит уходит в журнал ретраев.
    """
    try:
        AudioServiceClient.from_settings().generate(task)
    except AppError as e:
        DISPATCH_TOTAL.labels(result="send_failed").inc()
        log.error(
            "audio_send_failed",
            extra={
                "payload": {
                    "batch_id": task.batch_id,
                    "summary_id": task.summary_id,
                    "attempts": task.attempts,
                    "err": e.message,
                    "details": e.details,
                }
            },
        )
        with db_session() as session:
            retry_ledger.record_failure(session, task=task, error=f"{e.code}: {e.message}")
        return False

    DISPATCH_TOTAL.labels(result="sent").inc()
    with db_session() as session:
        retry_ledger.mark_success(session, summary_id=task.summary_id)
    log.info(
        "audio_sent",
        extra={
            "payload": {
                "batch_id": task.batch_id,
                "summary_id": task.summary_id,
                "user_id": task.user_id,
            }
        },
    )
    return True


def send_task(queue: str, payload: dict[str, Any]) -> None:
    if queue == Q_SUMMARIZE:
        send_summarize_task(SummarizeTask.from_payload(payload))
    elif queue == Q_AUDIO:
        send_audio_task(AudioDispatchTask.from_payload(payload))
    else:
        raise ValidationError("Неизвестная очередь", {"queue": queue})
