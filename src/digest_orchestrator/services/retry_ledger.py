"""
Журнал ретраев отправки юнитов на озвучку.

Назначение:
- неудачная отправка создаёт/обновляет открытую запись юнита
- backoff экспоненциальный: base * 2**retry_count
- проход ретраев (из обслуживания) переотправляет созревшие записи
- исчерпанные записи помечаются failed, успешные — success
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.ids import new_event_id
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.contracts.queue_events import AudioDispatchTask
from digest_orchestrator.domain.enums import RetryStatus
from digest_orchestrator.queue.dispatcher import enqueue_audio_generation
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.models import AudioGenerationRetry
from digest_orchestrator.storage.repositories import AudioRetryRepository, SummaryRepository

log = get_project_logger()


@dataclass
class RetryPassResult:
    scanned: int = 0
    requeued: int = 0
    exhausted: int = 0
    resolved: int = 0
    errors: int = 0


def backoff_delay_sec(base_sec: int, retry_count: int) -> int:
    return int(max(0, base_sec) * (2 ** max(0, retry_count)))


def record_failure(
    session: Session,
    *,
    task: AudioDispatchTask,
    error: str,
    now: datetime | None = None,
) -> AudioGenerationRetry:
    """
    Зафиксировать неудачную отправку юнита. Открытая запись на юнит одна.
    """
    now = now or utc_now_naive()
    s = get_settings()
    repo = AudioRetryRepository(session)

    entry = repo.open_for_summary(task.summary_id)
    if entry is None:
        entry = AudioGenerationRetry(
            batch_id=task.batch_id,
            summary_id=task.summary_id,
            retry_count=0,
            max_retries=max(0, int(s.audio_retry_max_attempts)),
            status=RetryStatus.pending,
            task_payload=task.to_payload(),
        )
        repo.add(entry)

    entry.last_error = (error or "")[:1000]
    entry.last_attempt_at = now
    entry.next_retry_at = now + timedelta(
        seconds=backoff_delay_sec(int(s.audio_retry_backoff_sec), entry.retry_count or 0)
    )
    session.flush()

    log.warning(
        "audio_retry_recorded",
        extra={
            "payload": {
                "batch_id": task.batch_id,
                "summary_id": task.summary_id,
                "retry_count": entry.retry_count,
                "next_retry_at": entry.next_retry_at,
                "err": entry.last_error[:200],
            }
        },
    )
    return entry


def mark_success(session: Session, *, summary_id: str, now: datetime | None = None) -> int:
    return AudioRetryRepository(session).mark_success_for_summary(
        summary_id, now=now or utc_now_naive()
    )


def _advance_entry(entry_id: int, *, now: datetime) -> tuple[str, AudioDispatchTask | None]:
    """
    Один шаг по записи: resolved / exhausted / requeue (с задачей) / skip.
    """
    s = get_settings()
    with db_session() as session:
        repo = AudioRetryRepository(session)
        entry = repo.get(entry_id)
        if entry is None or entry.status not in (RetryStatus.pending, RetryStatus.retrying):
            return "skip", None

        unit = SummaryRepository(session).get(entry.summary_id)
        if unit is not None and unit.is_audio_generated:
            entry.status = RetryStatus.success
            entry.success_at = now
            return "resolved", None

        if entry.retry_count >= entry.max_retries:
            entry.status = RetryStatus.failed
            entry.final_failure_at = now
            log.warning(
                "audio_retry_exhausted",
                extra={
                    "payload": {
                        "batch_id": entry.batch_id,
                        "summary_id": entry.summary_id,
                        "retry_count": entry.retry_count,
                        "last_error": (entry.last_error or "")[:200],
                    }
                },
            )
            return "exhausted", None

        entry.retry_count += 1
        entry.status = RetryStatus.retrying
        entry.last_attempt_at = now
        # страховка на случай потери задачи: запись снова созреет сама
        entry.next_retry_at = now + timedelta(
            seconds=backoff_delay_sec(int(s.audio_retry_backoff_sec), entry.retry_count)
        )

        payload = dict(entry.task_payload or {})
        payload["event_id"] = new_event_id("aud")
        payload["attempts"] = entry.retry_count
        return "requeue", AudioDispatchTask.from_payload(payload)


def process_due_retries(*, now: datetime | None = None, limit: int = 200) -> RetryPassResult:
    now = now or utc_now_naive()
    result = RetryPassResult()

    with db_session() as session:
        entry_ids = [e.id for e in AudioRetryRepository(session).list_due(now=now, limit=limit)]
    result.scanned = len(entry_ids)

    for entry_id in entry_ids:
        try:
            outcome, task = _advance_entry(entry_id, now=now)
            if outcome == "resolved":
                result.resolved += 1
            elif outcome == "exhausted":
                result.exhausted += 1
            elif outcome == "requeue" and task is not None:
                enqueue_audio_generation(task)
                result.requeued += 1
        except Exception as e:
            result.errors += 1
            log.error(
                "audio_retry_entry_error",
                extra={"payload": {"entry_id": entry_id, "err": str(e)[:300]}},
            )

    if result.scanned:
        log.info("audio_retry_pass_finished", extra={"payload": result.__dict__})
    return result
