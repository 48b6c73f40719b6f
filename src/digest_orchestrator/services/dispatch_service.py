"""
Диспетчеризация батча на озвучку.

Алгоритм:
- батч уже на озвучке (audio_requested/audio_complete/audio_failed) -> пропуск
- берём юниты без аудио и без метки захвата, по времени создания
- каждый юнит захватываем условным UPDATE (audio_requested_at IS NULL)
  и ставим одну задачу в очередь q:audio; ожидания отправки нет
- сбой по юниту логируется, попадает в журнал ретраев и не останавливает цикл;
  если запись в журнал тоже не удалась, захват снимается

Паузу между отправками держит потребитель очереди (queue/throttle.py).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from digest_orchestrator.common.ids import new_event_id
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import DISPATCH_TOTAL
from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.contracts.queue_events import AudioDispatchTask
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.domain.state_machine import AUDIO_DISPATCHED_STATES
from digest_orchestrator.queue.dispatcher import enqueue_audio_generation
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.repositories import BatchRepository, SummaryRepository

from . import retry_ledger

log = get_project_logger()

# Статусы после завершения первой стадии, в которых юниты ещё ждут озвучки
REDISPATCH_STATES = frozenset({BatchStatus.complete, BatchStatus.audio_requested})


@dataclass
class DispatchResult:
    batch_id: str
    skipped: bool = False
    reason: str | None = None
    candidates: int = 0
    enqueued: int = 0
    failed: int = 0
    summary_ids: list[str] = field(default_factory=list)


def _claim_unit(summary_id: str, *, now: datetime) -> AudioDispatchTask | None:
    with db_session() as session:
        repo = SummaryRepository(session)
        if not repo.claim_for_dispatch(summary_id, now=now):
            return None
        unit = repo.get(summary_id)
        if unit is None:
            return None
        return AudioDispatchTask(
            event_id=new_event_id("aud"),
            batch_id=unit.batch_id,
            summary_id=unit.id,
            user_id=unit.user_id,
            summary=unit.summary,
            summary_type=unit.summary_type.value,
            summary_title=unit.summary_title,
        )


def _record_failure(task: AudioDispatchTask, error: str) -> bool:
    try:
        with db_session() as session:
            retry_ledger.record_failure(session, task=task, error=error)
        return True
    except Exception as e:
        log.error(
            "dispatch_retry_record_failed",
            extra={"payload": {"summary_id": task.summary_id, "err": str(e)[:300]}},
        )
        return False


def _release_claim(summary_id: str) -> None:
    """
    Юнит без записи в журнале ретраев не должен оставаться захваченным:
    иначе его не подберёт ни повторная отправка, ни sweep.
    """
    try:
        with db_session() as session:
            released = SummaryRepository(session).release_dispatch_claim(summary_id)
    except Exception as e:
        log.error(
            "dispatch_claim_release_failed",
            extra={"payload": {"summary_id": summary_id, "err": str(e)[:300]}},
        )
        return
    log.warning(
        "dispatch_claim_released",
        extra={"payload": {"summary_id": summary_id, "released": released}},
    )
def _send_units(
    batch_id: str, candidate_ids: list[str], *, now: datetime, result: DispatchResult
) -> None:
    result.candidates = len(candidate_ids)
    if not candidate_ids:
        log.info("dispatch_no_candidates", extra={"payload": {"batch_id": batch_id}})
        return

    for summary_id in candidate_ids:
        task: AudioDispatchTask | None = None
        try:
            task = _claim_unit(summary_id, now=now)
            if task is None:
                # захвачен параллельным диспетчером
                continue
            enqueue_audio_generation(task)
            result.enqueued += 1
            result.summary_ids.append(summary_id)
            DISPATCH_TOTAL.labels(result="enqueued").inc()
        except Exception as e:
            result.failed += 1
            DISPATCH_TOTAL.labels(result="failed").inc()
            log.error(
                "dispatch_unit_failed",
                extra={
                    "payload": {"batch_id": batch_id, "summary_id": summary_id, "err": str(e)[:300]}
                },
            )
            if task is not None and not _record_failure(task, str(e)):
                _release_claim(summary_id)

    log.info(
        "dispatch_batch_done",
        extra={
            "payload": {
                "batch_id": batch_id,
                "candidates": result.candidates,
                "enqueued": result.enqueued,
                "failed": result.failed,
            }
        },
    )


def dispatch_batch(batch_id: str, *, now: datetime | None = None) -> DispatchResult:
    now = now or utc_now_naive()
    result = DispatchResult(batch_id=batch_id)

    with db_session() as session:
        batch = BatchRepository(session).get(batch_id)
        if batch is None:
            log.warning("dispatch_batch_not_found", extra={"payload": {"batch_id": batch_id}})
            result.skipped, result.reason = True, "not_found"
            return result
        if batch.status in AUDIO_DISPATCHED_STATES:
            log.warning(
                "dispatch_skipped_already_dispatched",
                extra={"payload": {"batch_id": batch_id, "status": batch.status.value}},
            )
            DISPATCH_TOTAL.labels(result="skipped").inc()
            result.skipped, result.reason = True, "already_dispatched"
            return result
        candidate_ids = [u.id for u in SummaryRepository(session).list_dispatch_candidates(batch_id)]

    _send_units(batch_id, candidate_ids, now=now, result=result)
    return result


def redispatch_unclaimed(batch_id: str, *, now: datetime | None = None) -> DispatchResult:
    """
    Досылка юнитов, оставшихся без захвата после завершения первой стадии
    (complete / audio_requested). Защиту от дублей даёт захват юнита, поэтому
    статусная проверка dispatch_batch здесь не применяется.
    """
    now = now or utc_now_naive()
    result = DispatchResult(batch_id=batch_id)

    with db_session() as session:
        batch = BatchRepository(session).get(batch_id)
        if batch is None or batch.status not in REDISPATCH_STATES:
            result.skipped = True
            result.reason = "not_found" if batch is None else "status"
            return result
        candidate_ids = [u.id for u in SummaryRepository(session).list_dispatch_candidates(batch_id)]

    _send_units(batch_id, candidate_ids, now=now, result=result)
    return result
