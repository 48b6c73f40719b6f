"""
Оценка завершённости батча (первая и вторая стадии).

Правила:
- порог 50%: pending -> partial_complete, победитель перехода отправляет
  на озвучку все юниты без аудио
- порог 100%: pending|partial_complete -> complete; победитель отправляет
  юниты, ещё не захваченные диспетчером (после 50% это только новые),
  затем complete -> audio_requested (или сразу audio_complete, если аудио
  уже есть у всех юнитов)
- audio_requested -> audio_complete, когда аудио есть у всех юнитов

Любой переход — условный UPDATE; проигравший гонку только логирует.
Побочные эффекты выполняются после коммита перехода.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import record_transition
from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.domain.state_machine import (
    COLLECTING_STATES,
    completion_ratio,
    reached_full,
    reached_partial,
)
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.repositories import BatchRepository, SummaryRepository

from .dispatch_service import dispatch_batch

log = get_project_logger()


@dataclass
class EvaluationResult:
    batch_id: str
    found: bool = True
    status: BatchStatus | None = None
    received_count: int = 0
    expected_count: int = 0
    transitions: list[str] = field(default_factory=list)
    dispatched: int = 0


# =============================================================================
# ПЕРЕХОДЫ
# =============================================================================
def attempt_transition(
    batch_id: str,
    target: BatchStatus,
    *,
    sources: Iterable[BatchStatus] | None = None,
    **values: Any,
) -> bool:
    """
    Условный переход в отдельной транзакции. True: переход выполнил этот вызов.
    """
    with db_session() as session:
        won = BatchRepository(session).transition(batch_id, target, sources=sources, **values)

    record_transition(target.value, won)
    payload = {"batch_id": batch_id, "target": target.value}
    if won:
        log.info("batch_transition", extra={"payload": payload})
    else:
        log.info("batch_transition_lost", extra={"payload": payload})
    return won


def _read_status(batch_id: str) -> BatchStatus | None:
    with db_session() as session:
        batch = BatchRepository(session).get(batch_id)
        return batch.status if batch else None


def _unit_counts(batch_id: str) -> tuple[int, int]:
    with db_session() as session:
        repo = SummaryRepository(session)
        return repo.count_for_batch(batch_id), repo.count_with_audio(batch_id)


def fail_batch(batch_id: str, *, reason: str, now: datetime | None = None) -> bool:
    now = now or utc_now_naive()
    won = attempt_transition(
        batch_id,
        BatchStatus.failed,
        sources={BatchStatus.pending, BatchStatus.partial_complete},
        failed_at=now,
        failure_reason=reason,
    )
    if won:
        log.warning("batch_failed", extra={"payload": {"batch_id": batch_id, "reason": reason}})
    return won


# =============================================================================
# ЗАВЕРШЕНИЕ ПЕРВОЙ СТАДИИ
# =============================================================================
def _finalize_complete(batch_id: str, result: EvaluationResult, *, now: datetime) -> None:
    total, with_audio = _unit_counts(batch_id)
    if total > 0 and with_audio >= total:
        if attempt_transition(
            batch_id,
            BatchStatus.audio_complete,
            sources={BatchStatus.complete},
            audio_completed_at=now,
        ):
            result.transitions.append(BatchStatus.audio_complete.value)
            log.info(
                "batch_audio_complete_without_dispatch",
                extra={"payload": {"batch_id": batch_id, "units": total}},
            )
        return

    dispatched = dispatch_batch(batch_id, now=now)
    result.dispatched += dispatched.enqueued

    if attempt_transition(
        batch_id,
        BatchStatus.audio_requested,
        sources={BatchStatus.complete},
        audio_requested_at=now,
    ):
        result.transitions.append(BatchStatus.audio_requested.value)

    # аудио могло прийти раньше, чем батч перешёл в audio_requested
    if check_audio_completion(batch_id, now=now):
        result.transitions.append(BatchStatus.audio_complete.value)


def complete_batch(
    batch_id: str,
    *,
    sources: Iterable[BatchStatus],
    reason: str,
    now: datetime | None = None,
    result: EvaluationResult | None = None,
    values: dict[str, Any] | None = None,
) -> EvaluationResult:
    """
    Перевод в complete из текущего статуса (если он среди sources) и отправка
    на озвучку. После проигранной гонки статус перечитывается: батч мог уйти
    pending -> partial_complete, и тогда переход повторяется уже оттуда.
    """
    now = now or utc_now_naive()
    result = result or EvaluationResult(batch_id=batch_id)
    allowed = frozenset(sources)

    for _ in range(len(allowed) + 1):
        current = _read_status(batch_id)
        if current is None or current not in allowed:
            break
        if attempt_transition(
            batch_id,
            BatchStatus.complete,
            sources={current},
            completed_at=now,
            **(values or {}),
        ):
            result.transitions.append(BatchStatus.complete.value)
            log.info(
                "batch_complete",
                extra={
                    "payload": {
                        "batch_id": batch_id,
                        "from_status": current.value,
                        "reason": reason,
                        "follow_up": current == BatchStatus.partial_complete,
                    }
                },
            )
            _finalize_complete(batch_id, result, now=now)
            break

    result.status = _read_status(batch_id)
    return result


def evaluate_batch(
    batch_id: str,
    *,
    reconcile: bool = False,
    received_count: int | None = None,
    now: datetime | None = None,
) -> EvaluationResult:
    """
    Проверка порогов 50%/100% для батча.

    reconcile=True: received_count заменяется истинным числом юнитов в БД.
    received_count: значение счётчика, полученное вызывающим при инкременте.
    """
    now = now or utc_now_naive()

    with db_session() as session:
        repo = BatchRepository(session)
        batch = repo.get(batch_id)
        if batch is None:
            log.warning("batch_evaluate_not_found", extra={"payload": {"batch_id": batch_id}})
            return EvaluationResult(batch_id=batch_id, found=False)

        expected = batch.expected_count
        status = batch.status
        received = batch.received_count
        if reconcile:
            true_count = SummaryRepository(session).count_for_batch(batch_id)
            if true_count != received:
                repo.set_received_count(batch_id, true_count)
                log.info(
                    "batch_received_count_reconciled",
                    extra={
                        "payload": {"batch_id": batch_id, "cached": received, "actual": true_count}
                    },
                )
            received = true_count
        elif received_count is not None:
            received = received_count

    result = EvaluationResult(
        batch_id=batch_id,
        status=status,
        received_count=received,
        expected_count=expected,
    )
    log.info(
        "batch_evaluated",
        extra={
            "payload": {
                "batch_id": batch_id,
                "status": status.value,
                "received": received,
                "expected": expected,
                "ratio": round(completion_ratio(received, expected), 4),
            }
        },
    )
    if status not in COLLECTING_STATES:
        return result

    if reached_full(received, expected):
        return complete_batch(
            batch_id,
            sources=COLLECTING_STATES,
            reason="all_received",
            now=now,
            result=result,
        )

    if status == BatchStatus.pending and reached_partial(received, expected):
        if attempt_transition(
            batch_id,
            BatchStatus.partial_complete,
            sources={BatchStatus.pending},
            partial_completed_at=now,
        ):
            result.transitions.append(BatchStatus.partial_complete.value)
            log.info(
                "batch_partial_complete",
                extra={
                    "payload": {"batch_id": batch_id, "received": received, "expected": expected}
                },
            )
            result.dispatched += dispatch_batch(batch_id, now=now).enqueued

    result.status = _read_status(batch_id)
    return result


def on_summary_received(batch_id: str, received_count: int | None) -> EvaluationResult:
    return evaluate_batch(batch_id, received_count=received_count)


# =============================================================================
# ЗАВЕРШЕНИЕ ВТОРОЙ СТАДИИ
# =============================================================================
def check_audio_completion(batch_id: str, *, now: datetime | None = None) -> bool:
    """
    Аудио есть у всех юнитов батча -> audio_complete. True: переход выполнил этот вызов.
    """
    now = now or utc_now_naive()
    with db_session() as session:
        batch = BatchRepository(session).get(batch_id)
        if batch is None:
            return False
        status = batch.status
        srepo = SummaryRepository(session)
        total = srepo.count_for_batch(batch_id)
        with_audio = srepo.count_with_audio(batch_id)

    log.info(
        "batch_audio_progress",
        extra={
            "payload": {
                "batch_id": batch_id,
                "status": status.value,
                "with_audio": with_audio,
                "total": total,
            }
        },
    )
    if total == 0 or with_audio < total:
        return False
    if status not in (BatchStatus.audio_requested, BatchStatus.complete):
        return False

    won = attempt_transition(
        batch_id,
        BatchStatus.audio_complete,
        sources={BatchStatus.audio_requested, BatchStatus.complete},
        audio_completed_at=now,
    )
    if won:
        log.info("batch_audio_complete", extra={"payload": {"batch_id": batch_id, "units": total}})
    return won
