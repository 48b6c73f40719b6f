"""
Maintenance job (обслуживание батчей).

Назначение:
- timeout: просроченные pending/partial_complete -> failed (юнитов нет)
  или принудительно complete с отправкой на озвучку
- orphan recovery: failed-батчи, у которых всё же появились юниты
- partial: повторная проверка порога 50% для pending с результатами
- redispatch: юниты без аудио и без захвата в complete/audio_requested
  (например, захват снят после сбоя постановки в очередь)
- retry: переотправка юнитов из журнала ретраев
- статистика по статусам (лог + gauge)

Каждый батч обрабатывается изолированно: ошибка логируется, проход идёт дальше.
Проходы тоже изолированы друг от друга.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import (
    MAINTENANCE_BATCH_ERRORS_TOTAL,
    MAINTENANCE_RUNS_TOTAL,
    record_batch_statistics,
    track_stage_latency,
)
from digest_orchestrator.common.time import to_naive_utc, utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.domain.state_machine import COLLECTING_STATES
from digest_orchestrator.services.completion_service import (
    complete_batch,
    evaluate_batch,
    fail_batch,
)
from digest_orchestrator.services.dispatch_service import REDISPATCH_STATES, redispatch_unclaimed
from digest_orchestrator.services.retry_ledger import RetryPassResult, process_due_retries
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.repositories import BatchRepository, SummaryRepository

log = get_project_logger()


@dataclass
class MaintenanceResult:
    started_at: datetime
    finished_at: datetime | None = None
    timed_out: int = 0
    failed: int = 0
    force_completed: int = 0
    orphans_checked: int = 0
    recovered: int = 0
    partial_checked: int = 0
    redispatched: int = 0
    errors: int = 0
    retry: RetryPassResult | None = None
    statistics: list[dict] = field(default_factory=list)


def _true_unit_count(batch_id: str, *, reconcile: bool) -> int:
    with db_session() as session:
        count = SummaryRepository(session).count_for_batch(batch_id)
        if reconcile:
            BatchRepository(session).set_received_count(batch_id, count)
        return count


def _for_each_batch(
    pass_name: str,
    batch_ids: list[str],
    handler: Callable[[str], None],
    result: MaintenanceResult,
) -> None:
    for batch_id in batch_ids:
        try:
            handler(batch_id)
        except Exception as e:
            result.errors += 1
            MAINTENANCE_BATCH_ERRORS_TOTAL.labels(pass_name=pass_name).inc()
            log.error(
                "maintenance_batch_error",
                extra={
                    "payload": {"pass": pass_name, "batch_id": batch_id, "err": str(e)[:300]}
                },
            )


# =============================================================================
# PASSES
# =============================================================================
def _timeout_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    with db_session() as session:
        batch_ids = [b.batch_id for b in BatchRepository(session).list_timed_out(now=now, limit=limit)]
    result.timed_out = len(batch_ids)

    def handle(batch_id: str) -> None:
        units = _true_unit_count(batch_id, reconcile=True)
        if units == 0:
            if fail_batch(batch_id, reason="timeout_no_summaries", now=now):
                result.failed += 1
            return

        evaluation = complete_batch(batch_id, sources=COLLECTING_STATES, reason="timeout", now=now)
        if BatchStatus.complete.value in evaluation.transitions:
            result.force_completed += 1
            log.info(
                "batch_timeout_force_complete",
                extra={"payload": {"batch_id": batch_id, "units": units}},
            )

    _for_each_batch("timeout", batch_ids, handle, result)


def _orphan_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    with db_session() as session:
        batch_ids = [b.batch_id for b in BatchRepository(session).list_failed_with_units(limit=limit)]
    result.orphans_checked = len(batch_ids)

    def handle(batch_id: str) -> None:
        units = _true_unit_count(batch_id, reconcile=False)
        if units == 0:
            return

        evaluation = complete_batch(
            batch_id,
            sources={BatchStatus.failed},
            reason="orphan_recovery",
            now=now,
            values={"received_count": units},
        )
        if BatchStatus.complete.value in evaluation.transitions:
            result.recovered += 1
            log.info(
                "batch_orphan_recovered",
                extra={
                    "payload": {
                        "batch_id": batch_id,
                        "units": units,
                        "status": evaluation.status.value if evaluation.status else None,
                    }
                },
            )

    _for_each_batch("orphan_recovery", batch_ids, handle, result)


def _partial_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    with db_session() as session:
        batch_ids = [
            b.batch_id for b in BatchRepository(session).list_pending_with_results(limit=limit)
        ]
    result.partial_checked = len(batch_ids)

    def handle(batch_id: str) -> None:
        evaluate_batch(batch_id, reconcile=True, now=now)

    _for_each_batch("partial", batch_ids, handle, result)


def _redispatch_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    with db_session() as session:
        batch_ids = [
            b.batch_id
            for b in BatchRepository(session).list_with_unclaimed_units(
                statuses=REDISPATCH_STATES, limit=limit
            )
        ]

    def handle(batch_id: str) -> None:
        dispatched = redispatch_unclaimed(batch_id, now=now)
        result.redispatched += dispatched.enqueued
        if dispatched.enqueued:
            log.info(
                "batch_units_redispatched",
                extra={"payload": {"batch_id": batch_id, "enqueued": dispatched.enqueued}},
            )

    _for_each_batch("redispatch", batch_ids, handle, result)


def _retry_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    result.retry = process_due_retries(now=now, limit=limit)
    result.errors += result.retry.errors


def _statistics_pass(*, now: datetime, limit: int, result: MaintenanceResult) -> None:
    with db_session() as session:
        result.statistics = BatchRepository(session).status_statistics()
    record_batch_statistics(result.statistics)
    log.info("batch_statistics", extra={"payload": {"items": result.statistics}})


_PASSES = (
    ("timeout", _timeout_pass),
    ("orphan_recovery", _orphan_pass),
    ("partial", _partial_pass),
    ("redispatch", _redispatch_pass),
    ("retry", _retry_pass),
    ("statistics", _statistics_pass),
)


# =============================================================================
# RUN
# =============================================================================
def run(*, now: datetime | None = None, limit: int | None = None) -> MaintenanceResult | None:
    settings = get_settings()
    if not settings.maintenance_enabled:
        log.info("maintenance_job_skipped", extra={"payload": {"reason": "disabled"}})
        MAINTENANCE_RUNS_TOTAL.labels(result="skipped").inc()
        return None

    now = to_naive_utc(now) if now else utc_now_naive()
    batch_limit = max(1, int(limit if limit is not None else settings.maintenance_limit))
    result = MaintenanceResult(started_at=now)
    log.info("maintenance_job_started", extra={"payload": {"limit": batch_limit}})

    with track_stage_latency("maintenance", "run"):
        for name, fn in _PASSES:
            try:
                fn(now=now, limit=batch_limit, result=result)
            except Exception as e:
                result.errors += 1
                MAINTENANCE_BATCH_ERRORS_TOTAL.labels(pass_name=name).inc()
                log.error(
                    "maintenance_pass_failed",
                    extra={"payload": {"pass": name, "err": str(e)[:300]}},
                )

    result.finished_at = utc_now_naive()
    MAINTENANCE_RUNS_TOTAL.labels(result="failed" if result.errors else "ok").inc()
    log.info(
        "maintenance_job_finished",
        extra={
            "payload": {
                "timed_out": result.timed_out,
                "failed": result.failed,
                "force_completed": result.force_completed,
                "orphans_checked": result.orphans_checked,
                "recovered": result.recovered,
                "partial_checked": result.partial_checked,
                "redispatched": result.redispatched,
                "retry_requeued": result.retry.requeued if result.retry else 0,
                "errors": result.errors,
            }
        },
    )
    return result
