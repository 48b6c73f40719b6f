"""
Репозитории (DAO слой).

Правила:
- никакой бизнес-логики, только CRUD и запросы
- изменение статуса батча только условным UPDATE (compare-and-swap):
  строка обновляется, только если её статус всё ещё среди ожидаемых,
  и вызывающий получает флаг "выиграл ли он переход"
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import Float, cast, func, select, update
from sqlalchemy.orm import Session

from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus, RetryStatus
from digest_orchestrator.domain.state_machine import allowed_sources

from .models import AudioGenerationRetry, Batch, Summary, UserMix


def _limit(limit: int) -> int:
    return max(1, min(int(limit), 5000))


# =============================================================================
# BATCH REPOSITORY
# =============================================================================
class BatchRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, batch_id: str) -> Batch | None:
        return self.session.get(Batch, batch_id)

    def add(self, batch: Batch) -> None:
        self.session.add(batch)

    def transition(
        self,
        batch_id: str,
        target: BatchStatus,
        *,
        sources: Iterable[BatchStatus] | None = None,
        **values: Any,
    ) -> bool:
        """
        Условный переход статуса. True: переход выполнил именно этот вызов.
        Источники пересекаются с таблицей переходов машины состояний.
        """
        allowed = allowed_sources(target)
        src = allowed if sources is None else frozenset(sources) & allowed
        if not src:
            return False

        stmt = (
            update(Batch)
            .where(Batch.batch_id == batch_id, Batch.status.in_(sorted(src, key=str)))
            .values(status=target, updated_at=utc_now_naive(), **values)
            .execution_options(synchronize_session=False)
        )
        res = self.session.execute(stmt)
        return res.rowcount == 1

    def increment_received(self, batch_id: str) -> int | None:
        """
        Атомарный +1 к received_count. Возвращает новое значение или None,
        если батча нет.
        """
        stmt = (
            update(Batch)
            .where(Batch.batch_id == batch_id)
            .values(received_count=Batch.received_count + 1, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        res = self.session.execute(stmt)
        if res.rowcount != 1:
            return None
        return self.session.scalar(
            select(Batch.received_count).where(Batch.batch_id == batch_id)
        )

    def set_received_count(self, batch_id: str, count: int) -> None:
        self.session.execute(
            update(Batch)
            .where(Batch.batch_id == batch_id)
            .values(received_count=max(0, int(count)), updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )

    def set_audio_url(self, batch_id: str, audio_url: str) -> None:
        self.session.execute(
            update(Batch)
            .where(Batch.batch_id == batch_id, Batch.audio_url.is_(None))
            .values(audio_url=audio_url, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )

    def list_timed_out(self, *, now: datetime, limit: int = 200) -> list[Batch]:
        return list(
            self.session.scalars(
                select(Batch)
                .where(
                    Batch.status.in_([BatchStatus.pending, BatchStatus.partial_complete]),
                    Batch.timeout_at <= now,
                )
                .order_by(Batch.timeout_at)
                .limit(_limit(limit))
            )
        )

    def list_failed_with_units(self, *, limit: int = 200) -> list[Batch]:
        """
        failed-батчи, у которых в БД есть хотя бы один юнит.
        Пустые failed-батчи не занимают окно limit.
        """
        has_units = select(Summary.id).where(Summary.batch_id == Batch.batch_id).exists()
        return list(
            self.session.scalars(
                select(Batch)
                .where(Batch.status == BatchStatus.failed, has_units)
                .order_by(Batch.created_at)
                .limit(_limit(limit))
            )
        )

    def list_with_unclaimed_units(
        self, *, statuses: Iterable[BatchStatus], limit: int = 200
    ) -> list[Batch]:
        """
        Батчи в statuses, у которых есть юниты без аудио и без захвата диспетчером.
        """
        unclaimed = (
            select(Summary.id)
            .where(
                Summary.batch_id == Batch.batch_id,
                Summary.is_audio_generated.is_(False),
                Summary.audio_requested_at.is_(None),
            )
            .exists()
        )
        return list(
            self.session.scalars(
                select(Batch)
                .where(Batch.status.in_(sorted(statuses, key=str)), unclaimed)
                .order_by(Batch.created_at)
                .limit(_limit(limit))
            )
        )

    def list_pending_with_results(self, *, limit: int = 200) -> list[Batch]:
        return list(
            self.session.scalars(
                select(Batch)
                .where(Batch.status == BatchStatus.pending, Batch.received_count > 0)
                .order_by(Batch.created_at)
                .limit(_limit(limit))
            )
        )

    def status_statistics(self) -> list[dict[str, Any]]:
        ratio = cast(Batch.received_count, Float) / func.nullif(Batch.expected_count, 0)
        rows = self.session.execute(
            select(Batch.status, func.count(), func.avg(ratio))
            .group_by(Batch.status)
            .order_by(Batch.status)
        ).all()
        return [
            {
                "status": status.value if isinstance(status, BatchStatus) else str(status),
                "count": int(count),
                "avg_completion_rate": round(float(avg or 0.0), 4),
            }
            for status, count, avg in rows
        ]


# =============================================================================
# SUMMARY REPOSITORY
# =============================================================================
class SummaryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, summary_id: str) -> Summary | None:
        return self.session.get(Summary, summary_id)

    def find(self, *, batch_id: str, user_id: str) -> Summary | None:
        return self.session.scalars(
            select(Summary).where(Summary.batch_id == batch_id, Summary.user_id == user_id)
        ).one_or_none()

    def add(self, summary: Summary) -> None:
        self.session.add(summary)

    def count_for_batch(self, batch_id: str) -> int:
        return int(
            self.session.scalar(
                select(func.count()).select_from(Summary).where(Summary.batch_id == batch_id)
            )
            or 0
        )

    def count_with_audio(self, batch_id: str) -> int:
        return int(
            self.session.scalar(
                select(func.count())
                .select_from(Summary)
                .where(Summary.batch_id == batch_id, Summary.is_audio_generated.is_(True))
            )
            or 0
        )

    def list_dispatch_candidates(self, batch_id: str) -> list[Summary]:
        """
        Юниты без аудио, ещё не захваченные диспетчером.
        """
        return list(
            self.session.scalars(
                select(Summary)
                .where(
                    Summary.batch_id == batch_id,
                    Summary.is_audio_generated.is_(False),
                    Summary.audio_requested_at.is_(None),
                )
                .order_by(Summary.created_at, Summary.id)
            )
        )

    def list_by_batch(self, batch_id: str) -> list[Summary]:
        return list(
            self.session.scalars(
                select(Summary).where(Summary.batch_id == batch_id).order_by(Summary.created_at)
            )
        )

    def claim_for_dispatch(self, summary_id: str, *, now: datetime) -> bool:
        stmt = (
            update(Summary)
            .where(
                Summary.id == summary_id,
                Summary.audio_requested_at.is_(None),
                Summary.is_audio_generated.is_(False),
            )
            .values(audio_requested_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def release_dispatch_claim(self, summary_id: str) -> bool:
        """
        Снять захват с юнита без аудио: он снова станет кандидатом на отправку.
        """
        stmt = (
            update(Summary)
            .where(
                Summary.id == summary_id,
                Summary.audio_requested_at.is_not(None),
                Summary.is_audio_generated.is_(False),
            )
            .values(audio_requested_at=None, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def mark_audio_generated(self, *, summary_id: str, user_id: str, audio_url: str) -> bool:
        """
        Единственная мутация юнита после создания. False: юнит не найден
        или аудио уже было отмечено ранее.
        """
        stmt = (
            update(Summary)
            .where(
                Summary.id == summary_id,
                Summary.user_id == user_id,
                Summary.is_audio_generated.is_(False),
            )
            .values(is_audio_generated=True, audio_url=audio_url, updated_at=utc_now_naive())
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1


# =============================================================================
# RETRY LEDGER REPOSITORY
# =============================================================================
_OPEN_RETRY_STATES = (RetryStatus.pending, RetryStatus.retrying)


class AudioRetryRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entry: AudioGenerationRetry) -> None:
        self.session.add(entry)

    def get(self, entry_id: int) -> AudioGenerationRetry | None:
        return self.session.get(AudioGenerationRetry, entry_id)

    def open_for_summary(self, summary_id: str) -> AudioGenerationRetry | None:
        return self.session.scalars(
            select(AudioGenerationRetry)
            .where(
                AudioGenerationRetry.summary_id == summary_id,
                AudioGenerationRetry.status.in_(_OPEN_RETRY_STATES),
            )
            .order_by(AudioGenerationRetry.id.desc())
            .limit(1)
        ).one_or_none()

    def list_due(self, *, now: datetime, limit: int = 200) -> list[AudioGenerationRetry]:
        return list(
            self.session.scalars(
                select(AudioGenerationRetry)
                .where(
                    AudioGenerationRetry.status.in_(_OPEN_RETRY_STATES),
                    AudioGenerationRetry.next_retry_at <= now,
                )
                .order_by(AudioGenerationRetry.next_retry_at)
                .limit(_limit(limit))
            )
        )

    def list_by_batch(self, batch_id: str) -> list[AudioGenerationRetry]:
        return list(
            self.session.scalars(
                select(AudioGenerationRetry)
                .where(AudioGenerationRetry.batch_id == batch_id)
                .order_by(AudioGenerationRetry.id)
            )
        )

    def mark_success_for_summary(self, summary_id: str, *, now: datetime) -> int:
        stmt = (
            update(AudioGenerationRetry)
            .where(
                AudioGenerationRetry.summary_id == summary_id,
                AudioGenerationRetry.status.in_(_OPEN_RETRY_STATES),
            )
            .values(status=RetryStatus.success, success_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(self.session.execute(stmt).rowcount or 0)


# =============================================================================
# USER MIX REPOSITORY
# =============================================================================
class UserMixRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, mix: UserMix) -> UserMix:
        self.session.add(mix)
        return mix

    def list_by_user(self, user_id: str, *, limit: int = 50) -> list[UserMix]:
        return list(
            self.session.scalars(
                select(UserMix)
                .where(UserMix.user_id == user_id)
                .order_by(UserMix.created_at.desc(), UserMix.id.desc())
                .limit(max(1, min(limit, 500)))
            )
        )
