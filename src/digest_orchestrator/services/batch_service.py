"""
Сервисный слой: создание и чтение батчей.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.errors import NotFoundError, ValidationError
from digest_orchestrator.common.ids import new_batch_id
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.models import Batch
from digest_orchestrator.storage.repositories import BatchRepository

log = get_project_logger()


def _unique(user_ids: list[str]) -> list[str]:
    out: list[str] = []
    for uid in user_ids:
        uid = (uid or "").strip()
        if uid and uid not in out:
            out.append(uid)
    return out


def create_batch(
    user_ids: list[str],
    expected_count: int | None = None,
    *,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    """
    Регистрирует новый батч. Возвращает (batch_id, timeout_at).
    """
    users = _unique(user_ids)
    expected = len(users) if expected_count is None else int(expected_count)
    if expected < 1:
        raise ValidationError("expected_count должен быть >= 1", {"expected_count": expected})

    now = now or utc_now_naive()
    timeout_at = now + timedelta(minutes=int(get_settings().batch_timeout_min))
    batch_id = new_batch_id()

    with db_session() as session:
        BatchRepository(session).add(
            Batch(
                batch_id=batch_id,
                expected_count=expected,
                received_count=0,
                status=BatchStatus.pending,
                created_at=now,
                updated_at=now,
                timeout_at=timeout_at,
                user_ids=users,
            )
        )

    log.info(
        "batch_created",
        extra={
            "payload": {"batch_id": batch_id, "expected": expected, "timeout_at": timeout_at}
        },
    )
    return batch_id, timeout_at


def get_batch(batch_id: str) -> Batch:
    with db_session() as session:
        batch = BatchRepository(session).get(batch_id)
        if batch is None:
            raise NotFoundError("Батч не найден", {"batch_id": batch_id})
        return batch


def batch_statistics() -> list[dict]:
    with db_session() as session:
        return BatchRepository(session).status_statistics()
