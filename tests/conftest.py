from __future__ import annotations

import os

# Настройки читаются один раз при импорте config: окружение выставляем до импортов проекта
os.environ["APP_ENV"] = "test"
os.environ["POSTGRES_DSN"] = "sqlite+pysqlite:///:memory:"
os.environ["QUEUE_MODE"] = "inline"
os.environ["AUTH_MODE"] = "none"
os.environ["LOG_FORMAT"] = "text"
os.environ["MAINTENANCE_ENABLED"] = "true"
os.environ["SUMMARY_JOB_ENABLED"] = "true"
os.environ["SCHEDULER_EMBEDDED"] = "false"
os.environ["AUDIO_DISPATCH_DELAY_SEC"] = "0"
os.environ["SUMMARY_DISPATCH_DELAY_SEC"] = "0"

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402

from digest_orchestrator.common.time import utc_now_naive  # noqa: E402
from digest_orchestrator.domain.enums import BatchStatus, SummaryType  # noqa: E402
from digest_orchestrator.storage.db import db_session, init_engine  # noqa: E402
from digest_orchestrator.storage.models import Base, Batch, Summary  # noqa: E402


@pytest.fixture(autouse=True)
def db():
    engine = init_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)


@pytest.fixture(autouse=True)
def audio_queue(monkeypatch):
    """
    Перехват постановки задач озвучки: список AudioDispatchTask в порядке постановки.
    """
    sent: list = []

    def _fake_enqueue(task):
        sent.append(task)
        return task.event_id

    monkeypatch.setattr(
        "digest_orchestrator.services.dispatch_service.enqueue_audio_generation", _fake_enqueue
    )
    monkeypatch.setattr(
        "digest_orchestrator.services.retry_ledger.enqueue_audio_generation", _fake_enqueue
    )
    return sent


@pytest.fixture()
def make_batch():
    def _make(
        *,
        expected: int = 4,
        received: int = 0,
        status: BatchStatus = BatchStatus.pending,
        created_at: datetime | None = None,
        timeout_min: int = 30,
        batch_id: str | None = None,
    ) -> str:
        created = created_at or utc_now_naive()
        bid = batch_id or f"batch_{os.urandom(6).hex()}"
        with db_session() as session:
            session.add(
                Batch(
                    batch_id=bid,
                    expected_count=expected,
                    received_count=received,
                    status=status,
                    created_at=created,
                    updated_at=created,
                    timeout_at=created + timedelta(minutes=timeout_min),
                    user_ids=[],
                )
            )
        return bid

    return _make


@pytest.fixture()
def add_unit():
    """
    Вставка юнита напрямую, без инкремента received_count батча.
    """

    def _add(
        batch_id: str,
        user_id: str,
        *,
        audio: bool = False,
        claimed: bool = False,
        created_at: datetime | None = None,
    ) -> str:
        now = created_at or utc_now_naive()
        summary_id = f"sum_{os.urandom(6).hex()}"
        with db_session() as session:
            session.add(
                Summary(
                    id=summary_id,
                    batch_id=batch_id,
                    user_id=user_id,
                    summary=f"summary for {user_id}",
                    summary_type=SummaryType.user,
                    is_audio_generated=audio,
                    audio_url=f"https://cdn.local/{user_id}.mp3" if audio else None,
                    audio_requested_at=now if claimed else None,
                    created_at=now,
                    updated_at=now,
                )
            )
        return summary_id

    return _add


@pytest.fixture()
def load_batch():
    def _load(batch_id: str) -> Batch | None:
        with db_session() as session:
            return session.get(Batch, batch_id)

    return _load
