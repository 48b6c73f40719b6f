"""
ORM-модели базы данных.

Назначение:
- трекинг жизненного цикла батча (batch_trackers)
- результаты первой стадии по пользователям (ai_summaries)
- журнал ретраев отправки на озвучку (audio_generation_retries)
- готовые аудио-миксы пользователей (user_mixes)

Связи между сущностями только по непрозрачным id, без relationship().
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus, RetryStatus, SummaryType


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# BATCH TRACKER
# =============================================================================
class Batch(Base):
    """
    Один батч = один цикл рассылки. Единственный источник агрегатного состояния.
    """

    __tablename__ = "batch_trackers"
    __table_args__ = (
        Index("ix_batch_trackers_status_timeout", "status", "timeout_at"),
        Index("ix_batch_trackers_status_created", "status", "created_at"),
    )

    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    expected_count: Mapped[int] = mapped_column(Integer, nullable=False)
    received_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, name="batchstatus"), default=BatchStatus.pending, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive, nullable=False
    )
    timeout_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    partial_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    audio_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    audio_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    audio_failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# SUMMARIES (юниты батча)
# =============================================================================
class Summary(Base):
    """
    Результат первой стадии для одного пользователя в батче.
    """

    __tablename__ = "ai_summaries"
    __table_args__ = (
        UniqueConstraint("batch_id", "user_id", name="uq_ai_summaries_batch_user"),
        Index("ix_ai_summaries_batch_audio", "batch_id", "is_audio_generated"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    summary: Mapped[str] = mapped_column(Text, nullable=False)
    summary_type: Mapped[SummaryType] = mapped_column(
        Enum(SummaryType, name="summarytype"), default=SummaryType.user, nullable=False
    )
    summary_title: Mapped[str] = mapped_column(String(255), default="Daily Mix", nullable=False)

    is_audio_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    audio_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Метка захвата юнита диспетчером: юнит уходит на озвучку не более одного раза
    audio_requested_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, onupdate=utc_now_naive, nullable=False
    )


# =============================================================================
# AUDIO GENERATION RETRIES
# =============================================================================
class AudioGenerationRetry(Base):
    """
    Журнал ретраев для юнита, отправка которого на озвучку не удалась.
    """

    __tablename__ = "audio_generation_retries"
    __table_args__ = (
        Index("ix_audio_retries_status_next", "status", "next_retry_at"),
        Index("ix_audio_retries_batch_status", "batch_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    summary_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    status: Mapped[RetryStatus] = mapped_column(
        Enum(RetryStatus, name="retrystatus"), default=RetryStatus.pending, nullable=False
    )

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_attempt_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now_naive, nullable=False
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)
    success_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    final_failure_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    task_payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


# =============================================================================
# USER MIXES
# =============================================================================
class UserMix(Base):
    __tablename__ = "user_mixes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    mix_name: Mapped[str] = mapped_column(String(128), nullable=False)
    mix_type: Mapped[str] = mapped_column(String(32), nullable=False)
    mix_icon: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now_naive, nullable=False)
