"""
HTTP API контракты (Pydantic-модели).

Назначение:
- валидация входа/выхода на уровне FastAPI
- стабильные структуры для клиентов
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .versions import HTTP_API_VERSION


# =============================================================================
# ЗАПРОСЫ
# =============================================================================
class BatchCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default=HTTP_API_VERSION)
    user_ids: list[str] = Field(alias="userIds", min_length=1)
    # По умолчанию = len(user_ids)
    expected_count: int | None = Field(default=None, alias="expectedCount", ge=1)


# =============================================================================
# ОТВЕТЫ
# =============================================================================
class BatchCreateResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    batch_id: str
    timeout_at: datetime


class BatchGetResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    batch_id: str
    status: str
    expected_count: int
    received_count: int
    completion_ratio: float
    user_ids: list[str] = Field(default_factory=list)

    created_at: datetime
    timeout_at: datetime
    partial_completed_at: datetime | None = None
    completed_at: datetime | None = None
    audio_requested_at: datetime | None = None
    audio_completed_at: datetime | None = None
    audio_failed_at: datetime | None = None
    failed_at: datetime | None = None

    audio_url: str | None = None
    failure_reason: str | None = None


class BatchEvaluateResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    batch_id: str
    status: str | None = None
    transitions: list[str] = Field(default_factory=list)
    dispatched: int = 0


class BatchStatsItem(BaseModel):
    status: str
    count: int
    avg_completion_rate: float


class BatchStatsResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    items: list[BatchStatsItem] = Field(default_factory=list)


class WebhookAckResponse(BaseModel):
    api_version: str = Field(default=HTTP_API_VERSION)
    ok: bool = True
    event: str
    batch_id: str | None = None
    summary_id: str | None = None
    duplicate: bool = False
    details: dict[str, Any] = Field(default_factory=dict)
