"""
Контракты входящих вебхуков (Pydantic-модели).

Закрытый набор событий с тегом type:
- summary.ready — результат первой стадии по пользователю
- audio.ready   — готово аудио для юнита (или, в legacy-форме, для батча)
- audio.failed  — озвучка батча окончательно не удалась

Правила:
- обязательные поля проверяются на границе (иначе 422)
- принимаются и snake_case, и camelCase имена полей
- лишние поля игнорируются
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from digest_orchestrator.domain.enums import SummaryType


class _WebhookEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class SummaryReadyEvent(_WebhookEvent):
    type: Literal["summary.ready"] = "summary.ready"
    batch_id: str = Field(alias="batchId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    summary: str = Field(min_length=1)
    summary_type: SummaryType = Field(default=SummaryType.user, alias="summaryType")
    summary_title: str | None = Field(default=None, alias="summaryTitle")


class AudioReadyEvent(_WebhookEvent):
    type: Literal["audio.ready"] = "audio.ready"
    user_id: str = Field(alias="userId", min_length=1)
    audio_url: str = Field(alias="audioUrl", min_length=1)
    summary_id: str | None = Field(default=None, alias="summaryId")
    batch_id: str | None = Field(default=None, alias="batchId")

    @model_validator(mode="after")
    def _require_target(self) -> AudioReadyEvent:
        if not self.summary_id and not self.batch_id:
            raise ValueError("summary_id или batch_id обязателен")
        return self

    @property
    def is_batch_level(self) -> bool:
        return not self.summary_id


class AudioFailedEvent(_WebhookEvent):
    type: Literal["audio.failed"] = "audio.failed"
    batch_id: str = Field(alias="batchId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    error_message: str = Field(alias="errorMessage", min_length=1)


WebhookEvent = Annotated[
    SummaryReadyEvent | AudioReadyEvent | AudioFailedEvent,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(WebhookEvent)


def parse_webhook_event(payload: dict[str, Any]) -> SummaryReadyEvent | AudioReadyEvent | AudioFailedEvent:
    """
    Разбор произвольного тела в одно из событий. Бросает pydantic.ValidationError.
    """
    return _EVENT_ADAPTER.validate_python(payload)
