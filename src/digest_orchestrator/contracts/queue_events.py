"""
Контракты задач очередей (runtime, Python-описание).

Важно:
- payload всегда JSON
- schema_version обязателен
- event_id полезен для трассировки и дебага
- attempts увеличивает requeue_with_backoff
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Literal

from .versions import QUEUE_SCHEMA_VERSION

SchemaV1 = Literal["v1"]


def _known(cls, payload: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in payload.items() if k in names}


@dataclass
class SummarizeTask:
    """
    Задача первой стадии: текст дайджеста пользователя -> суммаризатор.
    """

    event_id: str
    batch_id: str
    user_id: str
    text: str
    max_length: int = 700
    schema_version: SchemaV1 = QUEUE_SCHEMA_VERSION
    queue: Literal["summarize"] = "summarize"
    attempts: int = 0

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SummarizeTask:
        return cls(**_known(cls, payload))


@dataclass
class AudioDispatchTask:
    """
    Задача второй стадии: один юнит батча -> сервис озвучки.
    """

    event_id: str
    batch_id: str
    summary_id: str
    user_id: str
    summary: str
    summary_type: str = "user"
    summary_title: str = "Daily Mix"
    schema_version: SchemaV1 = QUEUE_SCHEMA_VERSION
    queue: Literal["audio"] = "audio"
    attempts: int = 0

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> AudioDispatchTask:
        return cls(**_known(cls, payload))

    def to_request(self, *, timestamp: str) -> dict[str, Any]:
        """
        Тело запроса к сервису озвучки (camelCase, как ждёт внешний воркер).
        """
        return {
            "batchId": self.batch_id,
            "summaryId": self.summary_id,
            "data": {
                "summaryId": self.summary_id,
                "userId": self.user_id,
                "summary": self.summary,
                "summaryType": self.summary_type,
                "summaryTitle": self.summary_title,
                "batchId": self.batch_id,
                "timestamp": timestamp,
            },
        }
