"""
Источник текстов дайджестов по пользователям.

Подбор статей и обрезка текста — зона внешнего сервиса; сюда приходит
уже готовый список {user_id, text}.
"""

from __future__ import annotations

from dataclasses import dataclass

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.errors import ErrCode, ProviderError
from digest_orchestrator.common.logging import get_project_logger

from .base import JsonHttpClient, JsonHttpConfig

log = get_project_logger()


@dataclass
class DigestItem:
    user_id: str
    text: str


class DigestSourceClient(JsonHttpClient):
    @classmethod
    def from_settings(cls) -> DigestSourceClient:
        s = get_settings()
        return cls(
            JsonHttpConfig(
                base_url=s.digest_source_url or "",
                token=s.digest_source_token,
                timeout_s=int(s.digest_source_timeout_sec),
                provider="digest_source",
                err_code=ErrCode.DIGEST_SOURCE_ERROR,
            )
        )

    def fetch_digests(self) -> list[DigestItem]:
        data = self.request("GET")
        if isinstance(data, dict):
            data = data.get("items", [])
        if not isinstance(data, list):
            raise ProviderError(
                ErrCode.DIGEST_SOURCE_ERROR,
                "digest_source вернул неожиданный формат",
                {"data_head": str(data)[:300]},
            )

        items: list[DigestItem] = []
        seen: set[str] = set()
        for raw in data:
            if not isinstance(raw, dict):
                continue
            user_id = str(raw.get("user_id") or raw.get("userId") or "").strip()
            text = str(raw.get("text") or "").strip()
            if not user_id or user_id in seen:
                continue
            if not text:
                log.info("digest_empty_for_user", extra={"payload": {"user_id": user_id}})
                continue
            seen.add(user_id)
            items.append(DigestItem(user_id=user_id, text=text))
        return items
