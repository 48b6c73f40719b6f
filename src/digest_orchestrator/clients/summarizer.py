from __future__ import annotations

from typing import Any

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.errors import ErrCode
from digest_orchestrator.contracts.queue_events import SummarizeTask

from .base import JsonHttpClient, JsonHttpConfig


class SummarizerClient(JsonHttpClient):
    """Клиент суммаризатора (первая стадия)."""

    @classmethod
    def from_settings(cls) -> SummarizerClient:
        s = get_settings()
        return cls(
            JsonHttpConfig(
                base_url=s.summarizer_url or "",
                token=s.summarizer_token,
                timeout_s=int(s.summarizer_timeout_sec),
                provider="summarizer",
                err_code=ErrCode.SUMMARIZER_PROVIDER_ERROR,
            )
        )

    def summarize(self, task: SummarizeTask) -> Any:
        # Ответ суммаризатора не используется: результат придёт вебхуком summary.ready
        return self.request(
            "POST",
            json={
                "text": task.text,
                "user_id": task.user_id,
                "batch_id": task.batch_id,
                "max_length": task.max_length,
            },
        )
