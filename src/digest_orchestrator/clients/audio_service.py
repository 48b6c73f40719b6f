from __future__ import annotations

from typing import Any

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.errors import ErrCode
from digest_orchestrator.common.time import utc_now_iso
from digest_orchestrator.contracts.queue_events import AudioDispatchTask

from .base import JsonHttpClient, JsonHttpConfig


class AudioServiceClient(JsonHttpClient):
    """Клиент сервиса озвучки (вторая стадия)."""

    @classmethod
    def from_settings(cls) -> AudioServiceClient:
        s = get_settings()
        return cls(
            JsonHttpConfig(
                base_url=s.audio_service_url or "",
                token=s.audio_service_token,
                timeout_s=int(s.audio_service_timeout_sec),
                provider="audio_service",
                err_code=ErrCode.AUDIO_PROVIDER_ERROR,
            )
        )

    def generate(self, task: AudioDispatchTask) -> Any:
        """
        Запрос на озвучку одного юнита. Результат придёт вебхуком audio.ready/audio.failed.
        """
        return self.request("POST", "/generate-audio", json=task.to_request(timestamp=utc_now_iso()))
