"""
Базовый JSON HTTP-клиент для внешних воркеров.

- Bearer-токен, таймаут
- лог исходящего запроса и ответа с длительностью
- любые сбои транспорта/статуса/формата поднимаются как ProviderError
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from digest_orchestrator.common.errors import ProviderError
from digest_orchestrator.common.logging import get_http_logger

log = get_http_logger()


@dataclass
class JsonHttpConfig:
    base_url: str
    err_code: str
    provider: str
    token: str | None = None
    timeout_s: int = 10


class JsonHttpClient:
    def __init__(self, cfg: JsonHttpConfig) -> None:
        if not (cfg.base_url or "").strip():
            raise ProviderError(cfg.err_code, f"URL для {cfg.provider} не задан")
        self.cfg = cfg

    def _url(self, path: str) -> str:
        base = self.cfg.base_url.rstrip("/")
        if not path:
            return base
        return base + "/" + path.lstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.cfg.token:
            headers["Authorization"] = f"Bearer {self.cfg.token}"
        return headers

    def request(
        self,
        method: str,
        path: str = "",
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        url = self._url(path)
        method = method.upper()
        log.info(
            "http_request",
            extra={"payload": {"provider": self.cfg.provider, "method": method, "url": url}},
        )
        started = time.perf_counter()
        try:
            resp = requests.request(
                method,
                url,
                headers=self._headers(),
                json=json,
                params=params,
                timeout=self.cfg.timeout_s,
            )
        except requests.RequestException as e:
            log.error(
                "http_network_error",
                extra={"payload": {"provider": self.cfg.provider, "url": url, "err": str(e)[:300]}},
            )
            raise ProviderError(
                self.cfg.err_code,
                f"Ошибка HTTP при вызове {self.cfg.provider}",
                {"err": str(e)},
            ) from e

        duration_ms = int((time.perf_counter() - started) * 1000)
        if resp.status_code >= 400:
            log.error(
                "http_error_status",
                extra={
                    "payload": {
                        "provider": self.cfg.provider,
                        "url": url,
                        "status": resp.status_code,
                        "duration_ms": duration_ms,
                        "text_head": resp.text[:300],
                    }
                },
            )
            raise ProviderError(
                self.cfg.err_code,
                f"{self.cfg.provider} вернул ошибку",
                {"status": resp.status_code, "text_head": resp.text[:500]},
            )

        log.info(
            "http_response",
            extra={
                "payload": {
                    "provider": self.cfg.provider,
                    "url": url,
                    "status": resp.status_code,
                    "duration_ms": duration_ms,
                }
            },
        )
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(
                self.cfg.err_code,
                f"{self.cfg.provider} вернул невалидный JSON",
                {"err": str(e), "text_head": resp.text[:500]},
            ) from e
