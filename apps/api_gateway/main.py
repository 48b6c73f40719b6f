"""
API Gateway (FastAPI).

Функции:
- /health
- /metrics
- вебхуки внешних воркеров (summary.ready / audio.ready / audio.failed)
- HTTP API батчей
- admin: ручной запуск периодических задач

Планировщик (summary + maintenance) встраивается в процесс только при
SCHEDULER_EMBEDDED=true; иначе его запускает apps/worker_scheduler.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.api_gateway.routers.admin import router as admin_router
from apps.api_gateway.routers.batches import router as batches_router
from apps.api_gateway.routers.webhooks import router as webhooks_router
from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.logging import get_project_logger, setup_logging
from digest_orchestrator.common.metrics import setup_metrics_endpoint
from digest_orchestrator.jobs.scheduler import SUMMARY_TASK, build_scheduler
from digest_orchestrator.queue.dispatcher import shutdown_inline

log = get_project_logger()


def _parse_origins(raw: str) -> list[str]:
    origins = [o.strip() for o in (raw or "").split(",") if o.strip()]
    return origins or ["*"]


def _is_prod_env(app_env: str | None) -> bool:
    env = (app_env or "").strip().lower()
    return env in {"prod", "production"}


def _cors_params() -> tuple[list[str], bool]:
    settings = get_settings()
    allow_origins = _parse_origins(settings.cors_allowed_origins)
    allow_credentials = bool(settings.cors_allow_credentials)

    if _is_prod_env(settings.app_env) and "*" in allow_origins:
        raise RuntimeError("CORS wildcard '*' запрещён в APP_ENV=prod")

    # '*' нельзя использовать вместе с credentials=true
    if "*" in allow_origins:
        allow_credentials = False

    return allow_origins, allow_credentials


def _create_app() -> FastAPI:
    app = FastAPI(title="Digest Orchestrator", version="0.1.0")
    allow_origins, allow_credentials = _cors_params()
    settings = get_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=allow_credentials,
    )

    setup_metrics_endpoint(app)
    app.state.scheduler = build_scheduler(settings)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {"ok": True}

    @app.on_event("startup")
    async def start_scheduler() -> None:
        if not settings.scheduler_embedded:
            return
        run_now = [SUMMARY_TASK] if settings.run_summary_on_start else []
        app.state.scheduler.start(run_now=run_now)

    @app.on_event("shutdown")
    async def stop_scheduler() -> None:
        if settings.scheduler_embedded:
            app.state.scheduler.stop()
        shutdown_inline(wait=False)

    app.include_router(webhooks_router, prefix="/v1")
    app.include_router(batches_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")

    return app


setup_logging()
log.info("api_gateway_starting", extra={"payload": {"service": get_settings().service_name}})

app = _create_app()
