"""
Метрики Prometheus для сервиса.

Назначение:
- Экспорт /metrics
- Счётчики переходов батчей, диспетчеризации, вебхуков и обслуживания
- Используется API Gateway, воркерами и периодическими задачами
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

# Общее количество HTTP-запросов
REQUESTS_TOTAL = Counter(
    "digest_requests_total",
    "Общее количество HTTP запросов",
    ["service", "route", "method", "status"],
)

HTTP_REQUEST_LATENCY_MS = Histogram(
    "digest_http_request_latency_ms",
    "Задержка HTTP запроса (мс)",
    ["service", "route", "method"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
)

STAGE_LATENCY_MS = Histogram(
    "digest_stage_latency_ms",
    "Задержка выполнения стадий (мс)",
    ["service", "stage"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

# Условные переходы статуса: won — переход выполнил этот вызов, lost — гонка проиграна
BATCH_TRANSITIONS_TOTAL = Counter(
    "digest_batch_transitions_total",
    "Попытки переходов статуса батча",
    ["target", "result"],  # result=won|lost
)

DISPATCH_TOTAL = Counter(
    "digest_dispatch_total",
    "Отправка юнитов на озвучку",
    ["result"],  # enqueued|sent|failed|skipped
)

WEBHOOK_EVENTS_TOTAL = Counter(
    "digest_webhook_events_total",
    "Входящие вебхуки",
    ["event", "result"],  # result=ok|duplicate|not_found|error
)

QUEUE_TASKS_TOTAL = Counter(
    "digest_queue_tasks_total",
    "Количество обработанных задач очереди",
    ["service", "queue", "result"],
)

QUEUE_DEPTH = Gauge(
    "digest_queue_depth",
    "Текущая глубина очередей",
    ["queue"],
)

MAINTENANCE_RUNS_TOTAL = Counter(
    "digest_maintenance_runs_total",
    "Запуски обслуживания батчей",
    ["result"],  # ok|failed|skipped
)

MAINTENANCE_BATCH_ERRORS_TOTAL = Counter(
    "digest_maintenance_batch_errors_total",
    "Ошибки обработки отдельных батчей при обслуживании",
    ["pass_name"],
)

PERIODIC_TASK_SKIPPED_TOTAL = Counter(
    "digest_periodic_task_skipped_total",
    "Пропуски периодической задачи из-за незавершённого предыдущего запуска",
    ["task"],
)

BATCH_STATUS = Gauge(
    "digest_batch_status",
    "Количество батчей по статусам (по данным последнего обслуживания)",
    ["status"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "digest_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_stage_latency(service: str, stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        STAGE_LATENCY_MS.labels(service=service, stage=stage).observe(elapsed_ms)


def record_transition(target: str, won: bool) -> None:
    BATCH_TRANSITIONS_TOTAL.labels(target=target, result="won" if won else "lost").inc()


def record_batch_statistics(items: list[dict]) -> None:
    for item in items:
        BATCH_STATUS.labels(status=str(item.get("status"))).set(max(0, int(item.get("count", 0))))


def refresh_queue_metrics() -> None:
    try:
        from digest_orchestrator.queue.dispatcher import ALL_QUEUES
        from digest_orchestrator.queue.streams import queue_length

        for queue in ALL_QUEUES:
            QUEUE_DEPTH.labels(queue=queue).set(queue_length(queue))
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()


# =============================================================================
# ENDPOINT /metrics
# =============================================================================
def setup_metrics_endpoint(app: FastAPI) -> None:
    """
    Регистрирует endpoint /metrics для Prometheus.
    """

    @app.middleware("http")
    async def http_metrics(request: Request, call_next):
        route = request.url.path
        method = request.method
        started = time.perf_counter()

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        status_code = str(response.status_code)

        REQUESTS_TOTAL.labels(
            service="api-gateway",
            route=route,
            method=method,
            status=status_code,
        ).inc()
        HTTP_REQUEST_LATENCY_MS.labels(
            service="api-gateway",
            route=route,
            method=method,
        ).observe(elapsed_ms)
        return response

    @app.get("/metrics")
    def metrics() -> Response:
        refresh_queue_metrics()
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
