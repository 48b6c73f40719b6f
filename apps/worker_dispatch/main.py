"""
Worker Dispatch.

Алгоритм:
- читаем задачи из Redis list (q:summarize или q:audio, флаг --queue)
- перед каждой отправкой ждём throttle (минимальный интервал между отправками)
- отправляем во внешний воркер (суммаризатор / сервис озвучки)
- сбой суммаризации -> requeue_with_backoff (затем DLQ);
  сбой озвучки -> журнал ретраев (его разбирает maintenance)
"""

from __future__ import annotations

import argparse
import time

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.logging import get_project_logger, setup_logging
from digest_orchestrator.common.metrics import QUEUE_TASKS_TOTAL, track_stage_latency
from digest_orchestrator.queue.dispatcher import Q_AUDIO, Q_SUMMARIZE, queue_delay_sec
from digest_orchestrator.queue.retry import requeue_with_backoff
from digest_orchestrator.queue.streams import read_task
from digest_orchestrator.queue.throttle import Throttle
from digest_orchestrator.services.task_sender import send_task

log = get_project_logger()

_QUEUES = {"summarize": Q_SUMMARIZE, "audio": Q_AUDIO}


def process_one(queue: str, throttle: Throttle, *, block_sec: int) -> bool:
    """
    Обработать одну задачу. False: очередь пуста.
    """
    msg = read_task(queue=queue, block_sec=block_sec)
    if not msg:
        return False

    service = f"worker-dispatch-{queue.split(':')[-1]}"
    task = msg.payload
    throttle.wait()
    try:
        with track_stage_latency(service, "send"):
            send_task(queue, task)
        QUEUE_TASKS_TOTAL.labels(service=service, queue=queue, result="success").inc()
    except Exception as e:
        log.error(
            "worker_dispatch_error",
            extra={"payload": {"queue": queue, "err": str(e)[:200], "event_id": task.get("event_id")}},
        )
        QUEUE_TASKS_TOTAL.labels(service=service, queue=queue, result="error").inc()
        if requeue_with_backoff(queue_name=queue, task_payload=task, max_attempts=3, backoff_sec=2):
            QUEUE_TASKS_TOTAL.labels(service=service, queue=queue, result="retry").inc()
    return True


def run_loop(queue: str) -> None:
    settings = get_settings()
    throttle = Throttle(queue_delay_sec(queue))
    log.info(
        "worker_dispatch_started",
        extra={"payload": {"queue": queue, "delay_sec": throttle.min_interval_sec}},
    )
    while True:
        process_one(queue, throttle, block_sec=int(settings.queue_read_block_sec))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Отправка задач очередей во внешние воркеры")
    parser.add_argument("--queue", choices=sorted(_QUEUES), default="audio")
    args = parser.parse_args(argv)

    setup_logging()
    queue = _QUEUES[args.queue]
    while True:
        try:
            run_loop(queue)
        except Exception as e:
            log.error("worker_dispatch_fatal", extra={"payload": {"queue": queue, "err": str(e)[:200]}})
            time.sleep(2)


if __name__ == "__main__":
    main()
