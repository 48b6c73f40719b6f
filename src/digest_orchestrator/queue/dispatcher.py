"""
Диспетчер очередей.

Назначение:
- Единые имена очередей
- Унифицированная упаковка задач в JSON
- enqueue_* для обеих стадий (суммаризация, озвучка)

Режимы (QUEUE_MODE):
- redis  — задача кладётся в Redis list, её забирает apps/worker_dispatch
- inline — задача уходит в однопоточный executor процесса с тем же throttle

В обоих режимах enqueue_* возвращается сразу, не дожидаясь отправки.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.contracts.queue_events import AudioDispatchTask, SummarizeTask

from .streams import enqueue
from .throttle import Throttle

log = get_project_logger()

# =============================================================================
# ИМЕНА ОЧЕРЕДЕЙ (Redis lists)
# =============================================================================
Q_SUMMARIZE = "q:summarize"
Q_AUDIO = "q:audio"

ALL_QUEUES = (Q_SUMMARIZE, Q_AUDIO)


def queue_delay_sec(queue: str) -> float:
    s = get_settings()
    if queue == Q_SUMMARIZE:
        return float(s.summary_dispatch_delay_sec)
    return float(s.audio_dispatch_delay_sec)


def _is_inline() -> bool:
    return (get_settings().queue_mode or "").strip().lower() == "inline"


# =============================================================================
# INLINE EXECUTORS (один поток на очередь)
# =============================================================================
_inline_lock = threading.Lock()
_inline_executors: dict[str, ThreadPoolExecutor] = {}
_inline_throttles: dict[str, Throttle] = {}


def _inline_executor(queue: str) -> tuple[ThreadPoolExecutor, Throttle]:
    with _inline_lock:
        ex = _inline_executors.get(queue)
        if ex is None:
            ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"inline-{queue}")
            _inline_executors[queue] = ex
            _inline_throttles[queue] = Throttle(queue_delay_sec(queue))
        return ex, _inline_throttles[queue]


def _run_inline(queue: str, payload: dict[str, Any], throttle: Throttle) -> None:
    from digest_orchestrator.services.task_sender import send_task

    throttle.wait()
    try:
        send_task(queue, payload)
    except Exception as e:
        log.error(
            "inline_task_failed",
            extra={
                "payload": {
                    "queue": queue,
                    "event_id": payload.get("event_id"),
                    "err": str(e)[:300],
                }
            },
        )


def _submit_inline(queue: str, payload: dict[str, Any]) -> Future:
    ex, throttle = _inline_executor(queue)
    return ex.submit(_run_inline, queue, payload, throttle)


def drain_inline(timeout: float | None = None) -> None:
    """
    Дождаться выполнения уже поставленных inline-задач (тесты/остановка).
    """
    with _inline_lock:
        executors = list(_inline_executors.values())
    for ex in executors:
        ex.submit(lambda: None).result(timeout=timeout)


def shutdown_inline(wait: bool = True) -> None:
    with _inline_lock:
        executors = list(_inline_executors.values())
        _inline_executors.clear()
        _inline_throttles.clear()
    for ex in executors:
        ex.shutdown(wait=wait)


# =============================================================================
# ENQUEUE
# =============================================================================
def _publish(queue: str, payload: dict[str, Any]) -> None:
    if _is_inline():
        _submit_inline(queue, payload)
        return
    enqueue(queue, payload)


def enqueue_summarization(task: SummarizeTask) -> str:
    """
    Поставить задачу суммаризации текста пользователя.
    """
    _publish(Q_SUMMARIZE, task.to_payload())
    log.info(
        "enqueue_summarize",
        extra={
            "payload": {
                "batch_id": task.batch_id,
                "user_id": task.user_id,
                "event_id": task.event_id,
                "inline": _is_inline(),
            }
        },
    )
    return task.event_id


def enqueue_audio_generation(task: AudioDispatchTask) -> str:
    """
    Поставить задачу озвучки одного юнита батча.
    """
    _publish(Q_AUDIO, task.to_payload())
    log.info(
        "enqueue_audio",
        extra={
            "payload": {
                "batch_id": task.batch_id,
                "summary_id": task.summary_id,
                "event_id": task.event_id,
                "attempts": task.attempts,
                "inline": _is_inline(),
            }
        },
    )
    return task.event_id
