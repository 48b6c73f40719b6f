"""
Примитивы очередей поверх Redis lists.

Назначение:
- enqueue: LPUSH JSON-задачи в очередь
- read_task: блокирующее BRPOP с разбором JSON
- <queue>:dlq для задач, которые нельзя обработать
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from digest_orchestrator.common.logging import get_project_logger

from .redis import redis_client

log = get_project_logger()


@dataclass
class QueueMessage:
    queue: str
    payload: dict[str, Any]


def dlq_name(queue: str) -> str:
    return f"{queue}:dlq"


def enqueue(queue: str, payload: dict[str, Any]) -> None:
    redis_client().lpush(queue, json.dumps(payload, ensure_ascii=False, default=str))


def read_task(*, queue: str, block_sec: int = 5) -> QueueMessage | None:
    """
    Забрать одну задачу. None: очередь пуста в течение block_sec.
    Нечитаемый payload уходит в DLQ как есть.
    """
    r = redis_client()
    res = r.brpop([queue], timeout=max(1, int(block_sec)))
    if not res:
        return None

    _, raw = res
    try:
        payload = json.loads(raw)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        r.lpush(dlq_name(queue), raw)
        log.warning(
            "queue_message_invalid",
            extra={"payload": {"queue": queue, "raw": str(raw)[:200]}},
        )
        return None
    return QueueMessage(queue=queue, payload=payload)


def queue_length(queue: str) -> int:
    return int(redis_client().llen(queue))
