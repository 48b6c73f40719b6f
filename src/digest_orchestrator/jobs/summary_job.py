"""
Summary job (запуск первой стадии).

Назначение:
- забрать тексты дайджестов по пользователям из источника
- создать батч на пользователей с непустым текстом
- поставить по одной задаче суммаризации на пользователя
"""

from __future__ import annotations

from dataclasses import dataclass

from digest_orchestrator.clients.digest_source import DigestSourceClient
from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.ids import new_event_id
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.contracts.queue_events import SummarizeTask
from digest_orchestrator.queue.dispatcher import enqueue_summarization
from digest_orchestrator.services.batch_service import create_batch

log = get_project_logger()


@dataclass
class SummaryJobResult:
    batch_id: str | None = None
    users: int = 0
    enqueued: int = 0
    failed: int = 0
    skipped: bool = False


def run(*, source: DigestSourceClient | None = None) -> SummaryJobResult | None:
    settings = get_settings()
    if not settings.summary_job_enabled:
        log.info("summary_job_skipped", extra={"payload": {"reason": "disabled"}})
        return None

    log.info("summary_job_started")
    client = source or DigestSourceClient.from_settings()
    items = client.fetch_digests()
    if not items:
        log.warning("summary_job_no_content")
        return SummaryJobResult(skipped=True)

    batch_id, timeout_at = create_batch([item.user_id for item in items])
    result = SummaryJobResult(batch_id=batch_id, users=len(items))

    for item in items:
        task = SummarizeTask(
            event_id=new_event_id("smz"),
            batch_id=batch_id,
            user_id=item.user_id,
            text=item.text,
            max_length=int(settings.summarizer_max_length),
        )
        try:
            enqueue_summarization(task)
            result.enqueued += 1
        except Exception as e:
            result.failed += 1
            log.error(
                "summary_job_enqueue_failed",
                extra={
                    "payload": {"batch_id": batch_id, "user_id": item.user_id, "err": str(e)[:300]}
                },
            )

    log.info(
        "summary_job_finished",
        extra={
            "payload": {
                "batch_id": batch_id,
                "users": result.users,
                "enqueued": result.enqueued,
                "failed": result.failed,
                "timeout_at": timeout_at,
            }
        },
    )
    return result
