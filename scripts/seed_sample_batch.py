"""
Сидинг тестового батча с частью саммари.
Используется для ручных проверок порогов и обслуживания в dev.

Пример:
    python scripts/seed_sample_batch.py --users 4 --summaries 2
"""

from __future__ import annotations

import argparse

from digest_orchestrator.common.logging import setup_logging
from digest_orchestrator.contracts.webhook_events import SummaryReadyEvent
from digest_orchestrator.services.batch_service import create_batch
from digest_orchestrator.services.ingest_service import ingest_summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Создать батч и прислать часть саммари")
    parser.add_argument("--users", type=int, default=4)
    parser.add_argument("--summaries", type=int, default=2)
    args = parser.parse_args(argv)

    setup_logging()
    user_ids = [f"seed-user-{i}" for i in range(1, max(1, args.users) + 1)]
    batch_id, timeout_at = create_batch(user_ids)
    print("Seeded batch:", batch_id, "timeout_at:", timeout_at.isoformat())

    for user_id in user_ids[: max(0, args.summaries)]:
        res = ingest_summary(
            SummaryReadyEvent(batch_id=batch_id, user_id=user_id, summary=f"Новости для {user_id}")
        )
        print("summary:", res.summary_id, "status:", res.status)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
