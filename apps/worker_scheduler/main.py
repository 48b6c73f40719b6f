"""
Worker Scheduler.

Назначение:
- держать периодические задачи (генерация саммари, обслуживание батчей)
- по SIGTERM/SIGINT аккуратно останавливать тикеры
"""

from __future__ import annotations

import signal
import threading

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.common.logging import get_project_logger, setup_logging
from digest_orchestrator.jobs.scheduler import SUMMARY_TASK, build_scheduler

log = get_project_logger()


def main() -> None:
    setup_logging()
    settings = get_settings()
    scheduler = build_scheduler(settings)
    stop = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        log.info("worker_scheduler_signal", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    scheduler.start(run_now=[SUMMARY_TASK] if settings.run_summary_on_start else [])
    log.info("worker_scheduler_started", extra={"payload": {"tasks": scheduler.status()}})

    stop.wait()
    scheduler.stop()


if __name__ == "__main__":
    main()
