"""
Планировщик периодических задач.

Назначение:
- генерация саммари (summary_job) и обслуживание батчей (maintenance_job)
  с интервалами из настроек
- у каждой задачи свой неблокирующий guard: если предыдущий запуск ещё
  идёт, очередной тик пропускается с warning, а не ставится в очередь
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from digest_orchestrator.common.config import Settings, get_settings
from digest_orchestrator.common.logging import get_project_logger
from digest_orchestrator.common.metrics import PERIODIC_TASK_SKIPPED_TOTAL
from digest_orchestrator.common.time import utc_now

log = get_project_logger()

SUMMARY_TASK = "summary"
MAINTENANCE_TASK = "maintenance"


class PeriodicTask:
    def __init__(
        self,
        name: str,
        fn: Callable[[], Any],
        interval_sec: float,
        *,
        enabled: bool = True,
    ) -> None:
        self.name = name
        self.fn = fn
        self.interval_sec = max(1.0, float(interval_sec))
        self.enabled = enabled

        self.last_started_at: datetime | None = None
        self.last_finished_at: datetime | None = None
        self.last_error: str | None = None
        self.runs = 0
        self.skipped = 0

        self._guard = threading.BoundedSemaphore(1)
        self._running = False
        self._stop = threading.Event()
        self._ticker: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_scheduled(self) -> bool:
        return self._ticker is not None and self._ticker.is_alive()

    def _acquire(self) -> bool:
        if self._guard.acquire(blocking=False):
            return True
        self.skipped += 1
        PERIODIC_TASK_SKIPPED_TOTAL.labels(task=self.name).inc()
        log.warning(
            "periodic_task_skipped_in_flight",
            extra={"payload": {"task": self.name, "started_at": self.last_started_at}},
        )
        return False

    def _run_acquired(self) -> None:
        self._running = True
        self.last_started_at = utc_now()
        log.info("periodic_task_started", extra={"payload": {"task": self.name}})
        try:
            self.fn()
            self.last_error = None
        except Exception as e:
            self.last_error = str(e)[:300]
            log.error(
                "periodic_task_failed",
                extra={"payload": {"task": self.name, "err": self.last_error}},
            )
        finally:
            self.runs += 1
            self.last_finished_at = utc_now()
            self._running = False
            self._guard.release()

    def run_once(self) -> bool:
        """
        Синхронный запуск в текущем потоке. False: предыдущий запуск ещё идёт.
        """
        if not self._acquire():
            return False
        self._run_acquired()
        return True

    def trigger(self) -> threading.Thread | None:
        """
        Запуск в отдельном потоке. None: предыдущий запуск ещё идёт.
        """
        if not self._acquire():
            return None
        thread = threading.Thread(
            target=self._run_acquired, name=f"task-{self.name}", daemon=True
        )
        thread.start()
        return thread

    def _tick_loop(self) -> None:
        while not self._stop.wait(self.interval_sec):
            self.trigger()

    def start(self) -> None:
        if not self.enabled or self.is_scheduled:
            return
        self._stop.clear()
        self._ticker = threading.Thread(
            target=self._tick_loop, name=f"ticker-{self.name}", daemon=True
        )
        self._ticker.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._ticker is not None:
            self._ticker.join(timeout=timeout)
            self._ticker = None

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "is_scheduled": self.is_scheduled,
            "is_running": self.is_running,
            "interval_sec": self.interval_sec,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_error": self.last_error,
            "runs": self.runs,
            "skipped": self.skipped,
        }


class Scheduler:
    def __init__(self, tasks: list[PeriodicTask]) -> None:
        self.tasks = {t.name: t for t in tasks}

    def start(self, *, run_now: list[str] | None = None) -> None:
        for task in self.tasks.values():
            task.start()
        for name in run_now or []:
            self.run_now(name)
        log.info(
            "scheduler_started",
            extra={"payload": {"tasks": [t.status() for t in self.tasks.values()]}},
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        for task in self.tasks.values():
            task.stop(timeout=timeout)
        log.info("scheduler_stopped")

    def run_now(self, name: str) -> bool:
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(name)
        return task.trigger() is not None

    def status(self) -> dict[str, dict[str, Any]]:
        return {name: task.status() for name, task in self.tasks.items()}


def build_scheduler(settings: Settings | None = None) -> Scheduler:
    from digest_orchestrator.jobs import maintenance_job, summary_job

    s = settings or get_settings()
    return Scheduler(
        [
            PeriodicTask(
                SUMMARY_TASK,
                summary_job.run,
                s.summary_job_interval_sec,
                enabled=bool(s.summary_job_enabled),
            ),
            PeriodicTask(
                MAINTENANCE_TASK,
                lambda: maintenance_job.run(limit=int(s.maintenance_limit)),
                s.maintenance_interval_sec,
                enabled=bool(s.maintenance_enabled),
            ),
        ]
    )
