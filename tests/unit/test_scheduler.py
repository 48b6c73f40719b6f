from __future__ import annotations

import threading

import pytest

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.jobs.scheduler import (
    MAINTENANCE_TASK,
    SUMMARY_TASK,
    PeriodicTask,
    Scheduler,
    build_scheduler,
)


def test_overlapping_run_is_skipped() -> None:
    started = threading.Event()
    release = threading.Event()
    calls: list[int] = []

    def _slow() -> None:
        calls.append(1)
        started.set()
        release.wait(timeout=5)

    task = PeriodicTask("maintenance", _slow, 60)
    thread = task.trigger()
    assert thread is not None
    assert started.wait(timeout=5)

    assert task.is_running is True
    assert task.trigger() is None
    assert task.run_once() is False
    assert task.skipped == 2

    release.set()
    thread.join(timeout=5)

    assert task.is_running is False
    assert task.run_once() is True
    assert len(calls) == 2
    assert task.runs == 2


def test_failed_run_releases_guard() -> None:
    def _boom() -> None:
        raise RuntimeError("db down")

    task = PeriodicTask("summary", _boom, 60)

    assert task.run_once() is True
    assert task.last_error == "db down"
    assert task.run_once() is True
    assert task.runs == 2


def test_disabled_task_is_not_scheduled() -> None:
    task = PeriodicTask("summary", lambda: None, 60, enabled=False)
    task.start()
    assert task.is_scheduled is False


def test_start_and_stop_ticker() -> None:
    task = PeriodicTask("maintenance", lambda: None, 3600)
    task.start()
    try:
        assert task.is_scheduled is True
    finally:
        task.stop(timeout=5)
    assert task.is_scheduled is False


def test_interval_has_lower_bound() -> None:
    assert PeriodicTask("x", lambda: None, 0).interval_sec == 1.0


def test_scheduler_run_now() -> None:
    done = threading.Event()
    scheduler = Scheduler([PeriodicTask("maintenance", done.set, 60)])

    assert scheduler.run_now("maintenance") is True
    assert done.wait(timeout=5)

    with pytest.raises(KeyError):
        scheduler.run_now("unknown")


def test_build_scheduler_uses_settings() -> None:
    s = get_settings()
    snapshot = {
        "summary_job_enabled": s.summary_job_enabled,
        "maintenance_interval_sec": s.maintenance_interval_sec,
    }
    try:
        s.summary_job_enabled = False
        s.maintenance_interval_sec = 120
        status = build_scheduler(s).status()
    finally:
        for k, v in snapshot.items():
            setattr(s, k, v)

    assert set(status) == {SUMMARY_TASK, MAINTENANCE_TASK}
    assert status[SUMMARY_TASK]["enabled"] is False
    assert status[MAINTENANCE_TASK]["interval_sec"] == 120.0
    assert status[MAINTENANCE_TASK]["is_scheduled"] is False
