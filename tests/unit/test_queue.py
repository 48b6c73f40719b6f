from __future__ import annotations

import json

import pytest

from digest_orchestrator.common.config import get_settings
from digest_orchestrator.contracts.queue_events import AudioDispatchTask, SummarizeTask
from digest_orchestrator.queue import dispatcher, retry, streams
from digest_orchestrator.queue.throttle import Throttle


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, sec: float) -> None:
        self.sleeps.append(sec)
        self.now += sec


class _FakeRedis:
    def __init__(self) -> None:
        self.lists: dict[str, list] = {}

    def lpush(self, name: str, value) -> None:
        self.lists.setdefault(name, []).insert(0, value)

    def brpop(self, names, timeout: int = 0):
        for name in names:
            items = self.lists.get(name) or []
            if items:
                return name, items.pop()
        return None

    def llen(self, name: str) -> int:
        return len(self.lists.get(name) or [])


def _audio_task(event_id: str = "aud_1") -> AudioDispatchTask:
    return AudioDispatchTask(
        event_id=event_id, batch_id="b1", summary_id="s1", user_id="u1", summary="text"
    )


@pytest.fixture()
def queue_settings():
    s = get_settings()
    keys = ["queue_mode", "audio_dispatch_delay_sec", "summary_dispatch_delay_sec"]
    snapshot = {k: getattr(s, k) for k in keys}
    dispatcher.shutdown_inline()
    try:
        yield s
    finally:
        dispatcher.shutdown_inline()
        for k, v in snapshot.items():
            setattr(s, k, v)


# =============================================================================
# THROTTLE
# =============================================================================
def test_throttle_keeps_min_interval() -> None:
    clock = _FakeClock()
    throttle = Throttle(1.0, clock=clock, sleep=clock.sleep)

    assert throttle.wait() == 0.0
    clock.now += 0.25
    assert throttle.wait() == pytest.approx(0.75)
    clock.now += 5
    assert throttle.wait() == 0.0
    assert clock.sleeps == [pytest.approx(0.75)]


def test_throttle_reset_and_zero_interval() -> None:
    clock = _FakeClock()
    throttle = Throttle(2.0, clock=clock, sleep=clock.sleep)
    throttle.wait()
    throttle.reset()
    assert throttle.wait() == 0.0

    no_delay = Throttle(-1, clock=clock, sleep=clock.sleep)
    no_delay.wait()
    assert no_delay.wait() == 0.0
    assert clock.sleeps == []


# =============================================================================
# STREAMS / RETRY
# =============================================================================
def test_enqueue_and_read_task(monkeypatch) -> None:
    fake = _FakeRedis()
    monkeypatch.setattr(streams, "redis_client", lambda: fake)

    streams.enqueue("q:audio", _audio_task().to_payload())
    assert streams.queue_length("q:audio") == 1

    msg = streams.read_task(queue="q:audio", block_sec=1)
    assert msg is not None
    assert msg.payload["summary_id"] == "s1"
    assert streams.read_task(queue="q:audio", block_sec=1) is None


def test_invalid_message_goes_to_dlq(monkeypatch) -> None:
    fake = _FakeRedis()
    fake.lpush("q:audio", "not json")
    fake.lpush("q:audio", json.dumps([1, 2]))
    monkeypatch.setattr(streams, "redis_client", lambda: fake)

    assert streams.read_task(queue="q:audio") is None
    assert streams.read_task(queue="q:audio") is None
    assert fake.llen("q:audio:dlq") == 2


def test_requeue_with_backoff_then_dlq(monkeypatch) -> None:
    pushed: list[tuple[str, dict]] = []
    monkeypatch.setattr(retry, "enqueue", lambda q, p: pushed.append((q, dict(p))))

    payload = {"event_id": "smz_1", "attempts": 0}
    assert retry.requeue_with_backoff(queue_name="q:summarize", task_payload=payload, max_attempts=2, backoff_sec=0)
    assert retry.requeue_with_backoff(queue_name="q:summarize", task_payload=payload, max_attempts=2, backoff_sec=0)
    assert not retry.requeue_with_backoff(queue_name="q:summarize", task_payload=payload, max_attempts=2, backoff_sec=0)

    assert [q for q, _ in pushed] == ["q:summarize", "q:summarize", "q:summarize:dlq"]
    assert pushed[-1][1]["attempts"] == 3


# =============================================================================
# DISPATCHER
# =============================================================================
def test_queue_delays_come_from_settings(queue_settings) -> None:
    queue_settings.audio_dispatch_delay_sec = 1.5
    queue_settings.summary_dispatch_delay_sec = 0.5
    assert dispatcher.queue_delay_sec(dispatcher.Q_AUDIO) == 1.5
    assert dispatcher.queue_delay_sec(dispatcher.Q_SUMMARIZE) == 0.5


def test_redis_mode_pushes_to_list(monkeypatch, queue_settings) -> None:
    queue_settings.queue_mode = "redis"
    pushed: list[tuple[str, dict]] = []
    monkeypatch.setattr(dispatcher, "enqueue", lambda q, p: pushed.append((q, p)))

    event_id = dispatcher.enqueue_audio_generation(_audio_task())
    dispatcher.enqueue_summarization(
        SummarizeTask(event_id="smz_1", batch_id="b1", user_id="u1", text="long text")
    )

    assert event_id == "aud_1"
    assert [q for q, _ in pushed] == ["q:audio", "q:summarize"]
    assert pushed[0][1]["schema_version"] == "v1"
    assert pushed[1][1]["max_length"] == 700


def test_inline_mode_sends_in_background(monkeypatch, queue_settings) -> None:
    queue_settings.queue_mode = "inline"
    queue_settings.audio_dispatch_delay_sec = 0
    sent: list[tuple[str, str]] = []
    monkeypatch.setattr(
        "digest_orchestrator.services.task_sender.send_task",
        lambda queue, payload: sent.append((queue, payload["event_id"])),
    )

    for i in range(3):
        dispatcher.enqueue_audio_generation(_audio_task(f"aud_{i}"))
    dispatcher.drain_inline(timeout=5)

    # один поток на очередь: порядок постановки сохраняется
    assert sent == [("q:audio", "aud_0"), ("q:audio", "aud_1"), ("q:audio", "aud_2")]


def test_inline_failure_is_logged_not_raised(monkeypatch, queue_settings) -> None:
    queue_settings.queue_mode = "inline"
    sent: list[str] = []

    def _send(queue, payload):
        if payload["event_id"] == "aud_bad":
            raise RuntimeError("boom")
        sent.append(payload["event_id"])

    monkeypatch.setattr("digest_orchestrator.services.task_sender.send_task", _send)

    dispatcher.enqueue_audio_generation(_audio_task("aud_bad"))
    dispatcher.enqueue_audio_generation(_audio_task("aud_ok"))
    dispatcher.drain_inline(timeout=5)

    assert sent == ["aud_ok"]


def test_task_payload_round_trip_ignores_unknown_keys() -> None:
    payload = _audio_task().to_payload()
    payload["legacy_field"] = "x"
    task = AudioDispatchTask.from_payload(payload)
    assert task.summary_id == "s1"

    body = task.to_request(timestamp="2026-01-01T00:00:00+00:00")
    assert body["batchId"] == "b1"
    assert body["summaryId"] == "s1"
    assert body["data"]["userId"] == "u1"
    assert body["data"]["summaryTitle"] == "Daily Mix"
    assert body["data"]["timestamp"] == "2026-01-01T00:00:00+00:00"
