from __future__ import annotations

from digest_orchestrator.contracts.webhook_events import AudioReadyEvent, SummaryReadyEvent
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.services import completion_service
from digest_orchestrator.services.batch_service import create_batch
from digest_orchestrator.services.completion_service import (
    attempt_transition,
    check_audio_completion,
    evaluate_batch,
)
from digest_orchestrator.services.ingest_service import ingest_audio_ready, ingest_summary


def _summary(batch_id: str, user_id: str):
    return ingest_summary(
        SummaryReadyEvent(batch_id=batch_id, user_id=user_id, summary=f"news for {user_id}")
    )


def test_half_then_full_dispatches_each_unit_once(audio_queue, load_batch) -> None:
    batch_id, _ = create_batch(["u1", "u2", "u3", "u4"])

    _summary(batch_id, "u1")
    assert load_batch(batch_id).status == BatchStatus.pending
    assert audio_queue == []

    res = _summary(batch_id, "u2")
    assert res.status == BatchStatus.partial_complete.value
    assert {t.user_id for t in audio_queue} == {"u1", "u2"}

    _summary(batch_id, "u3")
    assert load_batch(batch_id).status == BatchStatus.partial_complete
    assert len(audio_queue) == 2

    res = _summary(batch_id, "u4")
    assert res.details["transitions"] == ["complete", "audio_requested"]

    batch = load_batch(batch_id)
    assert batch.status == BatchStatus.audio_requested
    assert batch.received_count == 4
    assert batch.partial_completed_at is not None
    assert batch.completed_at is not None

    # после 100% уходят только юниты, пришедшие после 50%
    assert [t.user_id for t in audio_queue[2:]] in (["u3", "u4"], ["u4", "u3"])
    assert len({t.summary_id for t in audio_queue}) == 4


def test_single_evaluation_jumps_straight_to_complete(audio_queue, make_batch, add_unit, load_batch) -> None:
    batch_id = make_batch(expected=3)
    for uid in ("u1", "u2", "u3"):
        add_unit(batch_id, uid)

    res = evaluate_batch(batch_id, reconcile=True)

    assert res.transitions == ["complete", "audio_requested"]
    assert res.dispatched == 3
    assert len(audio_queue) == 3
    batch = load_batch(batch_id)
    assert batch.status == BatchStatus.audio_requested
    assert batch.partial_completed_at is None
    assert batch.received_count == 3


def test_complete_with_all_audio_skips_dispatch(audio_queue, make_batch, add_unit, load_batch) -> None:
    batch_id = make_batch(expected=2)
    add_unit(batch_id, "u1", audio=True)
    add_unit(batch_id, "u2", audio=True)

    res = evaluate_batch(batch_id, reconcile=True)

    assert res.transitions == ["complete", "audio_complete"]
    assert audio_queue == []
    assert load_batch(batch_id).status == BatchStatus.audio_complete


def test_repeated_evaluation_at_half_is_noop(audio_queue, make_batch, add_unit) -> None:
    batch_id = make_batch(expected=4)
    add_unit(batch_id, "u1")
    add_unit(batch_id, "u2")

    first = evaluate_batch(batch_id, reconcile=True)
    second = evaluate_batch(batch_id, reconcile=True)

    assert first.transitions == ["partial_complete"]
    assert second.transitions == []
    assert second.status == BatchStatus.partial_complete
    assert len(audio_queue) == 2


def test_below_half_stays_pending(audio_queue, make_batch, add_unit) -> None:
    batch_id = make_batch(expected=3)
    add_unit(batch_id, "u1")

    res = evaluate_batch(batch_id, reconcile=True)

    assert res.transitions == []
    assert res.status == BatchStatus.pending
    assert audio_queue == []


def test_evaluate_unknown_batch() -> None:
    res = evaluate_batch("missing")
    assert res.found is False
    assert res.transitions == []


def test_evaluate_ignores_non_collecting_batches(audio_queue, make_batch, add_unit) -> None:
    batch_id = make_batch(expected=1, status=BatchStatus.audio_requested)
    add_unit(batch_id, "u1")

    res = evaluate_batch(batch_id, reconcile=True)

    assert res.transitions == []
    assert res.status == BatchStatus.audio_requested
    assert audio_queue == []


def test_complete_retries_after_lost_race(monkeypatch, audio_queue, make_batch, add_unit, load_batch) -> None:
    batch_id = make_batch(expected=2)
    add_unit(batch_id, "u1")
    add_unit(batch_id, "u2")

    real_transition = completion_service.attempt_transition
    raced = {"done": False}

    def _racing_transition(bid, target, **kwargs):
        # параллельный вызов успевает перевести батч в partial_complete
        if target == BatchStatus.complete and not raced["done"]:
            raced["done"] = True
            real_transition(bid, BatchStatus.partial_complete, partial_completed_at=None)
        return real_transition(bid, target, **kwargs)

    monkeypatch.setattr(completion_service, "attempt_transition", _racing_transition)

    res = completion_service.complete_batch(
        batch_id, sources={BatchStatus.pending, BatchStatus.partial_complete}, reason="test"
    )

    assert "complete" in res.transitions
    assert load_batch(batch_id).status == BatchStatus.audio_requested
    assert len(audio_queue) == 2


def test_audio_ready_completes_batch(audio_queue, load_batch) -> None:
    batch_id, _ = create_batch(["u1", "u2"])
    _summary(batch_id, "u1")
    _summary(batch_id, "u2")
    assert load_batch(batch_id).status == BatchStatus.audio_requested

    tasks = {t.user_id: t for t in audio_queue}
    first = ingest_audio_ready(
        AudioReadyEvent(user_id="u1", summary_id=tasks["u1"].summary_id, audio_url="https://a/1.mp3")
    )
    assert first.details["batch_audio_complete"] is False
    assert load_batch(batch_id).status == BatchStatus.audio_requested

    second = ingest_audio_ready(
        AudioReadyEvent(user_id="u2", summary_id=tasks["u2"].summary_id, audio_url="https://a/2.mp3")
    )
    assert second.details["batch_audio_complete"] is True
    batch = load_batch(batch_id)
    assert batch.status == BatchStatus.audio_complete
    assert batch.audio_completed_at is not None


def test_check_audio_completion_from_complete(make_batch, add_unit, load_batch) -> None:
    # аудио пришло раньше, чем батч перешёл в audio_requested
    batch_id = make_batch(expected=1, received=1, status=BatchStatus.complete)
    add_unit(batch_id, "u1", audio=True)

    assert check_audio_completion(batch_id) is True
    assert load_batch(batch_id).status == BatchStatus.audio_complete


def test_check_audio_completion_requires_all_units(make_batch, add_unit, load_batch) -> None:
    batch_id = make_batch(expected=2, received=2, status=BatchStatus.audio_requested)
    add_unit(batch_id, "u1", audio=True)
    add_unit(batch_id, "u2")

    assert check_audio_completion(batch_id) is False
    assert load_batch(batch_id).status == BatchStatus.audio_requested


def test_check_audio_completion_never_overrides_failure(make_batch, add_unit, load_batch) -> None:
    batch_id = make_batch(expected=1, received=1, status=BatchStatus.audio_failed)
    add_unit(batch_id, "u1", audio=True)

    assert check_audio_completion(batch_id) is False
    assert load_batch(batch_id).status == BatchStatus.audio_failed


def test_attempt_transition_reports_loser(make_batch) -> None:
    batch_id = make_batch()

    assert attempt_transition(batch_id, BatchStatus.partial_complete) is True
    assert attempt_transition(batch_id, BatchStatus.partial_complete) is False
