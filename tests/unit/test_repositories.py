from __future__ import annotations

from datetime import timedelta

from digest_orchestrator.common.time import utc_now_naive
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.storage.db import db_session
from digest_orchestrator.storage.repositories import BatchRepository, SummaryRepository


def test_transition_is_compare_and_swap(make_batch, load_batch) -> None:
    batch_id = make_batch()

    with db_session() as session:
        repo = BatchRepository(session)
        assert repo.transition(batch_id, BatchStatus.partial_complete) is True
        # второй вызов уже не находит строку в pending
        assert repo.transition(batch_id, BatchStatus.partial_complete) is False

    assert load_batch(batch_id).status == BatchStatus.partial_complete


def test_transition_respects_state_machine(make_batch, load_batch) -> None:
    batch_id = make_batch()

    with db_session() as session:
        repo = BatchRepository(session)
        assert repo.transition(batch_id, BatchStatus.audio_complete) is False
        # явные источники пересекаются с таблицей переходов
        assert repo.transition(batch_id, BatchStatus.failed, sources={BatchStatus.complete}) is False

    assert load_batch(batch_id).status == BatchStatus.pending


def test_transition_writes_extra_values(make_batch, load_batch) -> None:
    batch_id = make_batch()
    now = utc_now_naive()

    with db_session() as session:
        assert BatchRepository(session).transition(
            batch_id, BatchStatus.failed, failed_at=now, failure_reason="timeout"
        )

    batch = load_batch(batch_id)
    assert batch.status == BatchStatus.failed
    assert batch.failure_reason == "timeout"
    assert batch.failed_at == now


def test_transition_unknown_batch() -> None:
    with db_session() as session:
        assert BatchRepository(session).transition("missing", BatchStatus.complete) is False


def test_increment_received(make_batch) -> None:
    batch_id = make_batch()

    with db_session() as session:
        repo = BatchRepository(session)
        assert repo.increment_received(batch_id) == 1
        assert repo.increment_received(batch_id) == 2
        assert repo.increment_received("missing") is None


def test_claim_for_dispatch_once(make_batch, add_unit) -> None:
    batch_id = make_batch()
    summary_id = add_unit(batch_id, "u1")
    now = utc_now_naive()

    with db_session() as session:
        repo = SummaryRepository(session)
        assert repo.claim_for_dispatch(summary_id, now=now) is True
        assert repo.claim_for_dispatch(summary_id, now=now) is False


def test_claim_skips_units_with_audio(make_batch, add_unit) -> None:
    batch_id = make_batch()
    summary_id = add_unit(batch_id, "u1", audio=True)

    with db_session() as session:
        assert SummaryRepository(session).claim_for_dispatch(summary_id, now=utc_now_naive()) is False


def test_dispatch_candidates_exclude_claimed_and_voiced(make_batch, add_unit) -> None:
    batch_id = make_batch()
    fresh = add_unit(batch_id, "u1")
    add_unit(batch_id, "u2", claimed=True)
    add_unit(batch_id, "u3", audio=True)

    with db_session() as session:
        candidates = SummaryRepository(session).list_dispatch_candidates(batch_id)

    assert [c.id for c in candidates] == [fresh]


def test_mark_audio_generated_checks_owner_and_is_idempotent(make_batch, add_unit) -> None:
    batch_id = make_batch()
    summary_id = add_unit(batch_id, "u1")

    with db_session() as session:
        repo = SummaryRepository(session)
        assert repo.mark_audio_generated(summary_id=summary_id, user_id="u2", audio_url="x") is False
        assert repo.mark_audio_generated(summary_id=summary_id, user_id="u1", audio_url="a.mp3")
        assert repo.mark_audio_generated(summary_id=summary_id, user_id="u1", audio_url="b.mp3") is False

    with db_session() as session:
        unit = SummaryRepository(session).get(summary_id)
        assert unit.is_audio_generated is True
        assert unit.audio_url == "a.mp3"
        assert SummaryRepository(session).count_with_audio(batch_id) == 1


def test_list_timed_out_only_collecting(make_batch) -> None:
    past = utc_now_naive() - timedelta(hours=2)
    expired = make_batch(created_at=past)
    make_batch(created_at=past, status=BatchStatus.audio_requested)
    make_batch()

    with db_session() as session:
        found = BatchRepository(session).list_timed_out(now=utc_now_naive())

    assert [b.batch_id for b in found] == [expired]


def test_status_statistics(make_batch) -> None:
    make_batch(expected=4, received=2)
    make_batch(expected=4, received=4)
    make_batch(expected=2, received=2, status=BatchStatus.complete)

    with db_session() as session:
        stats = {row["status"]: row for row in BatchRepository(session).status_statistics()}

    assert stats["pending"]["count"] == 2
    assert stats["pending"]["avg_completion_rate"] == 0.75
    assert stats["complete"]["count"] == 1
    assert stats["complete"]["avg_completion_rate"] == 1.0


def test_release_dispatch_claim(make_batch, add_unit) -> None:
    batch_id = make_batch()
    claimed = add_unit(batch_id, "u1", claimed=True)
    voiced = add_unit(batch_id, "u2", audio=True, claimed=True)
    fresh = add_unit(batch_id, "u3")

    with db_session() as session:
        repo = SummaryRepository(session)
        assert repo.release_dispatch_claim(claimed) is True
        assert repo.release_dispatch_claim(voiced) is False
        assert repo.release_dispatch_claim(fresh) is False

    with db_session() as session:
        candidates = SummaryRepository(session).list_dispatch_candidates(batch_id)
    assert sorted(c.id for c in candidates) == sorted([claimed, fresh])


def test_list_failed_with_units_skips_empty_batches(make_batch, add_unit) -> None:
    base = utc_now_naive() - timedelta(days=1)
    oldest = make_batch(status=BatchStatus.failed, created_at=base)
    for i in range(3):
        make_batch(status=BatchStatus.failed, created_at=base + timedelta(minutes=i + 1))
    add_unit(oldest, "u1")
    other = make_batch(status=BatchStatus.pending)
    add_unit(other, "u1")

    with db_session() as session:
        found = BatchRepository(session).list_failed_with_units(limit=1)

    assert [b.batch_id for b in found] == [oldest]


def test_list_with_unclaimed_units(make_batch, add_unit) -> None:
    waiting = make_batch(status=BatchStatus.audio_requested)
    add_unit(waiting, "u1")
    all_claimed = make_batch(status=BatchStatus.audio_requested)
    add_unit(all_claimed, "u1", claimed=True)
    add_unit(all_claimed, "u2", audio=True)
    collecting = make_batch(status=BatchStatus.partial_complete)
    add_unit(collecting, "u1")

    with db_session() as session:
        found = BatchRepository(session).list_with_unclaimed_units(
            statuses={BatchStatus.complete, BatchStatus.audio_requested}
        )

    assert [b.batch_id for b in found] == [waiting]
