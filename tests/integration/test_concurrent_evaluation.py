from __future__ import annotations

import threading

import pytest

from digest_orchestrator.contracts.webhook_events import SummaryReadyEvent
from digest_orchestrator.domain.enums import BatchStatus
from digest_orchestrator.services.completion_service import evaluate_batch
from digest_orchestrator.services.dispatch_service import dispatch_batch
from digest_orchestrator.services.ingest_service import ingest_summary
from digest_orchestrator.storage.db import init_engine
from digest_orchestrator.storage.models import Base

THREADS = 8


@pytest.fixture()
def file_db(tmp_path):
    # in-memory база живёт в одном соединении, для гонок нужен файл
    engine = init_engine(f"sqlite+pysqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


def _run_concurrently(fn, args_list):
    barrier = threading.Barrier(len(args_list))
    results: list = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def _worker(args):
        barrier.wait(timeout=10)
        try:
            res = fn(*args)
            with lock:
                results.append(res)
        except BaseException as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=_worker, args=(a,)) for a in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results, errors


def test_concurrent_evaluations_transition_once(file_db, audio_queue, make_batch, add_unit, load_batch):
    batch_id = make_batch(expected=4, received=2)
    add_unit(batch_id, "u1")
    add_unit(batch_id, "u2")

    results, errors = _run_concurrently(evaluate_batch, [(batch_id,)] * THREADS)

    assert errors == []
    winners = [r for r in results if "partial_complete" in r.transitions]
    assert len(winners) == 1
    assert load_batch(batch_id).status == BatchStatus.partial_complete
    assert sorted(t.user_id for t in audio_queue) == ["u1", "u2"]


def test_concurrent_dispatch_claims_each_unit_once(file_db, audio_queue, make_batch, add_unit):
    batch_id = make_batch(expected=3, received=3, status=BatchStatus.complete)
    for uid in ("u1", "u2", "u3"):
        add_unit(batch_id, uid)

    results, errors = _run_concurrently(dispatch_batch, [(batch_id,)] * THREADS)

    assert errors == []
    assert sum(r.enqueued for r in results) == 3
    assert len({t.summary_id for t in audio_queue}) == 3
    assert len(audio_queue) == 3


def test_concurrent_final_summaries_complete_once(file_db, audio_queue, make_batch, load_batch):
    batch_id = make_batch(expected=THREADS)
    events = [
        (SummaryReadyEvent(batch_id=batch_id, user_id=f"u{i}", summary=f"news {i}"),)
        for i in range(THREADS)
    ]

    results, errors = _run_concurrently(ingest_summary, events)

    assert errors == []
    batch = load_batch(batch_id)
    assert batch.received_count == THREADS
    assert batch.status == BatchStatus.audio_requested
    completes = [r for r in results if "complete" in r.details["transitions"]]
    assert len(completes) == 1
    assert len(audio_queue) == THREADS
    assert len({t.summary_id for t in audio_queue}) == THREADS


def test_concurrent_duplicate_summaries_counted_once(file_db, make_batch, load_batch):
    batch_id = make_batch(expected=10)
    event = SummaryReadyEvent(batch_id=batch_id, user_id="u1", summary="same")

    results, errors = _run_concurrently(ingest_summary, [(event,)] * THREADS)

    assert errors == []
    assert sum(1 for r in results if not r.duplicate) == 1
    assert load_batch(batch_id).received_count == 1
