from __future__ import annotations

from types import SimpleNamespace

from fastapi.testclient import TestClient

from apps.api_gateway.main import app
from digest_orchestrator.common.config import get_settings
from digest_orchestrator.domain.enums import BatchStatus


def test_create_and_get_batch() -> None:
    client = TestClient(app)

    created = client.post("/v1/batches", json={"userIds": ["u1", "u2", "u2", "u3"]})
    assert created.status_code == 200
    batch_id = created.json()["batch_id"]

    resp = client.get(f"/v1/batches/{batch_id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "pending"
    assert body["expected_count"] == 3
    assert body["received_count"] == 0
    assert body["completion_ratio"] == 0.0
    assert body["user_ids"] == ["u1", "u2", "u3"]


def test_create_batch_with_explicit_expected_count() -> None:
    client = TestClient(app)
    resp = client.post("/v1/batches", json={"userIds": ["u1"], "expectedCount": 5})
    assert resp.status_code == 200

    body = client.get(f"/v1/batches/{resp.json()['batch_id']}").json()
    assert body["expected_count"] == 5


def test_create_batch_validation() -> None:
    client = TestClient(app)
    assert client.post("/v1/batches", json={"userIds": []}).status_code == 422
    assert client.post("/v1/batches", json={"userIds": ["u1"], "expectedCount": 0}).status_code == 422
    # после очистки пустых id пользователей не осталось
    resp = client.post("/v1/batches", json={"userIds": ["  "]})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "validation"


def test_get_unknown_batch() -> None:
    client = TestClient(app)
    resp = client.get("/v1/batches/missing")
    assert resp.status_code == 404


def test_evaluate_batch(audio_queue, make_batch, add_unit) -> None:
    batch_id = make_batch(expected=2)
    add_unit(batch_id, "u1")
    add_unit(batch_id, "u2")
    client = TestClient(app)

    resp = client.post(f"/v1/batches/{batch_id}/evaluate")

    assert resp.status_code == 200
    body = resp.json()
    assert body["transitions"] == ["complete", "audio_requested"]
    assert body["dispatched"] == 2
    assert body["status"] == "audio_requested"
    assert len(audio_queue) == 2


def test_evaluate_unknown_batch() -> None:
    client = TestClient(app)
    assert client.post("/v1/batches/missing/evaluate").status_code == 404


def test_batch_stats(make_batch) -> None:
    make_batch(expected=2, received=1)
    make_batch(expected=2, received=2, status=BatchStatus.audio_complete)
    client = TestClient(app)

    resp = client.get("/v1/batches/stats")

    assert resp.status_code == 200
    items = {i["status"]: i for i in resp.json()["items"]}
    assert items["pending"]["avg_completion_rate"] == 0.5
    assert items["audio_complete"]["count"] == 1


def test_batches_require_api_key() -> None:
    s = get_settings()
    snapshot = {"auth_mode": s.auth_mode, "api_keys": s.api_keys}
    try:
        s.auth_mode = "api_key"
        s.api_keys = "user-key"
        client = TestClient(app)
        assert client.get("/v1/batches/stats").status_code == 401
        assert client.get("/v1/batches/stats", headers={"X-API-Key": "user-key"}).status_code == 200
    finally:
        for k, v in snapshot.items():
            setattr(s, k, v)


def test_admin_run_uses_scheduler_guard(monkeypatch) -> None:
    calls: list[str] = []
    fake = SimpleNamespace(
        run_now=lambda name: calls.append(name) or name == "maintenance",
        status=lambda: {"maintenance": {"runs": 0}},
    )
    monkeypatch.setattr(app.state, "scheduler", fake)
    client = TestClient(app)

    ok = client.post("/v1/admin/maintenance/run")
    busy = client.post("/v1/admin/summary/run")
    status = client.get("/v1/admin/scheduler")

    assert ok.json() == {"task": "maintenance", "accepted": True, "reason": None}
    assert busy.json() == {"task": "summary", "accepted": False, "reason": "in_flight"}
    assert status.json() == {"tasks": {"maintenance": {"runs": 0}}}
    assert calls == ["maintenance", "summary"]
