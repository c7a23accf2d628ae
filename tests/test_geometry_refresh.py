import pytest
from sqlalchemy.dialects import postgresql

from app.core.config import settings
from app.services import geometry_refresh
from app.services.geometry_refresh import REFRESH_TASK, schedule_geometry_refresh
from worker.tasks import refresh_query


@pytest.fixture
def refresh_enabled(monkeypatch):
    monkeypatch.setattr(settings, "geometry_refresh_enabled", True)


def test_disabled_does_not_enqueue(monkeypatch):
    monkeypatch.setattr(settings, "geometry_refresh_enabled", False)
    sent = []
    monkeypatch.setattr(geometry_refresh.celery, "send_task", lambda *a, **kw: sent.append((a, kw)))

    assert schedule_geometry_refresh("dly_1") is False
    assert sent == []


def test_enqueues_refresh_task(monkeypatch, refresh_enabled):
    sent = []
    monkeypatch.setattr(geometry_refresh.celery, "send_task", lambda *a, **kw: sent.append((a, kw)))

    assert schedule_geometry_refresh("dly_1") is True
    assert sent == [((REFRESH_TASK,), {"args": ["dly_1"], "queue": "geometry"})]


def test_broker_failure_is_swallowed(monkeypatch, refresh_enabled, caplog):
    def boom(*a, **kw):
        raise ConnectionError("broker down")

    monkeypatch.setattr(geometry_refresh.celery, "send_task", boom)

    assert schedule_geometry_refresh("dly_1") is False
    assert "geometry refresh enqueue failed" in caplog.text


@pytest.mark.asyncio
async def test_assign_enqueues_after_commit(client, seed_actors, monkeypatch, refresh_enabled):
    sent = []
    monkeypatch.setattr(geometry_refresh.celery, "send_task", lambda *a, **kw: sent.append(kw["args"][0]))
    headers = {"X-API-Key": seed_actors["dispatcher_key"]}

    r = await client.post(
        "/v1/deliveries",
        headers=headers,
        json={"customer_name": "Q", "pickup_address": "A st", "dropoff_address": "B st"},
    )
    delivery_id = r.json()["id"]
    assert sent == []

    r = await client.post(f"/v1/deliveries/{delivery_id}/assign", headers=headers, json={"courier_id": seed_actors["courier_id"]})
    assert r.status_code == 200
    assert sent == [delivery_id]

    # unchanged text is not an edit
    r = await client.patch(f"/v1/deliveries/{delivery_id}/addresses", headers=headers, json={"pickup_address": " A st "})
    assert r.json()["changed"] is False
    assert sent == [delivery_id]


def test_worker_reads_delivery_without_row_lock():
    sql = str(refresh_query("dly_1").compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" not in sql
    assert "deliveries.id" in sql
