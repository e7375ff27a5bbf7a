import pytest
from fastapi.testclient import TestClient

from odoo_sync.main_app import create_app

TOKEN = {"X-Sync-Token": "test-token-123"}


@pytest.fixture
def client(harness):
    app = create_app(harness.build(WEBHOOK_RATE_LIMIT=3))
    with TestClient(app) as c:
        yield c


def test_wp_change_is_queued(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "update", "wp_id": 12, "priority": 2}
    response = client.post("/webhooks/wp", json=payload, headers=TOKEN)
    assert response.status_code == 200
    assert response.json()["ok"] is True
    job = client.get(f"/api/queue/jobs/{response.json()['job_id']}", auth=("admin", "adminpass")).json()
    assert job["direction"] == "wp_to_odoo"
    assert job["wp_id"] == 12
    assert job["priority"] == 2


def test_wp_change_with_data_is_stored_and_queued(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "create", "wp_id": 8,
               "data": {"name": "Ada"}}
    response = client.post("/webhooks/wp", json=payload, headers=TOKEN)
    assert response.status_code == 200
    assert response.json() == {"ok": True, "wp_id": 8, "stored": True}
    jobs = client.get("/api/queue/jobs", auth=("admin", "adminpass")).json()
    assert jobs["total"] == 1
    assert jobs["items"][0]["wp_id"] == 8


def test_odoo_change_is_queued_as_pull(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "update", "odoo_id": 77}
    response = client.post("/webhooks/odoo", json=payload, headers=TOKEN)
    assert response.status_code == 200
    job = client.get(f"/api/queue/jobs/{response.json()['job_id']}", auth=("admin", "adminpass")).json()
    assert job["direction"] == "odoo_to_wp"
    assert job["odoo_id"] == 77


def test_missing_or_wrong_token(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "update", "wp_id": 1}
    assert client.post("/webhooks/wp", json=payload).status_code == 401
    response = client.post("/webhooks/wp", json=payload, headers={"X-Sync-Token": "nope"})
    assert response.status_code == 401
    assert response.json()["reason"] == "invalid_token"


def test_invalid_payload(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "merge", "wp_id": "abc"}
    response = client.post("/webhooks/wp", json=payload, headers=TOKEN)
    assert response.status_code == 422
    assert response.json()["ok"] is False
    assert response.json()["reason"] == "invalid_payload"


def test_unknown_module(client):
    payload = {"module": "nope", "entity_type": "contact", "action": "update", "odoo_id": 1}
    response = client.post("/webhooks/odoo", json=payload, headers=TOKEN)
    assert response.status_code == 404


def test_rate_limit(client):
    payload = {"module": "crm", "entity_type": "contact", "action": "update", "wp_id": 1}
    codes = [client.post("/webhooks/wp", json=payload, headers=TOKEN).status_code for _ in range(4)]
    assert codes == [200, 200, 200, 429]
