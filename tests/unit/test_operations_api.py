"""Unit tests for operator endpoints."""

import orjson
import pytest
from fastapi.testclient import TestClient

from reconciliation_service.config import get_settings
from reconciliation_service.services.webhook_security import generate_signature
from tests.fakes import TEST_WEBHOOK_SECRET


def queue_webhook(client: TestClient, delivery_id: str) -> int:
    raw = orjson.dumps({"id": 501})
    response = client.post(
        "/api/v1/webhooks/catalog",
        content=raw,
        headers={
            "X-WC-Webhook-Signature": generate_signature(raw, TEST_WEBHOOK_SECRET),
            "X-WC-Webhook-Topic": "product.updated",
            "X-WC-Webhook-Delivery-ID": delivery_id,
        },
    )
    assert response.status_code == 202
    return response.json()["queue_id"]


@pytest.fixture
def deferred(monkeypatch: pytest.MonkeyPatch, test_settings) -> None:
    """Queue webhooks without processing them inline."""
    monkeypatch.setenv("WEBHOOK_PROCESS_INLINE", "false")
    get_settings.cache_clear()


class TestAuthentication:
    def test_missing_key(self, client: TestClient) -> None:
        assert client.get("/api/v1/operations/webhooks/stats").status_code == 401

    def test_wrong_key(self, client: TestClient) -> None:
        response = client.get("/api/v1/operations/webhooks/stats", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    def test_unset_key_rejects(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_KEY", "")
        get_settings.cache_clear()
        response = client.get("/api/v1/operations/webhooks/stats", headers={"X-API-Key": ""})
        assert response.status_code == 401


class TestQueueOperations:
    def test_stats(self, client: TestClient, api_headers: dict[str, str]) -> None:
        response = client.get("/api/v1/operations/webhooks/stats", headers=api_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 0

    def test_drain_processes_pending(
        self, deferred: None, client: TestClient, api_headers: dict[str, str]
    ) -> None:
        queue_webhook(client, "op-1")
        queue_webhook(client, "op-2")
        assert client.get("/api/v1/operations/webhooks/stats", headers=api_headers).json()["pending"] == 2

        response = client.post("/api/v1/operations/webhooks/drain?limit=10", headers=api_headers)

        assert response.status_code == 200
        assert response.json()["completed"] == 2
        stats = client.get("/api/v1/operations/webhooks/stats", headers=api_headers).json()
        assert stats["completed"] == 2

    def test_retry_unknown_entry(self, client: TestClient, api_headers: dict[str, str]) -> None:
        assert client.post("/api/v1/operations/webhooks/999/retry", headers=api_headers).status_code == 404

    def test_retry_entry_not_failed(self, client: TestClient, api_headers: dict[str, str]) -> None:
        entry_id = queue_webhook(client, "op-3")
        response = client.post(f"/api/v1/operations/webhooks/{entry_id}/retry", headers=api_headers)
        assert response.status_code == 409

    def test_bulk_retry_without_failures(self, client: TestClient, api_headers: dict[str, str]) -> None:
        response = client.post("/api/v1/operations/webhooks/retry", headers=api_headers)
        assert response.json() == {"count": 0}

    def test_failed_list_empty(self, client: TestClient, api_headers: dict[str, str]) -> None:
        assert client.get("/api/v1/operations/webhooks/failed", headers=api_headers).json() == []

    def test_purge_keeps_recent(self, client: TestClient, api_headers: dict[str, str]) -> None:
        queue_webhook(client, "op-4")
        response = client.post("/api/v1/operations/webhooks/purge", headers=api_headers)
        assert response.json() == {"count": 0}


def test_sync_status_empty(client: TestClient, api_headers: dict[str, str]) -> None:
    response = client.get("/api/v1/operations/sync-status", headers=api_headers)
    assert response.status_code == 200
    assert response.json() == []


def test_pricing_config(client: TestClient, api_headers: dict[str, str]) -> None:
    data = client.get("/api/v1/operations/pricing/config", headers=api_headers).json()
    assert data["rounding"] == "whole"
    assert data["floor_price"] == "59.0"
    assert len(data["tiers"]) == 2
