"""Unit tests for inbound webhook endpoints."""

from typing import Any

import orjson
import pytest
from fastapi.testclient import TestClient

from reconciliation_service.api.v1 import webhooks
from reconciliation_service.config import get_settings
from reconciliation_service.services.webhook_security import generate_signature
from tests.fakes import TEST_MARKET_SECRET, TEST_WEBHOOK_SECRET

CATALOG_URL = "/api/v1/webhooks/catalog"
MARKET_URL = "/api/v1/webhooks/market"


def post_catalog(
    client: TestClient,
    body: Any,
    *,
    topic: str | None = "product.updated",
    delivery_id: str | None = "delivery-1",
    secret: str = TEST_WEBHOOK_SECRET,
):
    raw = body if isinstance(body, bytes) else orjson.dumps(body)
    headers = {"Content-Type": "application/json", "X-WC-Webhook-Signature": generate_signature(raw, secret)}
    if topic:
        headers["X-WC-Webhook-Topic"] = topic
    if delivery_id:
        headers["X-WC-Webhook-Delivery-ID"] = delivery_id
    return client.post(CATALOG_URL, content=raw, headers=headers)


def post_market(client: TestClient, body: dict[str, Any], *, secret: str = TEST_MARKET_SECRET):
    raw = orjson.dumps(body)
    signature = "sha256=" + generate_signature(raw, secret, "hex")
    return client.post(MARKET_URL, content=raw, headers={"X-Market-Signature": signature})


class TestCatalogWebhook:
    def test_missing_signature(self, client: TestClient) -> None:
        response = client.post(CATALOG_URL, content=b'{"id": 1}', headers={"X-WC-Webhook-Topic": "product.updated"})
        assert response.status_code == 401

    def test_wrong_secret(self, client: TestClient) -> None:
        assert post_catalog(client, {"id": 501}, secret="not-the-secret").status_code == 401

    def test_accepted_and_processed_inline(self, client: TestClient) -> None:
        response = post_catalog(client, {"id": 501, "sku": "DD1391-100"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "accepted"
        assert data["queue_id"] is not None
        assert data["processed"] is True

    def test_duplicate_delivery(self, client: TestClient) -> None:
        first = post_catalog(client, {"id": 501})
        second = post_catalog(client, {"id": 501})

        assert second.status_code == 200
        assert second.json() == {"status": "duplicate", "queue_id": first.json()["queue_id"], "processed": None}

    def test_envelope_body(self, client: TestClient) -> None:
        body = {"topic": "product.deleted", "resource_id": 501, "payload": {}, "delivery_id": "env-1"}
        response = post_catalog(client, body, topic=None, delivery_id=None)
        assert response.status_code == 202

    def test_unsupported_topic(self, client: TestClient) -> None:
        assert post_catalog(client, {"id": 501}, topic="order.created").status_code == 422

    def test_ping(self, client: TestClient) -> None:
        response = post_catalog(client, {"webhook_id": 3}, topic="action.ping")
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_invalid_json(self, client: TestClient) -> None:
        assert post_catalog(client, b"{not json").status_code == 400

    def test_unset_secret_rejects_everything(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WEBHOOK_SECRET", "")
        get_settings.cache_clear()
        assert post_catalog(client, {"id": 501}, secret="").status_code == 401


class TestMarketWebhook:
    @pytest.fixture
    def handled(self, monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, str, list]]:
        calls: list[tuple[str, str, list]] = []

        async def record(event: str, sku: str, variants: list) -> None:
            calls.append((event, sku, variants))

        monkeypatch.setattr(webhooks, "handle_market_event", record)
        return calls

    def test_price_change_is_handled_after_ack(self, client: TestClient, handled: list) -> None:
        variants = [{"sizes": [{"type": "eu", "size": "42"}], "prices": [{"type": "standard", "price": 80}]}]
        response = post_market(client, {"event": "price_change", "product": {"sku": "DD1391-100"}, "variants": variants})

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert handled == [("price_change", "DD1391-100", variants)]

    def test_out_of_stock(self, client: TestClient, handled: list) -> None:
        response = post_market(client, {"event": "out_of_stock", "sku": "DD1391-100"})
        assert response.json()["status"] == "accepted"
        assert handled == [("out_of_stock", "DD1391-100", [])]

    def test_unknown_event_ignored(self, client: TestClient, handled: list) -> None:
        response = post_market(client, {"event": "listing_created", "sku": "DD1391-100"})
        assert response.json()["status"] == "ignored"
        assert handled == []

    def test_price_change_without_variants_ignored(self, client: TestClient, handled: list) -> None:
        response = post_market(client, {"event": "price_change", "sku": "DD1391-100"})
        assert response.json()["status"] == "ignored"
        assert handled == []

    def test_missing_sku(self, client: TestClient, handled: list) -> None:
        assert post_market(client, {"event": "out_of_stock"}).status_code == 422

    def test_bad_signature(self, client: TestClient, handled: list) -> None:
        assert post_market(client, {"event": "out_of_stock", "sku": "X"}, secret="wrong").status_code == 401
        assert handled == []


def test_parse_market_event_shapes() -> None:
    assert webhooks.parse_market_event({"style_id": "X", "sizes": [{"size": "42"}]}) == (
        "price_change",
        "X",
        [{"size": "42"}],
    )
    assert webhooks.parse_market_event({"event": "out_of_stock", "product": {"sku": "Y"}})[:2] == ("out_of_stock", "Y")
