"""
Unit tests for the Carrier service routes.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from service_carrier.app.analytics.aggregator import ShipmentAnalytics
from service_carrier.app.domain.api_keys import InMemoryApiKeyStore
from service_carrier.app.main import CarrierService
from shared.config import get_config
from shared.test_helpers import TEST_BASE_URL, CarrierStub, FakeClock, json_body, make_page, make_shipment

USER = {"X-User-ID": "user-1"}
API_KEY = "test-api-key-0001"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stub(clock):
    return CarrierStub(clock=clock)


@pytest.fixture
def key_store():
    return InMemoryApiKeyStore({"user-1": API_KEY})


@pytest.fixture
def service(stub, key_store, clock):
    config = get_config(carrier_api_url=TEST_BASE_URL, analytics_timeout_seconds=5)
    return CarrierService(config, http_client=stub.client(), key_store=key_store, clock=clock)


@pytest.fixture
def client(service):
    with TestClient(service.app) as test_client:
        yield test_client


class TestCommonRoutes:
    """Test cases for health and metrics."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["service"] == "carrier"
        assert response.json()["status"] == "ok"

    def test_metrics(self, client):
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_service_exposed_on_app_state(self, service):
        assert service.app.state.carrier_service is service


class TestProxyRoutes:
    """Test cases for the authenticated carrier proxy."""

    def test_requires_user(self, client):
        response = client.get("/api/carrier/divisions")

        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_requires_configured_key(self, client):
        response = client.get("/api/carrier/divisions", headers={"X-User-ID": "user-2"})

        assert response.status_code == 400
        assert response.json()["code"] == "API_KEY_NOT_CONFIGURED"

    def test_get_collapses_bracket_params(self, client, stub):
        stub.route("GET", "/divisions", {"items": [{"id": 1}]})

        response = client.get("/api/carrier/divisions?countryCodes[]=UA&countryCodes[]=PL&limit=5", headers=USER)

        assert response.status_code == 200
        assert response.json() == {"items": [{"id": 1}]}
        params = stub.calls_to("GET", "/divisions")[0].url.params
        assert params.get_list("countryCodes[]") == ["UA", "PL"]
        assert params["limit"] == "5"

    def test_post_forwards_body(self, client, stub):
        stub.route("POST", "/pickups", {"id": 10})

        response = client.post("/api/carrier/pickups", json={"date": "2024-01-05"}, headers=USER)

        assert response.status_code == 200
        assert json_body(stub.calls_to("POST", "/pickups")[0]) == {"date": "2024-01-05"}

    def test_delete_without_body(self, client, stub):
        stub.route("DELETE", "/registries/3", httpx.Response(204))

        response = client.delete("/api/carrier/registries/3", headers=USER)

        assert response.status_code == 204

    def test_failure_is_relayed(self, client, stub):
        stub.route("PUT", "/shipments/1", httpx.Response(422, json={"message": "Invalid", "errors": {"phone": ["bad"]}}))

        response = client.put("/api/carrier/shipments/1", json={}, headers=USER)

        assert response.status_code == 422
        assert response.json() == {"message": "Invalid", "status": 422, "errors": {"phone": ["bad"]}}

    def test_unroutable_path_is_relayed_as_failure(self, client):
        response = client.get("/api/carrier/shipments%00", headers=USER)

        assert response.status_code == 500
        assert response.json()["status"] == 500
        assert "code" not in response.json()

    def test_post_requires_json_body(self, client):
        response = client.post("/api/carrier/pickups", headers=USER)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestShipmentRoutes:
    """Test cases for shipment routes."""

    def test_list_shipments(self, client, stub):
        stub.route("GET", "/shipments", make_page([make_shipment(1, created_at="2024-01-01T10:00:00Z")]))

        response = client.get("/api/shipments?page=1&limit=15&numbers[]=N1", headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["items"][0]["createdAt"] == "2024-01-01T10:00:00Z"
        assert body["last_page"] == 1
        assert stub.calls_to("GET", "/shipments")[0].url.params.get_list("numbers[]") == ["N1"]

    def test_print_returns_pdf(self, client, stub):
        stub.route(
            "GET",
            "/shipments/print",
            httpx.Response(200, content=b"%PDF-1.7", headers={"Content-Type": "application/pdf"}),
        )

        response = client.get("/api/shipments/print?type=marking&numbers[]=N1", headers=USER)

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content == b"%PDF-1.7"

    def test_print_rejects_unknown_type(self, client):
        response = client.get("/api/shipments/print?type=poster&numbers[]=N1", headers=USER)

        assert response.status_code == 400

    def test_delete_shipment(self, client, stub):
        stub.route("DELETE", "/shipments/5", httpx.Response(204))

        response = client.delete("/api/shipments/5", headers=USER)

        assert response.status_code == 204


class TestAnalyticsRoute:
    """Test cases for the analytics route."""

    def test_returns_camel_case_analytics(self, client, stub):
        stub.route(
            "GET",
            "/shipments",
            make_page([
                make_shipment(1, created_at="2024-01-01T10:00:00Z", tracking_code=7),
                make_shipment(2, created_at="2024-01-02T10:00:00Z", tracking_code=8),
            ]),
        )

        response = client.get("/api/analytics/shipments?dateFrom=2024-01-01&dateTo=2024-01-31", headers=USER)

        assert response.status_code == 200
        body = response.json()
        assert body["totalShipments"] == 2
        assert body["deliveredCount"] == 1
        assert body["returnedPercentage"] == 50
        assert len(body["dailyStats"]) == 2

    def test_invalid_date_rejected(self, client, stub):
        response = client.get("/api/analytics/shipments?dateFrom=01.01.2024", headers=USER)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert stub.auth_calls == 0

    def test_reversed_range_rejected(self, client):
        response = client.get("/api/analytics/shipments?dateFrom=2024-02-01&dateTo=2024-01-01", headers=USER)

        assert response.status_code == 400

    def test_upstream_failure_yields_empty_analytics(self, client, stub):
        stub.route("GET", "/shipments", httpx.Response(503, json={"message": "Down"}))

        response = client.get("/api/analytics/shipments", headers=USER)

        assert response.status_code == 200
        assert response.json()["totalShipments"] == 0

    def test_deadline_exceeded_is_504(self, client, service):
        async def never_finishes(*args, **kwargs):
            await asyncio.sleep(10)

        service.config.analytics_timeout_seconds = 0.01
        with patch.object(service.analytics, "compute_analytics", new=AsyncMock(side_effect=never_finishes)):
            response = client.get("/api/analytics/shipments", headers=USER)

        assert response.status_code == 504
        assert response.json()["code"] == "UPSTREAM_UNAVAILABLE"

    def test_defaults_come_from_settings(self, client, service):
        with patch.object(service.analytics, "compute_analytics", new_callable=AsyncMock) as mock_compute:
            mock_compute.return_value = ShipmentAnalytics()

            response = client.get("/api/analytics/shipments?dateFrom=2024-01-01", headers=USER)

        assert response.status_code == 200
        mock_compute.assert_awaited_once_with(API_KEY, "2024-01-01", None, max_pages=10, per_page=100)


class TestApiKeySettings:
    """Test cases for API key settings routes."""

    def test_save_valid_key(self, client, key_store, service):
        response = client.put("/api/settings/api-key", json={"apiKey": "  new-key-00000002 "}, headers={"X-User-ID": "user-2"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert key_store._keys["user-2"] == "new-key-00000002"
        assert service.registry.peek("new-key-00000002") is not None

    def test_empty_key_rejected(self, client, stub):
        response = client.put("/api/settings/api-key", json={"apiKey": "   "}, headers=USER)

        assert response.status_code == 400
        assert response.json()["message"] == "API ключ не може бути порожнім"
        assert stub.auth_calls == 0

    @pytest.mark.parametrize(
        "upstream_status,expected_status,code",
        [
            (401, 400, "AUTH_INVALID"),
            (429, 429, "RATE_LIMIT_ERROR"),
            (503, 503, "UPSTREAM_UNAVAILABLE"),
        ],
    )
    def test_rejected_key_is_not_saved(self, client, stub, key_store, upstream_status, expected_status, code):
        stub.auth_status = upstream_status

        response = client.put("/api/settings/api-key", json={"apiKey": "bad-key-00000003"}, headers={"X-User-ID": "user-3"})

        assert response.status_code == expected_status
        assert response.json()["code"] == code
        assert "user-3" not in key_store._keys

    def test_delete_key(self, client, key_store, service, stub):
        stub.route("GET", "/divisions", {"items": []})
        client.get("/api/carrier/divisions", headers=USER)

        response = client.delete("/api/settings/api-key", headers=USER)

        assert response.status_code == 200
        assert "user-1" not in key_store._keys
        assert service.registry.peek(API_KEY) is None


class TestStatsRoute:
    """Test cases for client diagnostics."""

    def test_stats_before_use(self, client):
        response = client.get("/api/carrier-client/stats", headers=USER)

        assert response.status_code == 200
        assert response.json()["registered"] is False
        assert response.json()["api_key"] == "test••••0001"

    def test_stats_after_use(self, client, stub):
        stub.route("GET", "/divisions", {"items": []})
        client.get("/api/carrier/divisions", headers=USER)
        client.get("/api/carrier/divisions", headers=USER)

        stats = client.get("/api/carrier-client/stats", headers=USER).json()

        assert stats["registered"] is True
        assert stats["auth_requests"] == 1
        assert stats["api_requests"] == 2
        assert stats["has_valid_token"] is True
