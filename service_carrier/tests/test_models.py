"""
Unit tests for upstream schema decoding.
"""

from service_carrier.app.adapters.results import ApiResult
from service_carrier.app.domain.models import Shipment, ShipmentPage, decode_result
from shared.test_helpers import make_page, make_shipment


class TestDecodeResult:
    """Test cases for decode_result."""

    def test_page_is_decoded(self):
        payload = make_page([make_shipment(1, created_at="2024-01-01T08:00:00Z", tracking_code=7)], last_page=3, total=250)

        result = decode_result(ApiResult.ok(payload), ShipmentPage)

        assert result.success
        page = result.data
        assert page.last_page == 3
        assert page.total == 250
        assert page.from_ == 1
        assert page.items[0].created_at == "2024-01-01T08:00:00Z"
        assert page.items[0].tracking_status_code == 7

    def test_unknown_fields_are_kept(self):
        record = Shipment.model_validate({"id": 5, "externalRef": "abc"})

        assert record.model_dump(by_alias=True)["externalRef"] == "abc"

    def test_null_collections_become_empty(self):
        record = Shipment.model_validate({"id": 5, "services": None, "parcels": None})

        assert record.services == []
        assert record.parcels == []

    def test_malformed_payload_fails_closed(self):
        result = decode_result(ApiResult.ok({"items": "not-a-list"}), ShipmentPage)

        assert not result.success
        assert result.error.status == 502
        assert "items" in result.error.errors

    def test_failures_pass_through(self):
        failure = ApiResult.fail("HTTP 503", 503)

        assert decode_result(failure, ShipmentPage) is failure
