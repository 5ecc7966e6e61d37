"""
Unit Tests - Square REST client
"""
from decimal import Decimal

import pytest

from stockbridge.services.migration_errors import SquareApiError
from stockbridge.services.square_inventory_service import SquareInventoryService
from stockbridge.services.ttl_cache import TTLCache


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = str(self._payload)

    def json(self):
        return self._payload


class FakeHttp:
    """Replays queued responses and records the requests made"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers})
        return self.responses.pop(0)


def _client(http, cache=None, token="test-token"):
    return SquareInventoryService(access_token=token, base_url="https://square.test/", http=http, cache=cache)


CATALOG_PAYLOAD = {
    "objects": [{
        "id": "VAR-01",
        "type": "ITEM_VARIATION",
        "item_variation_data": {
            "item_id": "ITEM-01",
            "name": "Sin variación",
            "default_unit_cost": {"amount": 450, "currency": "MXN"},
        },
    }],
    "related_objects": [
        {
            "id": "ITEM-01",
            "type": "ITEM",
            "item_data": {
                "name": "Paracetamol 500mg",
                "description_plaintext": "L $ 4.50 mayo",
                "image_ids": ["IMG-01"],
            },
        },
        {"id": "IMG-01", "type": "IMAGE", "image_data": {"url": "https://img.test/paracetamol.png"}},
    ],
}


class TestInventory:
    """Tests for fetch_square_inventory"""

    def test_follows_cursor_and_keeps_in_stock(self):
        """Pages are followed; non IN_STOCK counts are dropped"""
        http = FakeHttp(
            FakeResponse(payload={
                "counts": [
                    {"catalog_object_id": "VAR-01", "location_id": "SQ-1", "state": "IN_STOCK", "quantity": "5"},
                    {"catalog_object_id": "VAR-02", "location_id": "SQ-1", "state": "SOLD", "quantity": "1"},
                ],
                "cursor": "next-page",
            }),
            FakeResponse(payload={
                "counts": [{"catalog_object_id": "VAR-03", "location_id": "SQ-1", "state": "IN_STOCK", "quantity": "-2"}],
            }),
        )

        items = _client(http).fetch_square_inventory("SQ-1")

        assert [(i.catalog_object_id, i.quantity) for i in items] == [("VAR-01", 5), ("VAR-03", -2)]
        assert http.requests[1]["json"]["cursor"] == "next-page"
        assert http.requests[0]["url"] == "https://square.test/v2/inventory/counts/batch-retrieve"
        assert http.requests[0]["headers"]["Authorization"] == "Bearer test-token"

    def test_missing_token(self):
        """No token, no request"""
        http = FakeHttp()

        with pytest.raises(SquareApiError):
            _client(http, token="").fetch_square_inventory("SQ-1")

        assert http.requests == []

    def test_http_error_carries_status(self):
        """Square errors are surfaced with their status code"""
        http = FakeHttp(FakeResponse(401, {"errors": [{"code": "UNAUTHORIZED", "detail": "Bad token"}]}))

        with pytest.raises(SquareApiError) as exc:
            _client(http).fetch_square_inventory("SQ-1")

        assert exc.value.status_code == 401
        assert "UNAUTHORIZED" in str(exc.value)


class TestCatalog:
    """Tests for catalog lookups"""

    def test_parses_item_variation(self):
        """Name, description, image and cost come from the related item"""
        http = FakeHttp(FakeResponse(payload=CATALOG_PAYLOAD))

        obj = _client(http).fetch_square_catalog_object("VAR-01")

        assert obj.product_name == "Paracetamol 500mg"
        assert obj.description == "L $ 4.50 mayo"
        assert obj.image_url == "https://img.test/paracetamol.png"
        assert obj.default_unit_cost == Decimal("4.50")

    def test_cache_avoids_second_request(self):
        """Cached variations are not fetched again"""
        http = FakeHttp(FakeResponse(payload=CATALOG_PAYLOAD))
        client = _client(http, cache=TTLCache(300))

        client.fetch_square_catalog_object("VAR-01")
        cost = client.fetch_square_cost("VAR-01")

        assert cost == Decimal("4.50")
        assert len(http.requests) == 1

    def test_not_found_is_none(self):
        """A 404 means the variation does not exist"""
        http = FakeHttp(FakeResponse(404, {"errors": [{"code": "NOT_FOUND", "detail": "gone"}]}))

        assert _client(http).fetch_square_catalog_object("VAR-99") is None


class TestProductName:
    """Tests for normalize_square_product_name"""

    def test_placeholder_variation_dropped(self):
        assert SquareInventoryService.normalize_square_product_name("Gasas", "Regular") == "Gasas"

    def test_real_variation_appended(self):
        assert SquareInventoryService.normalize_square_product_name("Gasas", "10x10") == "Gasas - 10x10"

    def test_fallback_when_nothing_named(self):
        assert SquareInventoryService.normalize_square_product_name(None, None, "VAR-01") == "VAR-01"
