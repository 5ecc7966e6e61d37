"""
API Tests - cutover and supplier routes
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from stockbridge.dependencies import get_db, get_square_service, reset_square_service
from stockbridge.main import app

PREFIX = "/admin/inventory/cutover"


@pytest.fixture
def client(db, square):
    """TestClient bound to the test session and the fake Square client"""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_square_service] = lambda: square
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        reset_square_service()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestExtractionRoutes:
    """Tests for extraction and the approval ledger over HTTP"""

    def test_extract_then_approve(self, client, store):
        """A reviewed item is approved against the session ledger"""
        location = store.location()
        products = store.products(location, 3)

        extracted = client.post(f"{PREFIX}/extract-costs", json={
            "location_ids": [str(location.id)],
            "batch_size": 2,
        })
        assert extracted.status_code == 200
        body = extracted.json()
        assert body["total_batches"] == 2
        assert len(body["items"]) == 2

        approved = client.post(f"{PREFIX}/approve-item", json={
            "cutover_id": body["cutover_id"],
            "product_id": str(products[0].id),
            "cost": "9.50",
            "source": "MANUAL_INPUT",
            "supplier_name": "Lopez",
        })
        assert approved.status_code == 200
        assert approved.json()["migration_status"] == "APPROVED"
        assert approved.json()["processed_items"] == 1

        detail = client.get(f"{PREFIX}/extraction-sessions/{body['session_id']}")
        assert detail.status_code == 200
        assert [row["product_id"] for row in detail.json()["approved"]] == [str(products[0].id)]

    def test_first_approvals_by_supplier_name(self, client, store):
        """Fresh ledger rows naming only a supplier are written by both approval routes"""
        location = store.location()
        products = store.products(location, 2)
        session_id = client.post(f"{PREFIX}/extract-costs", json={
            "location_ids": [str(location.id)],
        }).json()["session_id"]

        single = client.post(f"{PREFIX}/approve-item", json={
            "cutover_id": session_id,
            "product_id": str(products[0].id),
            "cost": "3.25",
            "source": "MANUAL_INPUT",
            "supplier_name": "Farmaceutica Ruiz",
        })
        bulk = client.post(f"{PREFIX}/approve-costs", json={
            "cutover_id": session_id,
            "approved_costs": [{
                "product_id": str(products[1].id),
                "cost": "4",
                "source": "MANUAL_INPUT",
                "supplier_name": "Lopez",
            }],
        })

        assert single.status_code == 200
        assert single.json()["changed"] is True
        assert bulk.status_code == 200
        assert bulk.json() == {"approved": 1, "skipped": 0, "processed_items": 2}
        names = [s["name"] for s in client.get(f"{PREFIX}/suppliers").json()]
        assert names == ["Farmaceutica Ruiz", "Lopez"]

    def test_negative_cost_is_bad_request(self, client, store):
        location = store.location()
        products = store.products(location, 1)

        response = client.post(f"{PREFIX}/approve-item", json={
            "cutover_id": str(uuid4()),
            "product_id": str(products[0].id),
            "cost": "-1",
            "supplier_name": "Lopez",
        })

        assert response.status_code == 400

    def test_restore_without_decision_is_not_found(self, client, store):
        location = store.location()
        products = store.products(location, 1)

        response = client.post(f"{PREFIX}/restore-item", json={
            "cutover_id": str(uuid4()),
            "product_id": str(products[0].id),
        })

        assert response.status_code == 404

    def test_unknown_session(self, client):
        """Missing sessions are 404 with the structured error payload"""
        response = client.get(f"{PREFIX}/extraction-sessions/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SESSION_NOT_FOUND"

    def test_square_outage_is_resumable(self, client, square, store):
        """Extraction reports which location failed"""
        location = store.location()
        square.failing_locations.add(location.square_id)

        response = client.post(f"{PREFIX}/extract-costs", json={"location_ids": [str(location.id)]})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "SQUARE_INVENTORY_FETCH_FAILED"
        assert detail["can_resume"] is True

    def test_confirm_initials_unknown_session(self, client):
        response = client.post(f"{PREFIX}/confirm-initials", json={"session_id": str(uuid4())})

        assert response.status_code == 404


class TestMigrationRoutes:
    """Tests for initiate / continue / status / backdated-check"""

    def test_validation_errors_listed(self, client):
        """Every validation failure comes back at once"""
        future = (datetime.now(timezone.utc) + timedelta(days=5)).isoformat()

        response = client.post(PREFIX, json={
            "cutover_date": future,
            "location_ids": [],
            "cost_basis": "DESCRIPTION",
        })

        assert response.status_code == 400
        assert len(response.json()["detail"]["errors"]) == 3

    def test_full_cutover_and_lock(self, client, store, yesterday):
        """Batches run to completion and the date is locked"""
        location = store.location()
        store.products(location, 3)

        first = client.post(PREFIX, json={
            "cutover_date": yesterday.isoformat(),
            "location_ids": [str(location.id)],
            "cost_basis": "DESCRIPTION",
            "owner_approved": True,
            "owner_approved_by": "owner@example.com",
            "batch_size": 2,
        })
        assert first.status_code == 200
        assert first.json()["can_continue"] is True

        second = client.post(f"{PREFIX}/continue", json={"cutover_id": first.json()["cutover_id"]})
        assert second.status_code == 200
        assert second.json()["is_complete"] is True

        status = client.get(f"{PREFIX}/status", params={"location_id": str(location.id)})
        assert status.json()["is_locked"] is True

        check = client.get(f"{PREFIX}/backdated-check", params={
            "location_id": str(location.id),
            "operation_date": (yesterday - timedelta(days=2)).isoformat(),
        })
        assert check.status_code == 200
        assert check.json()["allowed"] is False

        again = client.post(f"{PREFIX}/continue", json={"cutover_id": first.json()["cutover_id"]})
        assert again.status_code == 400

    def test_square_outage_is_bad_gateway(self, client, square, store, yesterday):
        location = store.location()
        square.failing_locations.add(location.square_id)

        response = client.post(PREFIX, json={
            "cutover_date": yesterday.isoformat(),
            "location_ids": [str(location.id)],
            "cost_basis": "DESCRIPTION",
            "owner_approved": True,
        })

        assert response.status_code == 502
        assert response.json()["detail"]["location_id"] == str(location.id)

    def test_continue_unknown_cutover(self, client):
        response = client.post(f"{PREFIX}/continue", json={"cutover_id": str(uuid4())})

        assert response.status_code == 404

    def test_preview(self, client, store, yesterday):
        location = store.location()
        store.products(location, 2)

        response = client.post(f"{PREFIX}/preview", json={
            "cutover_date": yesterday.isoformat(),
            "location_ids": [str(location.id)],
            "cost_basis": "DESCRIPTION",
        })

        assert response.status_code == 200
        assert response.json()["total_products"] == 2


class TestSupplierRoutes:
    """Tests for the supplier directory"""

    def test_create_get_and_duplicate(self, client):
        created = client.post(f"{PREFIX}/suppliers", json={"name": "Distribuidora López", "initials": ["DL"]})
        assert created.status_code == 201
        supplier = created.json()
        assert supplier["normalized_name"] == "distribuidora lopez"

        fetched = client.get(f"{PREFIX}/suppliers/{supplier['id']}")
        assert fetched.json()["initials"] == ["DL"]

        duplicate = client.post(f"{PREFIX}/suppliers", json={"name": "distribuidora lopez"})
        assert duplicate.status_code == 400

    def test_unknown_supplier(self, client):
        assert client.get(f"{PREFIX}/suppliers/{uuid4()}").status_code == 404

    def test_suggest(self, client, store):
        store.supplier("Distribuidora Lopez")
        store.supplier("Ruiz")

        response = client.get(f"{PREFIX}/suppliers/suggest", params={"q": "lopez"})

        assert [s["name"] for s in response.json()] == ["Distribuidora Lopez"]

    def test_add_initial(self, client, store):
        store.supplier("Distribuidora Lopez")

        missing = client.post(f"{PREFIX}/suppliers/add-initial", json={"supplier_name": "Nadie", "initial": "N"})
        added = client.post(f"{PREFIX}/suppliers/add-initial", json={
            "supplier_name": "Distribuidora Lopez", "initial": "L",
        })

        assert missing.status_code == 404
        assert added.status_code == 200
        assert added.json()["initials"] == ["L"]

    def test_update_and_soft_delete(self, client, store):
        supplier = store.supplier("Lopez")

        updated = client.post(f"{PREFIX}/suppliers/{supplier.id}/update", json={"contact_info": "555-0101"})
        deleted = client.post(f"{PREFIX}/suppliers/{supplier.id}/delete")
        listed = client.get(f"{PREFIX}/suppliers")

        assert updated.json()["contact_info"] == "555-0101"
        assert deleted.json()["is_active"] is False
        assert listed.json() == []
