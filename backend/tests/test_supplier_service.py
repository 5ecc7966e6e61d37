"""
Unit Tests - Supplier directory
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stockbridge.models import Product, SupplierCostHistory, SupplierProduct
from stockbridge.services.supplier_service import SupplierService


@pytest.fixture
def product(db):
    product = Product(name="Amoxicilina 500mg")
    db.add(product)
    db.commit()
    return product


class TestSupplierNames:
    """Tests for name normalization and find-or-create"""

    def test_normalize_strips_accents_and_punctuation(self):
        """Accents, case and punctuation do not matter"""
        assert SupplierService.normalize_supplier_name("  Distribuidora  López, S.A. ") == "distribuidora lopez sa"

    def test_find_or_create_reuses_normalized_match(self, db):
        """Different spellings of one name map to one supplier"""
        first = SupplierService.find_or_create_supplier(db, "Farmacéutica Ruiz")
        second = SupplierService.find_or_create_supplier(db, "farmaceutica ruiz")

        assert first.id == second.id

    def test_find_or_create_reactivates(self, db):
        """An inactive supplier comes back instead of being duplicated"""
        supplier = SupplierService.find_or_create_supplier(db, "Lopez")
        SupplierService.deactivate_supplier(db, supplier.id)

        again = SupplierService.find_or_create_supplier(db, "LOPEZ")

        assert again.id == supplier.id
        assert again.is_active is True
        assert again.name == "LOPEZ"

    def test_empty_name_rejected(self, db):
        """Blank names are not suppliers"""
        with pytest.raises(ValueError):
            SupplierService.find_or_create_supplier(db, "   ")

    def test_create_duplicate_rejected(self, db):
        """create_supplier refuses an active duplicate"""
        SupplierService.create_supplier(db, "Lopez")
        with pytest.raises(ValueError):
            SupplierService.create_supplier(db, "lópez")


class TestSupplierInitials:
    """Tests for initials"""

    def test_add_and_find_initial(self, db):
        """Initials match case-insensitively"""
        supplier = SupplierService.create_supplier(db, "Distribuidora Lopez")

        assert SupplierService.add_initial_to_supplier(db, supplier, "L") is True
        assert SupplierService.add_initial_to_supplier(db, supplier, "l") is False
        assert SupplierService.find_supplier_by_initial(db, "l").id == supplier.id

    def test_initial_owned_by_another_supplier(self, db):
        """One initial belongs to one supplier"""
        SupplierService.create_supplier(db, "Lopez", initials=["L"])
        other = SupplierService.create_supplier(db, "Lara")

        with pytest.raises(ValueError):
            SupplierService.add_initial_to_supplier(db, other, "L")


class TestSupplierSuggestions:
    """Tests for fuzzy suggestions"""

    def test_score_tiers(self):
        """Exact, prefix, contains, then word overlap"""
        assert SupplierService.score_supplier_name("lopez", "lopez") == 100
        assert SupplierService.score_supplier_name("lop", "lopez") == 80
        assert SupplierService.score_supplier_name("pez", "lopez") == 60
        assert SupplierService.score_supplier_name("central lopez", "distribuidora lopez") == 20
        assert SupplierService.score_supplier_name("zzz", "lopez") == 0

    def test_suggest_ranks_by_score(self, db):
        """Better matches come first"""
        SupplierService.create_supplier(db, "Distribuidora Lopez")
        SupplierService.create_supplier(db, "Lopez")
        SupplierService.create_supplier(db, "Ruiz")

        suggestions = SupplierService.suggest_suppliers(db, "lopez", limit=5)

        assert [s.name for s in suggestions] == ["Lopez", "Distribuidora Lopez"]
        assert suggestions[0].score == 100

    def test_initial_match_scores_as_exact(self, db):
        """Typing an initial suggests its supplier"""
        supplier = SupplierService.create_supplier(db, "Distribuidora Lopez", initials=["DL"])

        suggestions = SupplierService.suggest_suppliers(db, "DL")

        assert suggestions[0].id == supplier.id
        assert suggestions[0].score == 100


class TestCostHistory:
    """Tests for cost history and preferred suppliers"""

    def test_small_change_does_not_add_history(self, db, product):
        """Changes under one cent are ignored"""
        supplier = SupplierService.find_or_create_supplier(db, "Lopez")
        SupplierService.create_supplier_cost_history(db, product.id, supplier.id, Decimal("10.00"))

        assert SupplierService.create_supplier_cost_history(db, product.id, supplier.id, Decimal("10.004")) is None

        changed = SupplierService.create_supplier_cost_history(db, product.id, supplier.id, Decimal("11.00"))
        rows = db.query(SupplierCostHistory).filter(SupplierCostHistory.product_id == product.id).all()

        assert changed is not None
        assert len(rows) == 2
        assert [r.is_current for r in rows if r.unit_cost == Decimal("11.00")] == [True]

    def test_replace_keeps_one_current_row(self, db, product):
        """The selected entry becomes the single current row"""
        supplier = SupplierService.find_or_create_supplier(db, "Lopez")
        SupplierService.create_supplier_cost_history(db, product.id, supplier.id, Decimal("9.00"))

        SupplierService.replace_current_cost_history(db, product.id, supplier.id, [
            (Decimal("12.00"), datetime(2025, 3, 1, tzinfo=timezone.utc), False),
            (Decimal("11.00"), datetime(2025, 1, 1, tzinfo=timezone.utc), True),
        ])

        current = db.query(SupplierCostHistory).filter(
            SupplierCostHistory.product_id == product.id,
            SupplierCostHistory.is_current == True,
        ).all()
        assert len(current) == 1
        assert current[0].unit_cost == Decimal("11.00")

    def test_invalid_history_source(self, db, product):
        """Only known sources are accepted"""
        supplier = SupplierService.find_or_create_supplier(db, "Lopez")
        with pytest.raises(ValueError):
            SupplierService.create_supplier_cost_history(db, product.id, supplier.id, Decimal("1"), source="GUESS")

    def test_set_preferred_supplier_is_exclusive(self, db, product):
        """Only one preferred supplier per product"""
        lopez = SupplierService.find_or_create_supplier(db, "Lopez")
        ruiz = SupplierService.find_or_create_supplier(db, "Ruiz")

        SupplierService.set_preferred_supplier(db, product.id, lopez.id, Decimal("10"))
        SupplierService.set_preferred_supplier(db, product.id, ruiz.id, Decimal("12"))

        links = {link.supplier_id: link for link in db.query(SupplierProduct).all()}
        assert links[ruiz.id].is_preferred is True
        assert links[lopez.id].is_preferred is False
