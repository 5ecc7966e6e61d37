"""
Unit Tests - Supplier token resolution and learned initials
"""
from stockbridge.models import Supplier
from stockbridge.services.supplier_resolver import SupplierResolver


class TestResolve:
    """Tests for SupplierResolver.resolve"""

    def test_initials_win(self, db, store):
        """A persisted initial resolves before anything else"""
        lopez = store.supplier("Distribuidora Lopez", initials=["L"])

        resolved = SupplierResolver(db).resolve("l")

        assert resolved.id == lopez.id
        assert resolved.matched_by == "INITIALS"
        assert resolved.is_confirmed

    def test_pending_initials(self, db, store):
        """Initials staged on the session resolve too"""
        lopez = store.supplier("Distribuidora Lopez")

        resolved = SupplierResolver(db, {"Distribuidora Lopez": ["DL"]}).resolve("dl")

        assert resolved.id == lopez.id
        assert resolved.matched_by == "PENDING_INITIALS"

    def test_exact_name(self, db, store):
        """Full names match case- and accent-insensitively"""
        ruiz = store.supplier("Farmacéutica Ruiz")

        resolved = SupplierResolver(db).resolve("farmaceutica ruiz")

        assert resolved.id == ruiz.id
        assert resolved.matched_by == "NAME"

    def test_session_mapping(self, db, store):
        """A mapping accepted earlier in the session is reused"""
        ruiz = store.supplier("Farmacéutica Ruiz")
        resolver = SupplierResolver(db)
        resolver.remember_mapping("Fx", "Farmacéutica Ruiz")

        resolved = resolver.resolve("FX")

        assert resolved.id == ruiz.id
        assert resolved.matched_by == "SESSION"

    def test_suggestion_is_not_confirmed(self, db, store):
        """Fuzzy matches only pre-fill"""
        store.supplier("Distribuidora Lopez")

        resolved = SupplierResolver(db).resolve("Lopez")

        assert resolved.name == "Distribuidora Lopez"
        assert resolved.matched_by == "SUGGESTION"
        assert not resolved.is_confirmed

    def test_unknown_and_general_never_resolve(self, db, store):
        """Placeholder tokens stay unresolved"""
        store.supplier("Unknown Traders")
        resolver = SupplierResolver(db)

        assert resolver.resolve("Unknown") is None
        assert resolver.resolve("general") is None
        assert resolver.resolve("") is None


class TestLearnedInitials:
    """Tests for staging and confirming initials"""

    def test_learn_from_approval_stages_mapping(self, db, store):
        """A short token widened to a known supplier is staged, not saved"""
        lopez = store.supplier("Distribuidora Lopez")
        resolver = SupplierResolver(db)

        pair = resolver.learn_from_approval("L", "Distribuidora Lopez")

        assert pair == ("Distribuidora Lopez", "L")
        assert resolver.pending_initials == {"Distribuidora Lopez": ["L"]}
        assert db.get(Supplier, lopez.id).initials == []

    def test_learn_ignores_same_name_and_long_tokens(self, db, store):
        """Only genuine abbreviations are learned"""
        store.supplier("Lopez")
        resolver = SupplierResolver(db)

        assert resolver.learn_from_approval("lopez", "Lopez") is None
        assert resolver.learn_from_approval("LOPEZFARMA", "Lopez") is None
        assert resolver.learn_from_approval("L", "Nobody") is None

    def test_confirm_pending_saves_and_clears(self, db, store):
        """Confirmation persists every staged initial and empties the pending set"""
        lopez = store.supplier("Distribuidora Lopez")
        ruiz = store.supplier("Farmaceutica Ruiz")
        resolver = SupplierResolver(db, {"Distribuidora Lopez": ["L"], "Farmaceutica Ruiz": ["FR"]})

        saved = resolver.confirm_pending()
        db.commit()

        assert sorted(saved) == [("Distribuidora Lopez", "L"), ("Farmaceutica Ruiz", "FR")]
        assert resolver.pending_initials == {}
        assert lopez.initials == ["L"]
        assert ruiz.initials == ["FR"]

    def test_confirm_skips_failed_save(self, db, store):
        """A conflicting initial is logged and dropped; the rest still save"""
        store.supplier("Lara", initials=["L"])
        lopez = store.supplier("Distribuidora Lopez")
        ruiz = store.supplier("Farmaceutica Ruiz")
        resolver = SupplierResolver(db, {"Distribuidora Lopez": ["L"], "Farmaceutica Ruiz": ["FR"]})

        saved = resolver.confirm_pending()
        db.commit()

        assert saved == [("Farmaceutica Ruiz", "FR")]
        assert resolver.pending_initials == {}
        assert lopez.initials == []
        assert ruiz.initials == ["FR"]
