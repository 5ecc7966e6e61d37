"""
Unit Tests - Cutover date locks
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from stockbridge.models import CutoverLock
from stockbridge.services.cutover_lock_service import CutoverLockService

CUTOVER_DATE = datetime(2025, 6, 30, tzinfo=timezone.utc)


class TestEnableLocks:
    """Tests for enable_cutover_locks"""

    def test_one_lock_per_location(self, db, store):
        """Duplicate location ids produce a single lock"""
        location = store.location()

        locks = CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id, location.id], "owner")
        db.commit()

        assert len(locks) == 1
        assert db.query(CutoverLock).count() == 1

    def test_enabling_twice_is_idempotent(self, db, store):
        """A second call reuses and re-enables the existing lock"""
        location = store.location()
        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id])
        db.commit()
        lock = db.query(CutoverLock).one()
        lock.is_locked = False
        db.commit()

        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id], "owner")
        db.commit()

        lock = db.query(CutoverLock).one()
        assert lock.is_locked is True
        assert lock.locked_by == "owner"


class TestBackdatedCheck:
    """Tests for validate_no_backdated_operation"""

    def test_unlocked_location_allows_anything(self, db, store):
        """Without a lock every date is allowed"""
        location = store.location()

        check = CutoverLockService.validate_no_backdated_operation(db, CUTOVER_DATE - timedelta(days=30), location.id)

        assert check.allowed is True
        assert check.cutover_date is None

    def test_operation_before_cutover_rejected(self, db, store):
        """Backdated operations are refused with a reason"""
        location = store.location()
        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id])
        db.commit()

        check = CutoverLockService.validate_no_backdated_operation(db, CUTOVER_DATE - timedelta(days=1), location.id)

        assert check.allowed is False
        assert "2025-06-30" in check.reason

    def test_operation_on_or_after_cutover_allowed(self, db, store):
        """The cutover date itself is not backdated"""
        location = store.location()
        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id])
        db.commit()

        assert CutoverLockService.validate_no_backdated_operation(db, CUTOVER_DATE, location.id).allowed is True
        assert CutoverLockService.validate_no_backdated_operation(
            db, CUTOVER_DATE + timedelta(days=3), location.id
        ).allowed is True

    def test_lock_is_per_location(self, db, store):
        """Other locations are not affected"""
        centro = store.location()
        norte = store.location(name="Norte", square_id="SQ-NORTE")
        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [centro.id])
        db.commit()

        check = CutoverLockService.validate_no_backdated_operation(db, CUTOVER_DATE - timedelta(days=1), norte.id)

        assert check.allowed is True


class TestCutoverStatus:
    """Tests for status reads"""

    def test_cutover_for_location(self, db, store):
        """The active lock's date is returned"""
        location = store.location()
        assert CutoverLockService.get_cutover_for_location(db, location.id) is None

        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [location.id])
        db.commit()

        found = CutoverLockService.get_cutover_for_location(db, location.id)
        assert found.replace(tzinfo=timezone.utc) == CUTOVER_DATE

    def test_status_lists_locked_locations(self, db, store):
        """Status covers every locked location, or one when filtered"""
        centro = store.location()
        norte = store.location(name="Norte", square_id="SQ-NORTE")
        CutoverLockService.enable_cutover_locks(db, CUTOVER_DATE, [centro.id, norte.id])
        db.commit()

        everything = CutoverLockService.get_cutover_status(db)
        only_norte = CutoverLockService.get_cutover_status(db, norte.id)

        assert everything.is_locked is True
        assert sorted(loc.location_name for loc in everything.locations) == ["Centro", "Norte"]
        assert [loc.location_id for loc in only_norte.locations] == [norte.id]

    def test_status_without_locks(self, db):
        """Nothing locked yet"""
        status = CutoverLockService.get_cutover_status(db, uuid4())

        assert status.is_locked is False
        assert status.locations == []
