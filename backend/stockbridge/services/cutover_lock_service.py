"""
Cutover Lock Service - date locks left behind by a completed cutover.

A lock on (location, cutover_date) means nothing at that location may be
recorded before cutover_date any more.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from stockbridge.models import CutoverLock
from stockbridge.schemas.cutover import BackdatedCheckResponse, CutoverStatusResponse, LocationLockStatus

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; read them as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CutoverLockService:

    @staticmethod
    def enable_cutover_locks(
        db: Session,
        cutover_date: datetime,
        location_ids: Iterable[UUID],
        locked_by: Optional[str] = None,
    ) -> List[CutoverLock]:
        """
        One lock per location for cutover_date. Existing locks are reused
        (re-enabled if they were lifted). Flushes; the caller commits.
        """
        locks = []
        for location_id in dict.fromkeys(location_ids):
            lock = db.query(CutoverLock).filter(
                CutoverLock.location_id == location_id,
                CutoverLock.cutover_date == cutover_date,
            ).first()
            if lock is None:
                lock = CutoverLock(
                    location_id=location_id,
                    cutover_date=cutover_date,
                    is_locked=True,
                    locked_at=datetime.now(timezone.utc),
                    locked_by=locked_by,
                )
                db.add(lock)
                logger.info(f"Cutover lock enabled for location {location_id} at {cutover_date.isoformat()}")
            elif not lock.is_locked:
                lock.is_locked = True
                lock.locked_at = datetime.now(timezone.utc)
                lock.locked_by = locked_by
            locks.append(lock)
        db.flush()
        return locks

    @staticmethod
    def get_active_lock(db: Session, location_id: UUID) -> Optional[CutoverLock]:
        """Most recent active lock for a location"""
        return db.query(CutoverLock).filter(
            CutoverLock.location_id == location_id,
            CutoverLock.is_locked == True,
        ).order_by(CutoverLock.cutover_date.desc()).first()

    @staticmethod
    def validate_no_backdated_operation(db: Session, operation_date: datetime, location_id: UUID) -> BackdatedCheckResponse:
        lock = CutoverLockService.get_active_lock(db, location_id)
        if lock is not None and _aware(operation_date) < _aware(lock.cutover_date):
            return BackdatedCheckResponse(
                allowed=False,
                reason=(
                    f"Operation dated {operation_date.date().isoformat()} is before the cutover date "
                    f"{lock.cutover_date.date().isoformat()} for this location"
                ),
                cutover_date=lock.cutover_date,
            )
        return BackdatedCheckResponse(allowed=True, cutover_date=lock.cutover_date if lock else None)

    @staticmethod
    def get_cutover_for_location(db: Session, location_id: UUID) -> Optional[datetime]:
        lock = CutoverLockService.get_active_lock(db, location_id)
        return lock.cutover_date if lock else None

    @staticmethod
    def get_cutover_status(db: Session, location_id: Optional[UUID] = None) -> CutoverStatusResponse:
        query = db.query(CutoverLock).filter(CutoverLock.is_locked == True)
        if location_id:
            query = query.filter(CutoverLock.location_id == location_id)
        locks = query.order_by(CutoverLock.cutover_date.desc()).all()
        return CutoverStatusResponse(
            is_locked=bool(locks),
            cutover_date=locks[0].cutover_date if locks else None,
            locked_at=locks[0].locked_at if locks else None,
            locations=[
                LocationLockStatus(
                    location_id=lock.location_id,
                    location_name=lock.location.name if lock.location else "Unknown",
                    is_locked=True,
                    cutover_date=lock.cutover_date,
                )
                for lock in locks
            ],
        )
