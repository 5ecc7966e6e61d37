"""
Supplier Service - canonical supplier directory, preferred suppliers and
per-product cost history.

Methods flush but never commit; the caller owns the transaction.
"""
import logging
import re
import unicodedata
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from stockbridge.config import settings
from stockbridge.models import Supplier, SupplierProduct, SupplierCostHistory
from stockbridge.schemas.cutover import SupplierSuggestion

logger = logging.getLogger(__name__)

# Cost changes smaller than this do not create a new history row
COST_CHANGE_TOLERANCE = Decimal("0.01")

COST_HISTORY_SOURCES = ("MIGRATION", "INVENTORY_UPDATE", "MANUAL")


class SupplierService:
    """Service for the supplier directory"""

    @staticmethod
    def normalize_supplier_name(name: str) -> str:
        """
        Normalize a supplier name for matching: strip accents, lowercase,
        drop anything that is not a letter, digit or space, collapse whitespace.
        """
        if not name:
            return ""
        decomposed = unicodedata.normalize("NFKD", name)
        without_marks = "".join(c for c in decomposed if not unicodedata.combining(c))
        lowered = without_marks.lower()
        cleaned = "".join(c for c in lowered if c.isalnum() or c.isspace())
        return re.sub(r"\s+", " ", cleaned).strip()

    @staticmethod
    def find_supplier_by_name(db: Session, name: str) -> Optional[Supplier]:
        normalized = SupplierService.normalize_supplier_name(name)
        if not normalized:
            return None
        return db.query(Supplier).filter(Supplier.normalized_name == normalized).first()

    @staticmethod
    def find_or_create_supplier(db: Session, name: str) -> Supplier:
        """
        Find a supplier by normalized name or create it.
        An existing inactive supplier is reactivated and takes the new spelling.
        """
        if not name or not name.strip():
            raise ValueError("Supplier name cannot be empty")
        trimmed = name.strip()
        normalized = SupplierService.normalize_supplier_name(trimmed)
        if not normalized:
            raise ValueError(f"Supplier name '{trimmed}' has no letters or digits")

        supplier = db.query(Supplier).filter(Supplier.normalized_name == normalized).first()
        if supplier:
            if not supplier.is_active:
                logger.info(f"Reactivating supplier {supplier.name} ({supplier.id})")
            supplier.is_active = True
            supplier.name = trimmed
        else:
            supplier = Supplier(name=trimmed, normalized_name=normalized, initials=[], is_active=True)
            db.add(supplier)
        db.flush()
        return supplier

    @staticmethod
    def get_supplier(db: Session, supplier_id: UUID) -> Optional[Supplier]:
        return db.query(Supplier).filter(Supplier.id == supplier_id).first()

    @staticmethod
    def list_suppliers(db: Session, search: Optional[str] = None, include_inactive: bool = False) -> List[Supplier]:
        query = db.query(Supplier)
        if not include_inactive:
            query = query.filter(Supplier.is_active == True)
        if search:
            query = query.filter(func.lower(Supplier.name).like(f"%{search.lower()}%"))
        return query.order_by(Supplier.name.asc()).all()

    @staticmethod
    def create_supplier(db: Session, name: str, initials: Optional[List[str]] = None,
                        contact_info: Optional[str] = None) -> Supplier:
        normalized = SupplierService.normalize_supplier_name(name)
        existing = db.query(Supplier).filter(Supplier.normalized_name == normalized).first()
        if existing and existing.is_active:
            raise ValueError(f"Supplier '{existing.name}' already exists")
        supplier = SupplierService.find_or_create_supplier(db, name)
        if contact_info is not None:
            supplier.contact_info = contact_info
        for initial in initials or []:
            SupplierService.add_initial_to_supplier(db, supplier, initial)
        db.flush()
        return supplier

    @staticmethod
    def update_supplier(db: Session, supplier_id: UUID, name: Optional[str] = None,
                        initials: Optional[List[str]] = None, contact_info: Optional[str] = None,
                        is_active: Optional[bool] = None) -> Supplier:
        supplier = SupplierService.get_supplier(db, supplier_id)
        if not supplier:
            raise LookupError(f"Supplier {supplier_id} not found")
        if name is not None:
            normalized = SupplierService.normalize_supplier_name(name)
            clash = db.query(Supplier).filter(
                Supplier.normalized_name == normalized,
                Supplier.id != supplier.id,
            ).first()
            if clash:
                raise ValueError(f"Another supplier is already named '{clash.name}'")
            supplier.name = name.strip()
            supplier.normalized_name = normalized
        if initials is not None:
            supplier.initials = SupplierService._dedupe_initials(initials)
        if contact_info is not None:
            supplier.contact_info = contact_info
        if is_active is not None:
            supplier.is_active = is_active
        db.flush()
        return supplier

    @staticmethod
    def deactivate_supplier(db: Session, supplier_id: UUID) -> Supplier:
        """Soft delete: history and preferred-supplier rows keep pointing at it"""
        return SupplierService.update_supplier(db, supplier_id, is_active=False)

    # ------------------------------------------------------------------
    # Initials
    # ------------------------------------------------------------------

    @staticmethod
    def _dedupe_initials(initials: Iterable[str]) -> List[str]:
        seen = set()
        out = []
        for initial in initials:
            token = (initial or "").strip()
            if token and token.lower() not in seen:
                seen.add(token.lower())
                out.append(token)
        return out

    @staticmethod
    def add_initial_to_supplier(db: Session, supplier: Supplier, initial: str) -> bool:
        """Attach a short token to a supplier. Returns False when it was already there."""
        token = (initial or "").strip()
        if not token:
            raise ValueError("Initial cannot be empty")
        current = list(supplier.initials or [])
        if any(t.lower() == token.lower() for t in current):
            return False
        owner = SupplierService.find_supplier_by_initial(db, token)
        if owner and owner.id != supplier.id:
            raise ValueError(f"Initial '{token}' already belongs to supplier '{owner.name}'")
        # Reassign so the JSON column is flagged dirty
        supplier.initials = current + [token]
        db.flush()
        return True

    @staticmethod
    def find_supplier_by_initial(db: Session, initial: str) -> Optional[Supplier]:
        """Case-insensitive exact match against any active supplier's initials"""
        token = (initial or "").strip().lower()
        if not token:
            return None
        for supplier in db.query(Supplier).filter(Supplier.is_active == True).all():
            if any((t or "").lower() == token for t in (supplier.initials or [])):
                return supplier
        return None

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    @staticmethod
    def score_supplier_name(normalized_search: str, normalized_name: str) -> float:
        """100 exact, 80 prefix, 60 substring, otherwise 40 x share of search words found."""
        if not normalized_search or not normalized_name:
            return 0
        if normalized_name == normalized_search:
            return 100
        if normalized_name.startswith(normalized_search):
            return 80
        if normalized_search in normalized_name:
            return 60
        search_words = normalized_search.split()
        name_words = normalized_name.split()
        matches = sum(
            1 for sw in search_words
            if any(sw in nw or nw in sw for nw in name_words)
        )
        if matches == 0:
            return 0
        return round(40 * matches / len(search_words))

    @staticmethod
    def suggest_suppliers(db: Session, search_term: str, limit: int = 10) -> List[SupplierSuggestion]:
        """
        Fuzzy supplier suggestions.

        Narrows candidates in SQL (name contains the term or one of its words),
        then scores them in memory. Suppliers whose initials match the term
        score as exact matches.
        """
        if not search_term or not search_term.strip():
            suppliers = db.query(Supplier).filter(Supplier.is_active == True).order_by(Supplier.name.asc()).limit(limit).all()
            return [SupplierSuggestion(id=s.id, name=s.name, score=0) for s in suppliers]

        term = search_term.strip()
        normalized_search = SupplierService.normalize_supplier_name(term)
        words = [w for w in normalized_search.split() if len(w) >= 2]
        patterns = [f"%{term.lower()}%"] + [f"%{w}%" for w in words]
        candidates = db.query(Supplier).filter(
            Supplier.is_active == True,
            or_(*[func.lower(Supplier.name).like(p) for p in patterns]),
        ).limit(settings.SUPPLIER_SUGGESTION_CANDIDATES).all()

        initial_owner = SupplierService.find_supplier_by_initial(db, term)
        scored = {}
        if initial_owner:
            scored[initial_owner.id] = (initial_owner, 100)
        for supplier in candidates:
            score = SupplierService.score_supplier_name(normalized_search, supplier.normalized_name)
            if score > scored.get(supplier.id, (None, 0))[1]:
                scored[supplier.id] = (supplier, score)

        ranked = sorted(scored.values(), key=lambda pair: (-pair[1], pair[0].name))
        return [
            SupplierSuggestion(id=s.id, name=s.name, score=score)
            for s, score in ranked[:limit]
            if score > 0
        ]

    # ------------------------------------------------------------------
    # Cost history / preferred supplier
    # ------------------------------------------------------------------

    @staticmethod
    def get_current_cost(db: Session, product_id: UUID, supplier_id: UUID) -> Optional[SupplierCostHistory]:
        return db.query(SupplierCostHistory).filter(
            SupplierCostHistory.product_id == product_id,
            SupplierCostHistory.supplier_id == supplier_id,
            SupplierCostHistory.is_current == True,
        ).first()

    @staticmethod
    def create_supplier_cost_history(
        db: Session,
        product_id: UUID,
        supplier_id: UUID,
        unit_cost: Decimal,
        source: str = "MIGRATION",
        effective_at: Optional[datetime] = None,
    ) -> Optional[SupplierCostHistory]:
        """
        Record a new current cost for (product, supplier).

        Returns None without writing when the current cost is within
        COST_CHANGE_TOLERANCE of the new one.
        """
        if source not in COST_HISTORY_SOURCES:
            raise ValueError(f"Invalid cost history source: {source}")
        new_cost = Decimal(str(unit_cost))
        current = SupplierService.get_current_cost(db, product_id, supplier_id)
        if current is not None and abs(new_cost - Decimal(str(current.unit_cost))) < COST_CHANGE_TOLERANCE:
            return None
        if current is not None:
            current.is_current = False
        row = SupplierCostHistory(
            product_id=product_id,
            supplier_id=supplier_id,
            unit_cost=new_cost,
            source=source,
            effective_at=effective_at or datetime.now(timezone.utc),
            is_current=True,
        )
        db.add(row)
        db.flush()
        return row

    @staticmethod
    def replace_current_cost_history(
        db: Session,
        product_id: UUID,
        supplier_id: UUID,
        entries: List[Tuple[Decimal, Optional[datetime], bool]],
        source: str = "MIGRATION",
    ) -> List[SupplierCostHistory]:
        """
        Append several dated costs for one (product, supplier) pair.

        entries are (cost, effective_at, is_selected). Prior current rows are
        retired, rows are inserted in effective-date order, and exactly one
        becomes current: the selected entry, else the most recent.
        """
        if not entries:
            return []
        db.query(SupplierCostHistory).filter(
            SupplierCostHistory.product_id == product_id,
            SupplierCostHistory.supplier_id == supplier_id,
            SupplierCostHistory.is_current == True,
        ).update({SupplierCostHistory.is_current: False}, synchronize_session="fetch")

        now = datetime.now(timezone.utc)
        dated = [(Decimal(str(cost)), effective_at or now, selected) for cost, effective_at, selected in entries]
        dated.sort(key=lambda e: _sortable(e[1]))
        current_index = next((i for i, e in enumerate(dated) if e[2]), len(dated) - 1)

        rows = []
        for i, (cost, effective_at, _selected) in enumerate(dated):
            row = SupplierCostHistory(
                product_id=product_id,
                supplier_id=supplier_id,
                unit_cost=cost,
                effective_at=effective_at,
                source=source,
                is_current=(i == current_index),
            )
            db.add(row)
            rows.append(row)
        db.flush()
        return rows

    @staticmethod
    def upsert_supplier_product(
        db: Session,
        product_id: UUID,
        supplier_id: UUID,
        cost: Decimal,
        is_preferred: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> SupplierProduct:
        link = db.query(SupplierProduct).filter(
            SupplierProduct.product_id == product_id,
            SupplierProduct.supplier_id == supplier_id,
        ).first()
        if link is None:
            link = SupplierProduct(
                product_id=product_id,
                supplier_id=supplier_id,
                cost=Decimal(str(cost)),
                is_preferred=bool(is_preferred),
                notes=notes,
            )
            db.add(link)
        else:
            link.cost = Decimal(str(cost))
            if is_preferred is not None:
                link.is_preferred = is_preferred
            if notes is not None:
                link.notes = notes
        db.flush()
        return link

    @staticmethod
    def set_preferred_supplier(
        db: Session,
        product_id: UUID,
        supplier_id: UUID,
        cost: Decimal,
        notes: Optional[str] = None,
    ) -> SupplierProduct:
        """Make supplier_id the only preferred supplier for the product"""
        db.query(SupplierProduct).filter(
            SupplierProduct.product_id == product_id,
            SupplierProduct.supplier_id != supplier_id,
            SupplierProduct.is_preferred == True,
        ).update({SupplierProduct.is_preferred: False}, synchronize_session="fetch")
        return SupplierService.upsert_supplier_product(
            db, product_id, supplier_id, cost, is_preferred=True, notes=notes
        )


def _sortable(value: datetime) -> datetime:
    """Naive and aware datetimes sort together (naive read as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
