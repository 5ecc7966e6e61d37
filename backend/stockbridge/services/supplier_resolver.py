"""
Supplier Resolver - maps raw supplier tokens from descriptions ("L", "Rx",
"Distribuidora Lopez") to directory suppliers, and learns new initials.

Resolution order:
1. initials (persisted, then this session's pending ones)
2. exact full name
3. token -> name mappings accepted earlier in this session
4. top fuzzy suggestion (pre-fill only, never committed on its own)

One resolver lives for one extraction session / approval call. Pending
initials are {supplier name: [tokens]} and are persisted on the session until
confirm_pending() writes them to the directory.
"""
import logging
from typing import Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockbridge.schemas.cutover import SupplierSuggestion
from stockbridge.services.supplier_service import SupplierService

logger = logging.getLogger(__name__)

# Tokens that never identify a supplier
UNRESOLVABLE_TOKENS = {"unknown", "general"}

# Longest token still treated as an initial rather than a name
MAX_INITIAL_LENGTH = 6


class ResolvedSupplier(NamedTuple):
    id: Optional[UUID]
    name: str
    matched_by: str  # INITIALS, PENDING_INITIALS, NAME, SESSION, SUGGESTION

    @property
    def is_confirmed(self) -> bool:
        """False for fuzzy suggestions, which only pre-fill the review form"""
        return self.matched_by != "SUGGESTION"


class SupplierResolver:

    def __init__(self, db: Session, pending_initials: Optional[Dict[str, List[str]]] = None):
        self.db = db
        self.pending_initials: Dict[str, List[str]] = {
            name: list(tokens) for name, tokens in (pending_initials or {}).items()
        }
        self.session_mappings: Dict[str, str] = {}
        self._suggestions: Dict[Tuple[str, int], List[SupplierSuggestion]] = {}

    @staticmethod
    def is_resolvable(token: Optional[str]) -> bool:
        return bool(token and token.strip()) and token.strip().lower() not in UNRESOLVABLE_TOKENS

    def resolve(self, token: Optional[str]) -> Optional[ResolvedSupplier]:
        if not self.is_resolvable(token):
            return None
        token = token.strip()
        lowered = token.lower()

        supplier = SupplierService.find_supplier_by_initial(self.db, token)
        if supplier:
            return ResolvedSupplier(supplier.id, supplier.name, "INITIALS")

        for name, tokens in self.pending_initials.items():
            if any(t.lower() == lowered for t in tokens):
                supplier = SupplierService.find_supplier_by_name(self.db, name)
                return ResolvedSupplier(supplier.id if supplier else None, supplier.name if supplier else name,
                                        "PENDING_INITIALS")

        supplier = SupplierService.find_supplier_by_name(self.db, token)
        if supplier and supplier.is_active:
            return ResolvedSupplier(supplier.id, supplier.name, "NAME")

        mapped = self.session_mappings.get(lowered)
        if mapped:
            supplier = SupplierService.find_supplier_by_name(self.db, mapped)
            return ResolvedSupplier(supplier.id if supplier else None, supplier.name if supplier else mapped, "SESSION")

        suggestions = self.suggest(token, limit=1)
        if suggestions:
            return ResolvedSupplier(suggestions[0].id, suggestions[0].name, "SUGGESTION")
        return None

    def suggest(self, token: str, limit: int = 3) -> List[SupplierSuggestion]:
        """Fuzzy suggestions, memoized per token for the life of the resolver"""
        if not self.is_resolvable(token):
            return []
        key = (token.strip().lower(), limit)
        if key not in self._suggestions:
            self._suggestions[key] = SupplierService.suggest_suppliers(self.db, token.strip(), limit=limit)
        return self._suggestions[key]

    def remember_mapping(self, token: str, supplier_name: str) -> None:
        """Accept token -> supplier_name for the rest of this session"""
        if self.is_resolvable(token) and supplier_name:
            self.session_mappings[token.strip().lower()] = supplier_name

    def learn_from_approval(self, token: Optional[str], supplier_name: str) -> Optional[Tuple[str, str]]:
        """
        Stage token as a pending initial of supplier_name when the approval
        widened a short token into a longer, known supplier name.

        Returns the staged (supplier_name, token) pair, or None.
        """
        if not self.is_resolvable(token) or not supplier_name:
            return None
        token = token.strip()
        if len(token) > MAX_INITIAL_LENGTH or len(token) >= len(supplier_name.strip()):
            return None
        if SupplierService.normalize_supplier_name(token) == SupplierService.normalize_supplier_name(supplier_name):
            return None
        supplier = SupplierService.find_supplier_by_name(self.db, supplier_name)
        if supplier is None:
            return None
        if any(t.lower() == token.lower() for t in (supplier.initials or [])):
            return None
        existing_owner = SupplierService.find_supplier_by_initial(self.db, token)
        if existing_owner and existing_owner.id != supplier.id:
            return None

        self.remember_mapping(token, supplier.name)
        staged = self.pending_initials.setdefault(supplier.name, [])
        if not any(t.lower() == token.lower() for t in staged):
            staged.append(token)
        return supplier.name, token

    def confirm_pending(self, only: Optional[List[Tuple[str, str]]] = None) -> List[Tuple[str, str]]:
        """
        Persist staged initials in one pass and drop them from the pending set.

        only restricts the confirmation to the given (supplier name, token)
        pairs. A failed save is logged and skipped; the rest still go through.
        Returns the pairs that were saved.
        """
        if only is None:
            pairs = [(name, token) for name, tokens in self.pending_initials.items() for token in tokens]
        else:
            pairs = list(only)

        saved = []
        for name, token in pairs:
            try:
                with self.db.begin_nested():
                    supplier = SupplierService.find_supplier_by_name(self.db, name)
                    if supplier is None:
                        raise ValueError(f"Supplier '{name}' no longer exists")
                    SupplierService.add_initial_to_supplier(self.db, supplier, token)
                saved.append((name, token))
            except (ValueError, SQLAlchemyError) as e:
                logger.warning(f"Could not save initial '{token}' for supplier '{name}': {e}")
            self._drop_pending(name, token)

        if saved:
            logger.info(f"Confirmed {len(saved)} supplier initial(s): {saved}")
        return saved

    def _drop_pending(self, name: str, token: str) -> None:
        tokens = self.pending_initials.get(name)
        if not tokens:
            return
        remaining = [t for t in tokens if t.lower() != token.lower()]
        if remaining:
            self.pending_initials[name] = remaining
        else:
            self.pending_initials.pop(name, None)
