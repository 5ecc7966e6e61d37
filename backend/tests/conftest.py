"""
Test Suite Configuration

Runs against an in-memory SQLite database; Square is replaced by FakeSquare.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from stockbridge.database import SessionLocal, engine
from stockbridge.models import Base, CatalogMapping, Location, Product, Supplier
from stockbridge.schemas.square import SquareCatalogObject, SquareInventoryItem
from stockbridge.services.migration_errors import SquareApiError
from stockbridge.services.supplier_service import SupplierService


class FakeSquare:
    """In-memory stand-in for SquareInventoryService"""

    def __init__(self):
        self.inventory: Dict[str, List[SquareInventoryItem]] = {}
        self.catalog: Dict[str, SquareCatalogObject] = {}
        self.failing_locations = set()
        self.inventory_calls = 0
        self.catalog_calls: List[str] = []

    def stock(self, square_location_id: str, variation_id: str, quantity: int) -> None:
        self.inventory.setdefault(square_location_id, []).append(SquareInventoryItem(
            catalog_object_id=variation_id,
            location_id=square_location_id,
            quantity=quantity,
        ))

    def fetch_square_inventory(self, square_location_id: str) -> List[SquareInventoryItem]:
        self.inventory_calls += 1
        if square_location_id in self.failing_locations:
            raise SquareApiError("Service unavailable", endpoint="/v2/inventory/counts/batch-retrieve", status_code=503)
        return list(self.inventory.get(square_location_id, []))

    def fetch_square_catalog_object(self, variation_id: str) -> Optional[SquareCatalogObject]:
        self.catalog_calls.append(variation_id)
        return self.catalog.get(variation_id)

    def fetch_square_cost(self, variation_id: str) -> Optional[Decimal]:
        obj = self.catalog.get(variation_id)
        return obj.default_unit_cost if obj else None


class StoreBuilder:
    """Seeds locations, mapped products and their Square stock"""

    def __init__(self, db, square: FakeSquare):
        self.db = db
        self.square = square

    def location(self, name: str = "Centro", square_id: Optional[str] = "SQ-CENTRO") -> Location:
        location = Location(name=name, square_id=square_id, is_active=True)
        self.db.add(location)
        self.db.commit()
        return location

    def product(
        self,
        location: Location,
        variation_id: str,
        name: str,
        description: Optional[str] = None,
        quantity: int = 10,
        mapped: bool = True,
        cached: bool = True,
    ) -> Optional[Product]:
        """Product mapped to variation_id with quantity in stock at location"""
        product = None
        if mapped:
            product = Product(
                name=name,
                square_product_name=name if cached else None,
                square_description=description if cached else None,
            )
            self.db.add(product)
            self.db.flush()
            self.db.add(CatalogMapping(square_variation_id=variation_id, product_id=product.id))
            self.db.commit()
        self.square.stock(location.square_id, variation_id, quantity)
        return product

    def products(self, location: Location, count: int, cost: str = "10") -> List[Product]:
        return [
            self.product(location, f"VAR-{i:02d}", f"Item {i:02d}", f"L $ {cost} enero")
            for i in range(1, count + 1)
        ]

    def supplier(self, name: str, initials: Optional[List[str]] = None) -> Supplier:
        supplier = SupplierService.create_supplier(self.db, name, initials=initials)
        self.db.commit()
        return supplier


@pytest.fixture
def db():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def square() -> FakeSquare:
    return FakeSquare()


@pytest.fixture
def store(db, square) -> StoreBuilder:
    return StoreBuilder(db, square)


@pytest.fixture
def yesterday() -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=1)
