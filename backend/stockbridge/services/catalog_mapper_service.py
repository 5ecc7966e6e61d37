"""
Catalog Mapper Service - resolves Square variation ids to internal product ids
through the catalog_mappings table.
"""
import logging
from typing import Dict, Iterable, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from stockbridge.models import CatalogMapping, Product
from stockbridge.services.migration_errors import UnmappedProductError

logger = logging.getLogger(__name__)


class CatalogMapperService:
    """Variation -> product lookups; location-specific mappings win over global ones"""

    @staticmethod
    def resolve_products(
        db: Session,
        keys: Iterable[Tuple[str, Optional[UUID]]],
    ) -> Dict[Tuple[str, Optional[UUID]], UUID]:
        """
        Batch-resolve (square_variation_id, location_id) pairs.

        Two queries regardless of batch size. Pairs without a mapping, or whose
        mapped product no longer exists, are absent from the result.
        """
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        variation_ids = {vid for vid, _ in keys}
        mappings = db.query(CatalogMapping).filter(
            CatalogMapping.square_variation_id.in_(list(variation_ids))
        ).all()

        global_map: Dict[str, UUID] = {}
        local_map: Dict[Tuple[str, UUID], UUID] = {}
        for m in mappings:
            if m.location_id is None:
                global_map[m.square_variation_id] = m.product_id
            else:
                local_map[(m.square_variation_id, m.location_id)] = m.product_id

        resolved: Dict[Tuple[str, Optional[UUID]], UUID] = {}
        for vid, location_id in keys:
            product_id = local_map.get((vid, location_id)) if location_id else None
            if product_id is None:
                product_id = global_map.get(vid)
            if product_id is not None:
                resolved[(vid, location_id)] = product_id

        existing = {
            row[0] for row in db.query(Product.id).filter(Product.id.in_(list(set(resolved.values())))).all()
        }
        stale = {k: pid for k, pid in resolved.items() if pid not in existing}
        for key, pid in stale.items():
            logger.warning(f"Catalog mapping for variation {key[0]} points at missing product {pid}")
            del resolved[key]
        return resolved

    @staticmethod
    def resolve_product_from_square_variation(
        db: Session,
        square_variation_id: str,
        location_id: Optional[UUID] = None,
    ) -> UUID:
        """Single lookup; raises UnmappedProductError when nothing maps"""
        resolved = CatalogMapperService.resolve_products(db, [(square_variation_id, location_id)])
        product_id = resolved.get((square_variation_id, location_id))
        if product_id is None:
            raise UnmappedProductError(square_variation_id, str(location_id) if location_id else None)
        return product_id
