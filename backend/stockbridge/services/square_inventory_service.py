"""
Square Inventory Service - pulls the POS inventory snapshot and catalog
metadata from the Square REST API.

Only the calls the cutover needs are wrapped:
- inventory counts batch-retrieve (IN_STOCK counts per location)
- catalog batch-retrieve with related objects (item name, description, image,
  variation default unit cost)
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import requests

from stockbridge.config import settings
from stockbridge.schemas.square import SquareInventoryItem, SquareCatalogObject
from stockbridge.services.migration_errors import SquareApiError
from stockbridge.services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# Square's batch-retrieve limit for catalog object ids
CATALOG_BATCH_LIMIT = 1000

# Variation names Square uses when an item has a single unnamed variation
_PLACEHOLDER_VARIATION_NAMES = {"sin variación", "sin variacion", "no variation", "regular", ""}


class SquareInventoryService:
    """Thin Square REST client; one instance can be shared across requests"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[int] = None,
        cache: Optional[TTLCache] = None,
        http: Optional[requests.Session] = None,
    ):
        self.access_token = access_token if access_token is not None else settings.SQUARE_ACCESS_TOKEN
        self.base_url = (base_url or settings.square_base_url).rstrip("/")
        self.api_version = api_version or settings.SQUARE_API_VERSION
        self.timeout = timeout or settings.SQUARE_TIMEOUT_SECONDS
        self.cache = cache
        self.http = http or requests.Session()

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        if not self.access_token:
            raise SquareApiError("SQUARE_ACCESS_TOKEN environment variable is not set", endpoint=path)
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Square-Version": self.api_version,
            "Content-Type": "application/json",
        }
        try:
            response = self.http.request(
                method, f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise SquareApiError(str(e), endpoint=path) from e

        if response.status_code >= 400:
            detail = response.text[:500]
            try:
                errors = response.json().get("errors") or []
                if errors:
                    detail = "; ".join(f"{err.get('code')}: {err.get('detail')}" for err in errors)
            except ValueError:
                pass
            raise SquareApiError(detail, endpoint=path, status_code=response.status_code)
        return response.json()

    # ------------------------------------------------------------------
    # Inventory snapshot
    # ------------------------------------------------------------------

    def fetch_square_inventory(self, square_location_id: str) -> List[SquareInventoryItem]:
        """All IN_STOCK counts for one Square location, following cursors."""
        items: List[SquareInventoryItem] = []
        cursor = None
        while True:
            payload = {"location_ids": [square_location_id], "states": ["IN_STOCK"]}
            if cursor:
                payload["cursor"] = cursor
            data = self._request("POST", "/v2/inventory/counts/batch-retrieve", payload)
            for count in data.get("counts") or []:
                if count.get("state") != "IN_STOCK":
                    continue
                if not count.get("catalog_object_id") or count.get("quantity") in (None, ""):
                    continue
                try:
                    quantity = int(Decimal(str(count["quantity"])))
                except ArithmeticError:
                    quantity = 0
                items.append(SquareInventoryItem(
                    catalog_object_id=count["catalog_object_id"],
                    location_id=count.get("location_id") or square_location_id,
                    quantity=quantity,
                ))
            cursor = data.get("cursor")
            if not cursor:
                break
        logger.info(f"Fetched {len(items)} Square inventory counts for location {square_location_id}")
        return items

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def fetch_square_catalog_objects(self, variation_ids: Iterable[str]) -> Dict[str, SquareCatalogObject]:
        """Catalog metadata keyed by variation id; unknown ids are absent."""
        wanted = list(dict.fromkeys(v for v in variation_ids if v))
        found: Dict[str, SquareCatalogObject] = {}
        to_fetch = []
        for vid in wanted:
            cached = self.cache.get(vid) if self.cache is not None else None
            if cached is not None:
                found[vid] = cached
            else:
                to_fetch.append(vid)

        for start in range(0, len(to_fetch), CATALOG_BATCH_LIMIT):
            chunk = to_fetch[start:start + CATALOG_BATCH_LIMIT]
            data = self._request("POST", "/v2/catalog/batch-retrieve", {
                "object_ids": chunk,
                "include_related_objects": True,
            })
            parsed = self._parse_catalog_response(data)
            for vid, obj in parsed.items():
                found[vid] = obj
                if self.cache is not None:
                    self.cache.set(vid, obj)
        return found

    def fetch_square_catalog_object(self, variation_id: str) -> Optional[SquareCatalogObject]:
        try:
            return self.fetch_square_catalog_objects([variation_id]).get(variation_id)
        except SquareApiError as e:
            if e.status_code == 404:
                return None
            raise

    def fetch_square_cost(self, variation_id: str) -> Optional[Decimal]:
        """Variation default unit cost, when the merchant maintains one in Square."""
        obj = self.fetch_square_catalog_object(variation_id)
        return obj.default_unit_cost if obj else None

    def _parse_catalog_response(self, data: dict) -> Dict[str, SquareCatalogObject]:
        related = {o.get("id"): o for o in (data.get("related_objects") or [])}
        objects = data.get("objects") or []

        # IMAGE objects are not always part of related_objects; fetch the missing ones in one call
        missing_images = set()
        for obj in objects:
            for image_id in self._image_ids_for(obj, related)[:1]:
                if image_id not in related:
                    missing_images.add(image_id)
        if missing_images:
            try:
                images = self._request("POST", "/v2/catalog/batch-retrieve", {
                    "object_ids": sorted(missing_images),
                    "include_related_objects": False,
                })
                for image in images.get("objects") or []:
                    related[image.get("id")] = image
            except SquareApiError as e:
                logger.warning(f"Failed to fetch Square images {sorted(missing_images)}: {e}")

        out: Dict[str, SquareCatalogObject] = {}
        for obj in objects:
            if obj.get("type") != "ITEM_VARIATION":
                continue
            variation_data = obj.get("item_variation_data") or {}
            item = related.get(variation_data.get("item_id")) or {}
            item_data = item.get("item_data") or {}

            image_url = None
            for image_id in self._image_ids_for(obj, related):
                image = related.get(image_id) or {}
                url = (image.get("image_data") or {}).get("url")
                if url:
                    image_url = url
                    break

            unit_cost = None
            money = variation_data.get("default_unit_cost") or {}
            if money.get("amount") is not None:
                unit_cost = (Decimal(money["amount"]) / Decimal(100)).quantize(Decimal("0.01"))

            out[obj["id"]] = SquareCatalogObject(
                variation_id=obj["id"],
                item_id=variation_data.get("item_id"),
                product_name=item_data.get("name"),
                variation_name=variation_data.get("name"),
                description=item_data.get("description_plaintext") or item_data.get("description"),
                image_url=image_url,
                default_unit_cost=unit_cost,
            )
        return out

    @staticmethod
    def _image_ids_for(variation: dict, related: dict) -> List[str]:
        """Item-level images first, then variation-level ones"""
        variation_data = variation.get("item_variation_data") or {}
        item = related.get(variation_data.get("item_id")) or {}
        item_images = (item.get("item_data") or {}).get("image_ids") or []
        return list(item_images) + list(variation_data.get("image_ids") or [])

    @staticmethod
    def normalize_square_product_name(
        product_name: Optional[str],
        variation_name: Optional[str],
        fallback: Optional[str] = None,
    ) -> str:
        """
        "Item" or "Item - Variation"; placeholder variation names
        ("Sin variación", "No variation", "Regular") are dropped.
        """
        base = (product_name or "").strip()
        variation = (variation_name or "").strip()
        if not base:
            return variation or (fallback or "").strip()
        if variation.lower() in _PLACEHOLDER_VARIATION_NAMES or variation.lower() == base.lower():
            return base
        return f"{base} - {variation}"
