"""
Shared FastAPI dependencies.

The Square client is process-wide so its catalog cache is shared between
requests. Tests override get_square_service with a fake.
"""
import logging
import threading
from typing import Optional

from stockbridge.config import settings
from stockbridge.database import get_db
from stockbridge.services.square_inventory_service import SquareInventoryService
from stockbridge.services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

_square_service: Optional[SquareInventoryService] = None
_lock = threading.Lock()


def get_square_service() -> SquareInventoryService:
    global _square_service
    if _square_service is None:
        with _lock:
            if _square_service is None:
                _square_service = SquareInventoryService(cache=TTLCache(settings.CATALOG_CACHE_TTL_SECONDS))
                logger.info(
                    "Square client ready (%s, catalog cache TTL %ss)",
                    settings.SQUARE_ENVIRONMENT, settings.CATALOG_CACHE_TTL_SECONDS,
                )
    return _square_service


def reset_square_service() -> None:
    """Drop the shared client (and its catalog cache), e.g. after rotating the access token"""
    global _square_service
    with _lock:
        if _square_service is not None and _square_service.cache is not None:
            _square_service.cache.clear()
        _square_service = None


__all__ = ["get_db", "get_square_service", "reset_square_service"]
