"""
Bounded fan-out for I/O-bound lookups (Square catalog calls).
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Hashable, Iterable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def run_in_chunks(func: Callable[[K], V], keys: Iterable[K], chunk_size: int = 20) -> Dict[K, V]:
    """
    Call func(key) for every key, at most chunk_size calls in flight.

    Chunks run one after another. A key whose call raises is logged and left
    out of the result; None results are left out too.
    """
    unique_keys = list(dict.fromkeys(keys))
    results: Dict[K, V] = {}
    if not unique_keys:
        return results
    chunk_size = max(1, chunk_size)

    with ThreadPoolExecutor(max_workers=min(chunk_size, len(unique_keys))) as pool:
        for start in range(0, len(unique_keys), chunk_size):
            chunk = unique_keys[start:start + chunk_size]
            futures = {key: pool.submit(func, key) for key in chunk}
            for key, future in futures.items():
                try:
                    value = future.result()
                except Exception as e:
                    logger.warning(f"Lookup failed for {key}: {e}")
                    continue
                if value is not None:
                    results[key] = value
    return results
