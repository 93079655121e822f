import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from loguru import logger


class MemoryCache:
    """Keyed TTL store. Injected into components that memoize remote calls."""

    def __init__(self, default_ttl: int = 30):
        self.store: Dict[str, Tuple[float, Any]] = {}
        self.default_ttl = default_ttl
        self.disabled = False

    def set(self, key: str, value: Any, ttl: Optional[int] = None):
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("Cache TTL must be positive")
        self.store[key] = (time.time() + ttl, value)

    def get(self, key: str) -> Optional[Any]:
        exp, val = self.store.get(key, (0, None))
        if exp and exp > time.time(): return val
        if key in self.store: del self.store[key]
        return None

    def remove(self, key: str):
        self.store.pop(key, None)

    def clear(self):
        self.store.clear()

    def disable(self):
        self.disabled = True

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        """Return the cached value for key, or await factory() and cache a non-empty result"""
        if self.disabled:
            return await factory()

        cached = self.get(key)
        if cached is not None:
            logger.debug(f"Cache hit {key}")
            return cached

        result = await factory()
        if result:
            self.set(key, result, ttl)
        return result


def cache_key(owner: str, method: str, *args: Any) -> str:
    return f"{owner}.{method}.{args!r}"


cache = MemoryCache()
