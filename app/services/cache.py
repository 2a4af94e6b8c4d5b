import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Optional, Any, Dict, List, Callable, Awaitable, Type
import redis
from app.core.config import Settings
from app.schemas.entities import Warehouse, PaymentMethod, BankAccount
from app.services.dolibarr_client import DolibarrClient

logger = logging.getLogger(__name__)

KEY_PREFIX = "dolisync:"

class Cache(ABC):
    """Хранилище значений с TTL"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def ttl(self, key: str) -> Optional[int]:
        """Оставшееся время жизни ключа в секундах (None - ключа нет)"""

class MemoryCache(Cache):
    """Кэш в памяти процесса"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._cache: Dict[str, Any] = {}
        self._cache_ttl: Dict[str, float] = {}
        self._clock = clock

    def _expired(self, key: str) -> bool:
        expires_at = self._cache_ttl.get(key)
        return expires_at is None or self._clock() >= expires_at

    def get(self, key: str) -> Optional[Any]:
        if key not in self._cache:
            return None
        if self._expired(key):
            self.delete(key)
            return None
        return self._cache[key]

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._cache[key] = value
        self._cache_ttl[key] = self._clock() + ttl

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)
        self._cache_ttl.pop(key, None)

    def ttl(self, key: str) -> Optional[int]:
        if self.get(key) is None:
            return None
        return int(self._cache_ttl[key] - self._clock())

class RedisCache(Cache):
    """Кэш в Redis; значения хранятся как JSON"""

    def __init__(self, client: redis.Redis, prefix: str = KEY_PREFIX):
        self._redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self._redis.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping undecodable cache entry {key}")
            self.delete(key)
            return None

    def set(self, key: str, value: Any, ttl: int) -> None:
        self._redis.setex(self._key(key), ttl, json.dumps(value))

    def delete(self, key: str) -> None:
        self._redis.delete(self._key(key))

    def ttl(self, key: str) -> Optional[int]:
        remaining = self._redis.ttl(self._key(key))
        return remaining if remaining is not None and remaining >= 0 else None

def make_cache(settings: Settings) -> Cache:
    if settings.CACHE_BACKEND == "redis":
        return RedisCache.from_url(settings.redis_url)
    return MemoryCache()

class ReferenceDataCache:
    """Справочники Dolibarr (склады, способы оплаты, банковские счета)"""

    WAREHOUSES = "warehouses"
    PAYMENT_METHODS = "payment_methods"
    BANK_ACCOUNTS = "bank_accounts"
    KEYS = (WAREHOUSES, PAYMENT_METHODS, BANK_ACCOUNTS)

    def __init__(self, cache: Cache, client: DolibarrClient, ttl: int = 86400, lang: str = "en_US"):
        self.cache = cache
        self.client = client
        self.ttl = ttl
        self.lang = lang

    async def _load(
        self,
        key: str,
        fetch: Callable[[], Awaitable[List[Any]]],
        item_cls: Type,
        force: bool
    ) -> List[Any]:
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return [item_cls(**item) for item in cached]

        items = await fetch()
        self.cache.set(key, [asdict(item) for item in items], self.ttl)
        logger.info(f"Cached {len(items)} {key}")
        return items

    async def get_warehouses(self, force: bool = False) -> List[Warehouse]:
        return await self._load(self.WAREHOUSES, self.client.get_warehouses, Warehouse, force)

    async def get_payment_methods(self, force: bool = False) -> List[PaymentMethod]:
        return await self._load(
            self.PAYMENT_METHODS,
            lambda: self.client.get_payment_methods(self.lang),
            PaymentMethod,
            force
        )

    async def get_bank_accounts(self, force: bool = False) -> List[BankAccount]:
        return await self._load(self.BANK_ACCOUNTS, self.client.get_bank_accounts, BankAccount, force)

    async def refresh(self) -> Dict[str, int]:
        """Перезагрузить все справочники"""
        return {
            self.WAREHOUSES: len(await self.get_warehouses(force=True)),
            self.PAYMENT_METHODS: len(await self.get_payment_methods(force=True)),
            self.BANK_ACCOUNTS: len(await self.get_bank_accounts(force=True)),
        }

    def clear(self) -> None:
        for key in self.KEYS:
            self.cache.delete(key)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        result = {}
        for key in self.KEYS:
            cached = self.cache.get(key)
            result[key] = {
                "cached": cached is not None,
                "count": len(cached) if cached is not None else 0,
                "expires_in": self.cache.ttl(key),
            }
        return result
