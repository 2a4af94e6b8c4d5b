import importlib
import logging
from dataclasses import dataclass
from typing import Optional
import httpx
from sqlalchemy.orm import sessionmaker
from app.core.config import Settings, settings as default_settings
from app.models.sync import EntityType
from app.services.batch_processor import BatchProcessor
from app.services.cache import Cache, ReferenceDataCache, make_cache
from app.services.connection_monitor import ConnectionHealthMonitor
from app.services.customer_sync import CustomerSync
from app.services.dolibarr_client import DolibarrClient
from app.services.identity import IdentityResolver
from app.services.mappers import MapperHooks
from app.services.order_sync import OrderSync
from app.services.product_sync import ProductSync
from app.services.resources import MemoryGuard
from app.services.storefront import Storefront
from app.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

@dataclass
class AppContext:
    """Все компоненты синхронизации, собранные один раз при старте"""
    settings: Settings
    client: DolibarrClient
    ledger: SyncLedger
    storefront: Storefront
    cache: Cache
    reference_cache: ReferenceDataCache
    monitor: ConnectionHealthMonitor
    resolver: IdentityResolver
    hooks: MapperHooks
    customers: CustomerSync
    products: ProductSync
    orders: OrderSync
    batch: BatchProcessor

    def clear_caches(self) -> None:
        """Сбросить справочники и статус соединения"""
        self.reference_cache.clear()
        self.monitor.clear_cache()

    async def aclose(self) -> None:
        await self.client.disconnect()

def load_storefront(path: str) -> Storefront:
    """Создать адаптер витрины по пути вида "package.module:ClassName" """
    module_name, _, class_name = path.partition(":")
    adapter_cls = getattr(importlib.import_module(module_name), class_name)
    return adapter_cls()

def build_context(
    settings: Optional[Settings] = None,
    storefront: Optional[Storefront] = None,
    session_factory: Optional[sessionmaker] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    cache: Optional[Cache] = None,
    hooks: Optional[MapperHooks] = None,
    memory_guard: Optional[MemoryGuard] = None
) -> AppContext:
    settings = settings or default_settings
    if session_factory is None:
        from app.database import SessionLocal
        session_factory = SessionLocal

    client = DolibarrClient.from_settings(settings, transport=transport)
    ledger = SyncLedger(session_factory)
    storefront = storefront or load_storefront(settings.STOREFRONT_ADAPTER)
    cache = cache or make_cache(settings)
    hooks = hooks or MapperHooks()

    monitor = ConnectionHealthMonitor(client, cache, ledger, ttl=settings.CONNECTION_CACHE_TTL)
    reference_cache = ReferenceDataCache(
        cache, client, ttl=settings.REFERENCE_CACHE_TTL, lang=settings.PAYMENT_METHODS_LANG
    )
    resolver = IdentityResolver(ledger, client)
    guard = memory_guard or MemoryGuard(settings.MEMORY_THRESHOLD_PERCENT, settings.MEMORY_LIMIT_MB)

    common = dict(
        settings=settings, client=client, ledger=ledger, storefront=storefront,
        resolver=resolver, monitor=monitor, hooks=hooks, guard=guard,
    )
    customers = CustomerSync(**common)
    products = ProductSync(**common)
    orders = OrderSync(customers=customers, products=products, **common)

    batch = BatchProcessor({
        EntityType.CUSTOMER: customers.sync,
        EntityType.ORDER: orders.sync,
        EntityType.PRODUCT: products.export_product,
    }, guard)

    return AppContext(
        settings=settings,
        client=client,
        ledger=ledger,
        storefront=storefront,
        cache=cache,
        reference_cache=reference_cache,
        monitor=monitor,
        resolver=resolver,
        hooks=hooks,
        customers=customers,
        products=products,
        orders=orders,
        batch=batch,
    )
