"""Прием событий витрины и планировщика.

Адаптер витрины публикует SyncEvent, диспетчер по явной таблице вызывает
нужный обработчик. Отложенные задачи (после регистрации, после создания
заказа) ставятся через переданный планировщик.
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Callable, Awaitable
from app.core.context import AppContext
from app.services.storefront import EntityNotFound

logger = logging.getLogger(__name__)

# Задержки отложенной синхронизации, секунды
REGISTRATION_DELAY = 30
ORDER_CREATED_DELAY = 60

class SyncEventType(str, enum.Enum):
    CUSTOMER_ADDRESS_SAVED = "customer_address_saved"
    CUSTOMER_ACCOUNT_SAVED = "customer_account_saved"
    USER_REGISTERED = "user_registered"
    CUSTOMER_DELETED = "customer_deleted"
    ORDER_CREATED = "order_created"
    ORDER_STATUS_CHANGED = "order_status_changed"
    PRODUCT_STOCK_CHANGED = "product_stock_changed"
    CUSTOMER_SYNC_REQUESTED = "customer_sync_requested"
    ORDER_SYNC_REQUESTED = "order_sync_requested"
    SCHEDULED_CUSTOMER_SYNC = "scheduled_customer_sync"
    SCHEDULED_ORDER_SYNC = "scheduled_order_sync"
    SCHEDULED_INVENTORY_SYNC = "scheduled_inventory_sync"
    SCHEDULED_PRODUCT_SYNC = "scheduled_product_sync"
    CONNECTION_MONITOR = "connection_monitor"
    CACHE_REFRESH = "cache_refresh"
    LOG_CLEANUP = "log_cleanup"

@dataclass
class SyncEvent:
    type: SyncEventType
    entity_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

# (имя задачи, ID сущности, задержка в секундах)
Scheduler = Callable[[str, int, int], None]
Handler = Callable[[SyncEvent], Awaitable[Dict[str, Any]]]

def skipped(reason: str) -> Dict[str, Any]:
    return {"status": "skipped", "reason": reason}

class EventDispatcher:
    """Маршрутизация событий к оркестраторам"""

    def __init__(self, context: AppContext, scheduler: Optional[Scheduler] = None):
        self.context = context
        self.scheduler = scheduler
        self._handlers: Dict[SyncEventType, Handler] = {
            SyncEventType.CUSTOMER_ADDRESS_SAVED: self._on_address_saved,
            SyncEventType.CUSTOMER_ACCOUNT_SAVED: self._on_account_saved,
            SyncEventType.USER_REGISTERED: self._on_user_registered,
            SyncEventType.CUSTOMER_DELETED: self._on_customer_deleted,
            SyncEventType.ORDER_CREATED: self._on_order_created,
            SyncEventType.ORDER_STATUS_CHANGED: self._on_order_status_changed,
            SyncEventType.PRODUCT_STOCK_CHANGED: self._on_stock_changed,
            SyncEventType.CUSTOMER_SYNC_REQUESTED: self._sync_customer,
            SyncEventType.ORDER_SYNC_REQUESTED: self._sync_order,
            SyncEventType.SCHEDULED_CUSTOMER_SYNC: self._scheduled_customers,
            SyncEventType.SCHEDULED_ORDER_SYNC: self._scheduled_orders,
            SyncEventType.SCHEDULED_INVENTORY_SYNC: self._scheduled_inventory,
            SyncEventType.SCHEDULED_PRODUCT_SYNC: self._scheduled_products,
            SyncEventType.CONNECTION_MONITOR: self._monitor_connection,
            SyncEventType.CACHE_REFRESH: self._refresh_cache,
            SyncEventType.LOG_CLEANUP: self._cleanup_logs,
        }

    async def dispatch(self, event: SyncEvent) -> Dict[str, Any]:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise ValueError(f"No handler registered for {event.type}")
        logger.debug(f"Dispatching {event.type.value} (entity {event.entity_id})")
        return await handler(event)

    @property
    def settings(self):
        return self.context.settings

    async def _defer(self, task_name: str, entity_id: int, countdown: int, run_now: Callable[[], Awaitable[Any]]):
        if self.scheduler is None:
            result = await run_now()
            return result.to_dict()
        self.scheduler(task_name, entity_id, countdown)
        return {"status": "scheduled", "task": task_name, "countdown": countdown}

    # События витрины

    async def _on_address_saved(self, event: SyncEvent) -> Dict[str, Any]:
        if event.payload.get("address_type") != "billing":
            return skipped("Only billing address changes are synced")
        return await self._on_account_saved(event)

    async def _on_account_saved(self, event: SyncEvent) -> Dict[str, Any]:
        if not self.settings.SYNC_CUSTOMERS:
            return skipped("Customer sync disabled")
        return (await self.context.customers.sync(event.entity_id)).to_dict()

    async def _on_user_registered(self, event: SyncEvent) -> Dict[str, Any]:
        if not self.settings.SYNC_CUSTOMERS:
            return skipped("Customer sync disabled")
        return await self._defer(
            "app.tasks.sync_tasks.sync_single_customer", event.entity_id, REGISTRATION_DELAY,
            lambda: self.context.customers.sync(event.entity_id)
        )

    async def _on_customer_deleted(self, event: SyncEvent) -> Dict[str, Any]:
        removed = self.context.customers.forget(event.entity_id)
        return {"status": "success" if removed else "skipped"}

    async def _on_order_created(self, event: SyncEvent) -> Dict[str, Any]:
        if not self.settings.SYNC_ORDERS:
            return skipped("Order sync disabled")
        return await self._defer(
            "app.tasks.sync_tasks.sync_single_order", event.entity_id, ORDER_CREATED_DELAY,
            lambda: self.context.orders.sync(event.entity_id)
        )

    async def _on_order_status_changed(self, event: SyncEvent) -> Dict[str, Any]:
        if not self.settings.SYNC_ORDERS:
            return skipped("Order sync disabled")
        new_status = event.payload.get("new_status")
        if new_status not in self.settings.SYNCABLE_ORDER_STATUSES:
            return skipped(f"Status {new_status} is not synced")
        return (await self.context.orders.sync(event.entity_id)).to_dict()

    async def _on_stock_changed(self, event: SyncEvent) -> Dict[str, Any]:
        if not self.settings.SYNC_INVENTORY:
            return skipped("Inventory sync disabled")
        try:
            item = await self.context.products.export_product_inventory(event.entity_id)
        except EntityNotFound:
            return skipped(f"Product {event.entity_id} not found")
        return {
            "status": "success" if item.ok else "error",
            "stock": item.stock,
            "price": item.price,
            "stock_error": item.stock_error,
            "price_error": item.price_error,
        }

    async def _sync_customer(self, event: SyncEvent) -> Dict[str, Any]:
        return (await self.context.customers.sync(event.entity_id)).to_dict()

    async def _sync_order(self, event: SyncEvent) -> Dict[str, Any]:
        return (await self.context.orders.sync(event.entity_id)).to_dict()

    # Плановые задачи

    async def _gated(self, enabled: bool, label: str) -> Optional[Dict[str, Any]]:
        """Причина пропуска плановой задачи или None, если работать можно"""
        if not enabled:
            return skipped(f"{label} sync disabled")
        if not await self.context.monitor.is_valid():
            logger.warning(f"Scheduled {label.lower()} sync skipped: connection is not valid")
            return skipped("Dolibarr connection is not valid")
        return None

    async def _scheduled_customers(self, event: SyncEvent) -> Dict[str, Any]:
        gate = await self._gated(self.settings.SYNC_CUSTOMERS, "Customer")
        if gate:
            return gate
        result = await self.context.customers.sync_all(limit=self.settings.CUSTOMER_SYNC_BATCH)
        return {"status": "completed", **result.to_dict()}

    async def _scheduled_orders(self, event: SyncEvent) -> Dict[str, Any]:
        gate = await self._gated(self.settings.SYNC_ORDERS, "Order")
        if gate:
            return gate
        result = await self.context.orders.sync_all(limit=self.settings.ORDER_SYNC_BATCH)
        return {"status": "completed", **result.to_dict()}

    async def _scheduled_inventory(self, event: SyncEvent) -> Dict[str, Any]:
        gate = await self._gated(self.settings.SYNC_INVENTORY, "Inventory")
        if gate:
            return gate
        result = await self.context.products.import_inventory()
        return {"status": "completed", **result.to_dict()}

    async def _scheduled_products(self, event: SyncEvent) -> Dict[str, Any]:
        gate = await self._gated(self.settings.SYNC_PRODUCTS, "Product")
        if gate:
            return gate
        result = await self.context.products.export_all_products()
        return {"status": "completed", **result.to_dict()}

    async def _monitor_connection(self, event: SyncEvent) -> Dict[str, Any]:
        return {"status": "completed", **await self.context.monitor.monitor()}

    async def _refresh_cache(self, event: SyncEvent) -> Dict[str, Any]:
        gate = await self._gated(True, "Reference data")
        if gate:
            return gate
        return {"status": "completed", "cached": await self.context.reference_cache.refresh()}

    async def _cleanup_logs(self, event: SyncEvent) -> Dict[str, Any]:
        days = event.payload.get("days", self.settings.LOG_RETENTION_DAYS)
        return {"status": "completed", "deleted": self.context.ledger.purge(days)}
