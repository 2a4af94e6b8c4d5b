import logging
from typing import Optional, Dict
from app.models.sync import EntityType, SyncStatus
from app.schemas.entities import LocalOrder, Ref
from app.schemas.sync import SyncResult, SyncAction, BulkSyncResult, ResultStatus
from app.services.customer_sync import CustomerSync
from app.services.exceptions import DolibarrError, ValidationError, DependencyError
from app.services.mappers import map_order, map_guest_customer
from app.services.product_sync import ProductSync
from app.services.storefront import resolve_ref, EntityNotFound
from app.services.sync_base import BaseSync
from app.services.sync_ledger import as_utc

logger = logging.getLogger(__name__)

SKIP_MESSAGE = "Order sync disabled or not eligible"

class OrderSync(BaseSync):
    """Синхронизация заказов.

    Перед созданием заказа в Dolibarr должны существовать его покупатель
    (зарегистрированный или гостевой) и все товары. Если зависимость
    не синхронизировалась, заказ не создается и не обновляется, а ошибка
    зависимости становится ошибкой заказа.
    """

    entity_type = EntityType.ORDER

    def __init__(self, *args, customers: CustomerSync, products: ProductSync, **kwargs):
        super().__init__(*args, **kwargs)
        self.customers = customers
        self.products = products

    def is_eligible(self, order: LocalOrder, force: bool = False) -> bool:
        if not self.settings.SYNC_ORDERS:
            return False
        if order.status in self.settings.EXCLUDED_ORDER_STATUSES:
            return False
        if force:
            return True

        # Не изменялся с последней успешной синхронизации
        xref = self.ledger.get_xref(self.entity_type.value, order.id)
        if xref and xref.sync_status == SyncStatus.SUCCESS.value and xref.last_sync_at and order.date_modified:
            if xref.last_sync_at >= as_utc(order.date_modified):
                return False
        return True

    async def sync(self, ref: Ref, force: bool = False) -> SyncResult:
        """Синхронизировать заказ; force - пропустить проверку по времени изменения"""
        try:
            order = resolve_ref(ref, self.storefront.get_order, LocalOrder)
        except (EntityNotFound, TypeError) as e:
            logger.error(f"Invalid order reference {ref!r}: {e}")
            return SyncResult.error("Invalid order")

        if not self.is_eligible(order, force):
            return self._record_skip(order.id, SKIP_MESSAGE)

        remote_id: Optional[int] = None
        try:
            socid = await self._resolve_customer(order)
            product_ids = await self._resolve_products(order)

            remote_id = await self.resolver.resolve(self.entity_type, order)
            data = map_order(order, self.options, product_ids, self.hooks)
            data["socid"] = socid

            if remote_id:
                # Строки существующего заказа через PUT не меняются
                data.pop("lines", None)
                await self.client.update_order(remote_id, data)
                action = SyncAction.UPDATED
            else:
                remote_id = (await self.client.create_order(data)).id
                action = SyncAction.CREATED

            message = f"Order {action.value} successfully."
            self._record_success(order.id, remote_id, message)
            self.ledger.upsert_order_history(order.id, SyncStatus.SUCCESS.value, remote_id)
            return SyncResult.success(message, remote_id, action)

        except ValidationError as e:
            return self._record_skip(order.id, str(e))
        except DolibarrError as e:
            return self._fail(order, str(e), remote_id)
        except Exception as e:
            logger.exception(f"Unexpected error syncing order {order.id}")
            return self._fail(order, f"Order sync failed: {e}", remote_id)

    async def resync(self, order_id: int) -> SyncResult:
        return await self.sync(order_id, force=True)

    async def sync_all(self, limit: Optional[int] = None, offset: int = 0) -> BulkSyncResult:
        return await self._run_bulk(
            "Order",
            lambda size, start: self.storefront.list_orders(self.settings.SYNCABLE_ORDER_STATUSES, size, start),
            self.sync,
            self.settings.ORDER_SYNC_BATCH,
            limit,
            offset,
        )

    def _fail(self, order: LocalOrder, message: str, remote_id: Optional[int]) -> SyncResult:
        self.ledger.upsert_order_history(order.id, SyncStatus.ERROR.value, remote_id, error_message=message)
        return self._record_error(order.id, message, remote_id)

    async def _resolve_customer(self, order: LocalOrder) -> int:
        """Контрагент заказа: связанный, синхронизированный сейчас или гостевой.

        Удаленная учетная запись и учетная запись без email оформляются
        как гостевые; ошибка синхронизации существующего покупателя
        становится ошибкой заказа.
        """
        if order.customer_id and self.storefront.get_customer(order.customer_id) is not None:
            remote_id = self.ledger.get_remote_id(EntityType.CUSTOMER.value, order.customer_id)
            if remote_id:
                return remote_id

            result = await self.customers.sync(order.customer_id, as_dependency=True)
            if result.ok:
                return result.remote_id
            if result.status == ResultStatus.ERROR:
                raise DependencyError(result.message)

        return await self._resolve_guest(order)

    async def _resolve_guest(self, order: LocalOrder) -> int:
        email = order.billing_email
        if not email:
            raise ValidationError("Order has no billing email")

        remote_id = await self.resolver.resolve_by_email(email)
        if remote_id:
            return remote_id

        try:
            remote_id = (await self.client.create_customer(map_guest_customer(order, hooks=self.hooks))).id
        except DolibarrError as e:
            raise DependencyError(str(e)) from e

        message = f"Guest customer {remote_id} created successfully."
        # Запись под заказом: у гостя нет ID покупателя на витрине
        self.ledger.append(EntityType.ORDER.value, order.id, SyncStatus.SUCCESS.value, message, remote_id)
        self.ledger.upsert_order_history(
            order.id, SyncStatus.SUCCESS.value, sync_type=EntityType.CUSTOMER.value
        )
        return remote_id

    async def _resolve_products(self, order: LocalOrder) -> Dict[int, int]:
        """ID товаров заказа в Dolibarr; отсутствующие выгружаются сразу"""
        product_ids: Dict[int, int] = {}
        for item in order.items:
            if item.product_id is None or item.product_id in product_ids:
                continue

            remote_id = self.ledger.get_remote_id(EntityType.PRODUCT.value, item.product_id)
            if not remote_id:
                if self.storefront.get_product(item.product_id) is None:
                    logger.warning(f"Order {order.id} references missing product {item.product_id}")
                    continue
                result = await self.products.export_product(item.product_id, as_dependency=True)
                if not result.ok:
                    raise DependencyError(result.message)
                remote_id = result.remote_id

            product_ids[item.product_id] = remote_id
        return product_ids
