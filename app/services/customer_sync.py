import logging
from typing import Optional, Dict, Any
from app.models.sync import EntityType, SyncStatus
from app.schemas.entities import LocalCustomer, Ref
from app.schemas.sync import SyncResult, SyncAction, BulkSyncResult
from app.services.exceptions import DolibarrError, ValidationError
from app.services.mappers import map_customer
from app.services.storefront import resolve_ref, EntityNotFound
from app.services.sync_base import BaseSync

logger = logging.getLogger(__name__)

SKIP_MESSAGE = "Customer sync disabled or invalid data"

class CustomerSync(BaseSync):
    """Синхронизация покупателей витрины с контрагентами Dolibarr"""

    entity_type = EntityType.CUSTOMER

    def validate(self, customer: LocalCustomer, as_dependency: bool = False) -> None:
        if not as_dependency and not self.settings.SYNC_CUSTOMERS:
            raise ValidationError(SKIP_MESSAGE)
        if not customer.email:
            raise ValidationError(SKIP_MESSAGE)

    async def sync(self, ref: Ref, as_dependency: bool = False) -> SyncResult:
        """Создать или обновить контрагента для покупателя.

        as_dependency - вызов из синхронизации заказа: переключатель
        SYNC_CUSTOMERS не учитывается, покупатель нужен заказу.
        """
        try:
            customer = resolve_ref(ref, self.storefront.get_customer, LocalCustomer)
        except (EntityNotFound, TypeError) as e:
            logger.error(f"Invalid customer reference {ref!r}: {e}")
            return SyncResult.error("Invalid customer")

        try:
            self.validate(customer, as_dependency)
        except ValidationError as e:
            return self._record_skip(customer.id, str(e))

        remote_id: Optional[int] = None
        try:
            remote_id = await self.resolver.resolve(self.entity_type, customer)
            data = map_customer(customer, hooks=self.hooks)

            if remote_id:
                # Код клиента генерируется только при создании
                data.pop("code_client", None)
                await self.client.update_customer(remote_id, data)
                action = SyncAction.UPDATED
            else:
                remote_id = (await self.client.create_customer(data)).id
                action = SyncAction.CREATED

            message = f"Customer {action.value} successfully."
            self._record_success(customer.id, remote_id, message)
            return SyncResult.success(message, remote_id, action)

        except ValidationError as e:
            return self._record_skip(customer.id, str(e))
        except DolibarrError as e:
            return self._record_error(customer.id, str(e), remote_id)
        except Exception as e:
            logger.exception(f"Unexpected error syncing customer {customer.id}")
            return self._record_error(customer.id, f"Customer sync failed: {e}", remote_id)

    async def sync_all(self, limit: Optional[int] = None, offset: int = 0) -> BulkSyncResult:
        return await self._run_bulk(
            "Customer",
            lambda size, start: self.storefront.list_customers(size, start),
            self.sync,
            self.settings.CUSTOMER_SYNC_BATCH,
            limit,
            offset,
        )

    def forget(self, customer_id: int) -> bool:
        """Покупатель удален на витрине: убрать соответствие, контрагент в Dolibarr не трогаем"""
        removed = self.ledger.clear_xref(self.entity_type.value, customer_id)
        if removed:
            logger.info(f"Cleared Dolibarr reference for deleted customer {customer_id}")
        return removed

    def statistics(self) -> Dict[str, Any]:
        stats = self.ledger.xref_stats(self.entity_type.value)
        total = self.storefront.count_customers()
        synced = stats["by_status"].get(SyncStatus.SUCCESS.value, 0)
        last_success = stats["last_success"]
        return {
            "total": total,
            "synced": synced,
            "pending": max(total - synced, 0),
            "errors": stats["by_status"].get(SyncStatus.ERROR.value, 0),
            "last_sync": last_success.isoformat() if last_success else None,
        }
