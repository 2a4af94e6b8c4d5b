import logging
from typing import Optional
from app.models.sync import EntityType
from app.schemas.entities import LocalEntity, LocalCustomer
from app.services.dolibarr_client import DolibarrClient
from app.services.exceptions import DolibarrError, ConfigError
from app.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

class IdentityResolver:
    """Поиск ID сущности в Dolibarr.

    Сначала таблица соответствий, для покупателей - поиск по email.
    Ничего не записывает: соответствие сохраняет оркестратор после
    успешной синхронизации.
    """

    def __init__(self, ledger: SyncLedger, client: DolibarrClient):
        self.ledger = ledger
        self.client = client

    async def resolve(self, entity_type: EntityType, entity: LocalEntity) -> Optional[int]:
        remote_id = self.ledger.get_remote_id(entity_type.value, entity.id)
        if remote_id:
            return remote_id

        if entity_type == EntityType.CUSTOMER and isinstance(entity, LocalCustomer):
            return await self.resolve_by_email(entity.email)

        return None

    async def resolve_by_email(self, email: str) -> Optional[int]:
        """ID контрагента по email; ошибка поиска - это "не найден", а не сбой синхронизации"""
        if not email:
            return None
        try:
            customer = await self.client.find_customer_by_email(email)
        except ConfigError:
            raise
        except DolibarrError as e:
            logger.warning(f"Customer lookup by email failed: {e}")
            return None
        return customer.id if customer else None
