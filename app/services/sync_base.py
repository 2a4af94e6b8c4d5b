import logging
from typing import Optional, Callable, List, Any, Awaitable
from app.core.config import Settings
from app.models.sync import EntityType, SyncStatus, SyncDirection
from app.schemas.sync import SyncResult, BulkSyncResult
from app.services.connection_monitor import ConnectionHealthMonitor
from app.services.dolibarr_client import DolibarrClient
from app.services.identity import IdentityResolver
from app.services.mappers import MapperHooks, MapperOptions
from app.services.resources import MemoryGuard
from app.services.storefront import Storefront
from app.services.sync_ledger import SyncLedger

logger = logging.getLogger(__name__)

CONNECTION_NOT_VALID = "Dolibarr connection is not valid."

class BaseSync:
    """Общая часть оркестраторов: запись результата и обход пакетов"""

    entity_type: EntityType

    def __init__(
        self,
        settings: Settings,
        client: DolibarrClient,
        ledger: SyncLedger,
        storefront: Storefront,
        resolver: IdentityResolver,
        monitor: Optional[ConnectionHealthMonitor] = None,
        hooks: Optional[MapperHooks] = None,
        guard: Optional[MemoryGuard] = None
    ):
        self.settings = settings
        self.client = client
        self.ledger = ledger
        self.storefront = storefront
        self.resolver = resolver
        self.monitor = monitor
        self.hooks = hooks or MapperHooks()
        self.guard = guard
        self.options = MapperOptions.from_settings(settings)

    def _record_success(
        self,
        local_id: int,
        remote_id: int,
        message: str,
        direction: str = SyncDirection.WC_TO_DOLIBARR.value
    ) -> None:
        self.ledger.set_xref(self.entity_type.value, local_id, SyncStatus.SUCCESS.value, remote_id)
        self.ledger.append(self.entity_type.value, local_id, SyncStatus.SUCCESS.value, message, remote_id, direction)

    def _record_skip(self, local_id: int, message: str) -> SyncResult:
        self.ledger.append(self.entity_type.value, local_id, SyncStatus.SKIPPED.value, message)
        return SyncResult.skipped(message)

    def _record_error(self, local_id: int, message: str, remote_id: Optional[int] = None) -> SyncResult:
        """Ошибка не создает соответствие: у существующего меняется только статус"""
        if self.ledger.get_xref(self.entity_type.value, local_id) is not None:
            self.ledger.set_xref(self.entity_type.value, local_id, SyncStatus.ERROR.value)
        self.ledger.append(self.entity_type.value, local_id, SyncStatus.ERROR.value, message, remote_id)
        return SyncResult.error(message, remote_id)

    async def _connection_ok(self) -> bool:
        if not self.client.is_configured():
            return False
        if self.monitor is None:
            return True
        return await self.monitor.is_valid()

    def _memory_exhausted(self, label: str, result: BulkSyncResult) -> bool:
        """Проверка памяти между страницами; при превышении порога пакет останавливается"""
        if self.guard is None or not self.guard.is_too_high():
            return False
        result.stopped_early = True
        logger.warning(f"{label} sync stopped early after {result.total} items: memory usage too high")
        return True

    def _checkpoint(self, label: str, result: BulkSyncResult, seen: int) -> bool:
        """Для потоковых обходов: проверка памяти на границе каждых BATCH_SIZE элементов"""
        batch_size = max(1, self.settings.BATCH_SIZE)
        return bool(seen) and seen % batch_size == 0 and self._memory_exhausted(label, result)

    async def _run_bulk(
        self,
        label: str,
        fetch_page: Callable[[int, int], List[Any]],
        sync_one: Callable[[Any], Awaitable[SyncResult]],
        page_size: int,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> BulkSyncResult:
        """Пакетная синхронизация: ошибка одного элемента не прерывает пакет.

        С limit обрабатывается одна страница, без него - все страницы.
        Перед следующей страницей проверяется память: при превышении порога
        возвращаются частичные счетчики и stopped_early.
        """
        result = BulkSyncResult()
        if not await self._connection_ok():
            result.error = CONNECTION_NOT_VALID
            logger.error(f"{label} sync aborted: {CONNECTION_NOT_VALID}")
            return result

        while True:
            size = limit if limit is not None else page_size
            items = fetch_page(size, offset)
            for item in items:
                result.total += 1
                result.add(item.id, await sync_one(item))
            if limit is not None or not items or len(items) < size:
                break
            if self._memory_exhausted(label, result):
                break
            offset += size

        logger.info(result.summary(label))
        return result
