import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Any, Dict, Iterator
from sqlalchemy.orm import Session, sessionmaker
from app.crud import sync_ledger as crud
from app.models.sync import (
    SyncLog, OrderSyncHistory, EntityXref, SyncStatus, SyncDirection, EntityType,
)

logger = logging.getLogger(__name__)

INVENTORY_LAST_UPDATE = "inventory_last_update"
CONNECTION_STATUS = "connection_status"

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite возвращает naive datetime; все метки в базе хранятся в UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

@dataclass
class Xref:
    entity_type: str
    local_id: int
    remote_id: Optional[int]
    sync_status: str
    last_sync_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: EntityXref) -> "Xref":
        return cls(
            entity_type=row.entity_type,
            local_id=row.local_id,
            remote_id=row.remote_id,
            sync_status=row.sync_status,
            last_sync_at=as_utc(row.last_sync_at),
        )

class SyncLedger:
    """Журнал синхронизации, соответствия ID и история заказов.

    Единственная точка доступа к таблицам sync_log, entity_xref,
    order_sync_history и integration_options. Каждый вызов - своя короткая
    сессия, запись - одна строка.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Журнал

    def append(
        self,
        sync_type: str,
        local_id: int,
        status: str,
        message: str = "",
        remote_id: Optional[Any] = None,
        direction: str = SyncDirection.WC_TO_DOLIBARR.value
    ) -> SyncLog:
        """Добавить запись о попытке синхронизации"""
        with self._session() as db:
            entry = crud.create_sync_log(
                db, sync_type=sync_type, wc_id=local_id, status=status,
                message=message, dolibarr_id=remote_id, sync_direction=direction
            )

        level = logging.ERROR if status == SyncStatus.ERROR.value else logging.INFO
        logger.log(
            level,
            f"[{sync_type.upper()}] {sync_type.capitalize()} ID: {local_id} | "
            f"Dolibarr ID: {remote_id if remote_id is not None else 'N/A'} | "
            f"Status: {status} | {message}"
        )
        return entry

    def update(
        self,
        sync_type: str,
        local_id: int,
        remote_id: Optional[Any] = None,
        status: Optional[str] = None,
        message: Optional[str] = None
    ) -> bool:
        """Дополнить последнюю запись для (sync_type, local_id)"""
        with self._session() as db:
            entry = crud.update_sync_log(
                db, sync_type, local_id, dolibarr_id=remote_id, status=status, message=message
            )
        return entry is not None

    def query(
        self,
        sync_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[SyncLog]:
        with self._session() as db:
            return crud.get_sync_logs(db, sync_type, status, skip=offset, limit=limit)

    def count(self, sync_type: Optional[str] = None, status: Optional[str] = None) -> int:
        with self._session() as db:
            return crud.count_sync_logs(db, sync_type, status)

    def purge(self, older_than_days: int = 30) -> int:
        """Обслуживание: удалить записи старше older_than_days дней"""
        with self._session() as db:
            deleted = crud.delete_old_sync_logs(db, older_than_days)
        logger.info(f"Purged {deleted} sync log entries older than {older_than_days} days")
        return deleted

    def clear(self) -> int:
        with self._session() as db:
            deleted = crud.clear_sync_logs(db)
        logger.info(f"Cleared sync log ({deleted} entries)")
        return deleted

    # Соответствие ID

    def get_xref(self, entity_type: str, local_id: int) -> Optional[Xref]:
        with self._session() as db:
            row = crud.get_xref(db, entity_type, local_id)
            return Xref.from_row(row) if row else None

    def get_remote_id(self, entity_type: str, local_id: int) -> Optional[int]:
        xref = self.get_xref(entity_type, local_id)
        return xref.remote_id if xref else None

    def find_local_id(self, entity_type: str, remote_id: int) -> Optional[int]:
        with self._session() as db:
            row = crud.get_xref_by_remote(db, entity_type, remote_id)
            return row.local_id if row else None

    def set_xref(
        self,
        entity_type: str,
        local_id: int,
        sync_status: str,
        remote_id: Optional[int] = None
    ) -> Xref:
        """Записать результат попытки; remote_id передается только после подтвержденного ответа"""
        with self._session() as db:
            return Xref.from_row(crud.upsert_xref(db, entity_type, local_id, sync_status, remote_id))

    def clear_xref(self, entity_type: str, local_id: int) -> bool:
        with self._session() as db:
            return crud.delete_xref(db, entity_type, local_id)

    def xref_stats(self, entity_type: str) -> Dict[str, Any]:
        with self._session() as db:
            stats = crud.get_xref_stats(db, entity_type)
        stats["last_success"] = as_utc(stats["last_success"])
        return stats

    # История заказов

    def upsert_order_history(
        self,
        order_id: int,
        sync_status: str,
        remote_order_id: Optional[Any] = None,
        error_message: Optional[str] = None,
        sync_type: str = EntityType.ORDER.value,
        remote_invoice_id: Optional[Any] = None
    ) -> OrderSyncHistory:
        with self._session() as db:
            return crud.replace_order_history(
                db, order_id, sync_status, sync_type,
                dolibarr_order_id=remote_order_id,
                dolibarr_invoice_id=remote_invoice_id,
                error_message=error_message
            )

    def get_order_history(self, order_id: int) -> Optional[OrderSyncHistory]:
        with self._session() as db:
            return crud.get_order_history(db, order_id)

    def order_history(self, search: Optional[str] = None, limit: int = 20, offset: int = 0):
        with self._session() as db:
            return crud.search_order_history(db, search, skip=offset, limit=limit)

    # Опции

    def get_option(self, key: str, default: Any = None) -> Any:
        with self._session() as db:
            row = crud.get_option(db, key)
            return row.value if row else default

    def set_option(self, key: str, value: Any) -> None:
        with self._session() as db:
            crud.set_option(db, key, value)

    def delete_option(self, key: str) -> bool:
        with self._session() as db:
            return crud.delete_option(db, key)

    def dashboard_stats(self) -> Dict[str, Any]:
        with self._session() as db:
            inventory_option = crud.get_option(db, INVENTORY_LAST_UPDATE)
            return {
                "total_orders_synced": crud.count_order_history(db, SyncStatus.SUCCESS.value),
                "total_customers_synced": crud.count_sync_logs(
                    db, EntityType.CUSTOMER.value, SyncStatus.SUCCESS.value
                ),
                "inventory_last_update": inventory_option.value if inventory_option else None,
            }
