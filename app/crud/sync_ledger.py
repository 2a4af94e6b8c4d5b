# app/crud/sync_ledger.py
from sqlalchemy.orm import Session
from sqlalchemy import or_, cast, String, func
from typing import Optional, List, Tuple, Any, Dict
from datetime import datetime, timedelta, timezone
from app.models.sync import (
    SyncLog, OrderSyncHistory, EntityXref, IntegrationOption,
    SyncStatus, SyncDirection,
)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# Журнал синхронизации

def create_sync_log(
    db: Session,
    sync_type: str,
    wc_id: int,
    status: str,
    message: Optional[str] = None,
    dolibarr_id: Optional[Any] = None,
    sync_direction: str = SyncDirection.WC_TO_DOLIBARR.value
) -> SyncLog:
    """Добавить запись в журнал синхронизации"""
    now = utcnow()
    db_log = SyncLog(
        sync_type=sync_type,
        wc_id=wc_id,
        dolibarr_id=str(dolibarr_id) if dolibarr_id is not None else None,
        status=status,
        message=message,
        sync_direction=sync_direction,
        created_at=now,
        updated_at=now
    )
    db.add(db_log)
    db.commit()
    db.refresh(db_log)
    return db_log

def update_sync_log(
    db: Session,
    sync_type: str,
    wc_id: int,
    dolibarr_id: Optional[Any] = None,
    status: Optional[str] = None,
    message: Optional[str] = None
) -> Optional[SyncLog]:
    """Обновить последнюю запись журнала для (sync_type, wc_id)"""
    db_log = db.query(SyncLog).filter(
        SyncLog.sync_type == sync_type,
        SyncLog.wc_id == wc_id
    ).order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).first()

    if not db_log:
        return None

    if dolibarr_id is not None:
        db_log.dolibarr_id = str(dolibarr_id)
    if status is not None:
        db_log.status = status
    if message is not None:
        db_log.message = message
    db_log.updated_at = utcnow()

    db.commit()
    db.refresh(db_log)
    return db_log

def _filtered_logs(db: Session, sync_type: Optional[str], status: Optional[str]):
    query = db.query(SyncLog)
    if sync_type:
        query = query.filter(SyncLog.sync_type == sync_type)
    if status:
        query = query.filter(SyncLog.status == status)
    return query

def get_sync_logs(
    db: Session,
    sync_type: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100
) -> List[SyncLog]:
    """Получить записи журнала, новые первыми"""
    query = _filtered_logs(db, sync_type, status)
    return query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc()).offset(skip).limit(limit).all()

def count_sync_logs(db: Session, sync_type: Optional[str] = None, status: Optional[str] = None) -> int:
    return _filtered_logs(db, sync_type, status).count()

def delete_old_sync_logs(db: Session, days: int) -> int:
    """Удалить записи старше days дней"""
    cutoff = utcnow() - timedelta(days=days)
    deleted = db.query(SyncLog).filter(SyncLog.created_at < cutoff).delete(synchronize_session=False)
    db.commit()
    return deleted

def clear_sync_logs(db: Session) -> int:
    deleted = db.query(SyncLog).delete(synchronize_session=False)
    db.commit()
    return deleted

# Соответствие ID

def get_xref(db: Session, entity_type: str, local_id: int) -> Optional[EntityXref]:
    return db.query(EntityXref).filter(
        EntityXref.entity_type == entity_type,
        EntityXref.local_id == local_id
    ).first()

def get_xref_by_remote(db: Session, entity_type: str, remote_id: int) -> Optional[EntityXref]:
    return db.query(EntityXref).filter(
        EntityXref.entity_type == entity_type,
        EntityXref.remote_id == remote_id
    ).first()

def upsert_xref(
    db: Session,
    entity_type: str,
    local_id: int,
    sync_status: str,
    remote_id: Optional[int] = None,
    synced_at: Optional[datetime] = None
) -> EntityXref:
    """Создать или обновить соответствие; remote_id не затирается пустым значением"""
    db_xref = get_xref(db, entity_type, local_id)
    if not db_xref:
        db_xref = EntityXref(entity_type=entity_type, local_id=local_id)
        db.add(db_xref)

    if remote_id is not None:
        db_xref.remote_id = remote_id
    db_xref.sync_status = sync_status
    db_xref.last_sync_at = synced_at or utcnow()

    db.commit()
    db.refresh(db_xref)
    return db_xref

def delete_xref(db: Session, entity_type: str, local_id: int) -> bool:
    deleted = db.query(EntityXref).filter(
        EntityXref.entity_type == entity_type,
        EntityXref.local_id == local_id
    ).delete(synchronize_session=False)
    db.commit()
    return deleted > 0

def get_xref_stats(db: Session, entity_type: str) -> Dict[str, Any]:
    """Сводка по соответствиям одного типа сущностей"""
    rows = db.query(EntityXref.sync_status, func.count(EntityXref.id)).filter(
        EntityXref.entity_type == entity_type
    ).group_by(EntityXref.sync_status).all()
    by_status = {status: count for status, count in rows}

    last_success = db.query(func.max(EntityXref.last_sync_at)).filter(
        EntityXref.entity_type == entity_type,
        EntityXref.sync_status == SyncStatus.SUCCESS.value
    ).scalar()

    return {"by_status": by_status, "last_success": last_success}

# История синхронизации заказов

def replace_order_history(
    db: Session,
    order_id: int,
    sync_status: str,
    sync_type: str,
    dolibarr_order_id: Optional[Any] = None,
    dolibarr_invoice_id: Optional[Any] = None,
    error_message: Optional[str] = None
) -> OrderSyncHistory:
    """Заменить строку истории заказа целиком (REPLACE по order_id)"""
    db.query(OrderSyncHistory).filter(
        OrderSyncHistory.order_id == order_id
    ).delete(synchronize_session=False)

    now = utcnow()
    db_history = OrderSyncHistory(
        order_id=order_id,
        dolibarr_order_id=str(dolibarr_order_id) if dolibarr_order_id is not None else None,
        dolibarr_invoice_id=str(dolibarr_invoice_id) if dolibarr_invoice_id is not None else None,
        sync_status=sync_status,
        sync_type=sync_type,
        error_message=error_message,
        last_sync_at=now,
        created_at=now
    )
    db.add(db_history)
    db.commit()
    db.refresh(db_history)
    return db_history

def get_order_history(db: Session, order_id: int) -> Optional[OrderSyncHistory]:
    return db.query(OrderSyncHistory).filter(OrderSyncHistory.order_id == order_id).first()

def search_order_history(
    db: Session,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 20
) -> Tuple[int, List[OrderSyncHistory]]:
    """Поиск по ID заказа или ID заказа в Dolibarr, новые первыми"""
    query = db.query(OrderSyncHistory)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            cast(OrderSyncHistory.order_id, String).like(pattern),
            OrderSyncHistory.dolibarr_order_id.like(pattern)
        ))

    total = query.count()
    items = query.order_by(
        OrderSyncHistory.last_sync_at.desc(), OrderSyncHistory.id.desc()
    ).offset(skip).limit(limit).all()
    return total, items

def count_order_history(db: Session, sync_status: Optional[str] = None) -> int:
    query = db.query(OrderSyncHistory)
    if sync_status:
        query = query.filter(OrderSyncHistory.sync_status == sync_status)
    return query.count()

# Опции интеграции

def get_option(db: Session, key: str) -> Optional[IntegrationOption]:
    return db.query(IntegrationOption).filter(IntegrationOption.key == key).first()

def set_option(db: Session, key: str, value: Any) -> IntegrationOption:
    db_option = get_option(db, key)
    if not db_option:
        db_option = IntegrationOption(key=key)
        db.add(db_option)
    db_option.value = value
    db_option.updated_at = utcnow()
    db.commit()
    db.refresh(db_option)
    return db_option

def delete_option(db: Session, key: str) -> bool:
    deleted = db.query(IntegrationOption).filter(IntegrationOption.key == key).delete(synchronize_session=False)
    db.commit()
    return deleted > 0
