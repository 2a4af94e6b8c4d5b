# app/api/v1/endpoints/dolibarr.py
import enum
import logging
from dataclasses import asdict
from typing import List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from app.api.deps import get_context, require_admin
from app.core.context import AppContext
from app.models.sync import EntityType
from app.schemas.sync import (
    ConnectionStatus, DashboardStats, OrderHistoryPage, OrderSyncHistoryResponse,
    SyncLogResponse,
)
from app.services.exceptions import DolibarrError

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)

class ReferenceKind(str, enum.Enum):
    WAREHOUSES = "warehouses"
    PAYMENT_METHODS = "payment-methods"
    BANK_ACCOUNTS = "bank-accounts"

def _bulk_response(result, label: str) -> dict:
    response = result.to_dict()
    response["message"] = result.error or result.summary(label)
    return response

# Соединение

@router.post("/test-connection")
async def test_connection(context: AppContext = Depends(get_context)):
    """Живая проверка соединения с Dolibarr"""
    context.monitor.clear_cache()
    result = await context.monitor.probe()
    if result.get("success"):
        logger.info(f"Dolibarr connection test succeeded (version {result.get('version')})")
    return result

@router.get("/connection-status", response_model=ConnectionStatus)
async def connection_status(context: AppContext = Depends(get_context)):
    return await context.monitor.status()

# Синхронизация

@router.post("/sync/customers")
async def sync_customers(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    context: AppContext = Depends(get_context)
):
    """Синхронизация всех покупателей"""
    result = await context.customers.sync_all(limit=limit, offset=offset)
    return _bulk_response(result, "Customer")

@router.get("/customers/stats")
async def customer_statistics(context: AppContext = Depends(get_context)):
    return context.customers.statistics()

@router.post("/sync/orders")
async def sync_orders(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    context: AppContext = Depends(get_context)
):
    """Синхронизация заказов в синхронизируемых статусах"""
    result = await context.orders.sync_all(limit=limit, offset=offset)
    return _bulk_response(result, "Order")

@router.post("/sync/products")
async def export_products(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    context: AppContext = Depends(get_context)
):
    """Выгрузка товаров в Dolibarr"""
    result = await context.products.export_all_products(limit=limit, offset=offset)
    return _bulk_response(result, "Product")

@router.post("/import/products")
async def import_products(context: AppContext = Depends(get_context)):
    """Загрузка товаров из Dolibarr"""
    result = await context.products.import_all_products()
    return _bulk_response(result, "Product import")

@router.post("/sync/inventory")
async def export_inventory(context: AppContext = Depends(get_context)):
    """Выгрузка остатков и цен в Dolibarr"""
    result = await context.products.export_inventory()
    return _bulk_response(result, "Inventory export")

@router.post("/import/inventory")
async def import_inventory(context: AppContext = Depends(get_context)):
    """Загрузка остатков из Dolibarr"""
    result = await context.products.import_inventory()
    return _bulk_response(result, "Inventory import")

@router.post("/sync/batch/{entity_type}")
async def sync_batch(
    entity_type: EntityType,
    ids: List[int] = Body(..., min_length=1),
    context: AppContext = Depends(get_context)
):
    """Синхронизация выбранных сущностей частями по BATCH_SIZE"""
    return await context.batch.process(entity_type, ids, batch_size=context.settings.BATCH_SIZE)

# Панель и история заказов

@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(context: AppContext = Depends(get_context)):
    return context.ledger.dashboard_stats()

@router.get("/orders/history", response_model=OrderHistoryPage)
async def order_history(
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    context: AppContext = Depends(get_context)
):
    """История синхронизации заказов с поиском и пагинацией"""
    total, items = context.ledger.order_history(search, limit=per_page, offset=(page - 1) * per_page)
    return OrderHistoryPage(
        total=total,
        items=[OrderSyncHistoryResponse.model_validate(item) for item in items]
    )

@router.post("/orders/{order_id}/resync")
async def resync_order(order_id: int, context: AppContext = Depends(get_context)):
    """Повторная синхронизация заказа без проверки времени изменения"""
    if context.storefront.get_order(order_id) is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return (await context.orders.resync(order_id)).to_dict()

# Журнал

@router.get("/logs", response_model=List[SyncLogResponse])
async def list_logs(
    sync_type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    context: AppContext = Depends(get_context)
):
    return context.ledger.query(sync_type=sync_type, status=status, limit=limit, offset=offset)

@router.delete("/logs")
async def delete_logs(
    older_than_days: Optional[int] = Query(None, ge=0),
    context: AppContext = Depends(get_context)
):
    """Очистка журнала: целиком или только записи старше older_than_days"""
    if older_than_days is None:
        deleted = context.ledger.clear()
    else:
        deleted = context.ledger.purge(older_than_days)
    return {"deleted": deleted}

# Кэш и справочники

@router.post("/cache/clear")
async def clear_cache(context: AppContext = Depends(get_context)):
    context.clear_caches()
    return {"message": "Cache cleared successfully."}

@router.get("/cache/stats")
async def cache_stats(context: AppContext = Depends(get_context)):
    return context.reference_cache.stats()

@router.get("/reference/{kind}")
async def reference_data(
    kind: ReferenceKind,
    refresh: bool = Query(False),
    context: AppContext = Depends(get_context)
):
    """Справочники Dolibarr для настройки значений по умолчанию"""
    loaders = {
        ReferenceKind.WAREHOUSES: context.reference_cache.get_warehouses,
        ReferenceKind.PAYMENT_METHODS: context.reference_cache.get_payment_methods,
        ReferenceKind.BANK_ACCOUNTS: context.reference_cache.get_bank_accounts,
    }
    try:
        items = await loaders[kind](force=refresh)
    except DolibarrError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return [asdict(item) for item in items]
