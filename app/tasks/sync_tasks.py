import asyncio
import logging
from typing import Dict, Any
from uuid import uuid4
from celery import current_task
from app.core.context import build_context
from app.services.events import EventDispatcher, SyncEvent, SyncEventType
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

def _schedule(task_name: str, entity_id: int, countdown: int) -> None:
    """Отложенный запуск задачи синхронизации одной сущности"""
    celery_app.send_task(task_name, args=(entity_id,), countdown=countdown)
    logger.info(f"Scheduled {task_name}({entity_id}) in {countdown}s")

async def _dispatch(event: SyncEvent) -> Dict[str, Any]:
    context = build_context()
    try:
        return await EventDispatcher(context, scheduler=_schedule).dispatch(event)
    finally:
        await context.aclose()

def _run(task, event: SyncEvent) -> Dict[str, Any]:
    task_id = current_task.request.id if current_task else str(uuid4())
    logger.info(f"Starting {event.type.value} task {task_id}")
    try:
        result = asyncio.run(_dispatch(event))
    except Exception as e:
        logger.error(f"Error in {event.type.value} task {task_id}: {e}")

        # Повторная попытка
        if task is not None and task.request.retries < task.max_retries:
            raise task.retry(exc=e, countdown=60)
        return {"status": "failed", "error": str(e)}

    logger.info(f"{event.type.value} task {task_id} finished: {result.get('status')}")
    return result

@celery_app.task(bind=True, max_retries=3)
def sync_single_customer(self, customer_id: int):
    """Синхронизация одного покупателя (отложенная после регистрации)"""
    return _run(self, SyncEvent(SyncEventType.CUSTOMER_SYNC_REQUESTED, customer_id))

@celery_app.task(bind=True, max_retries=3)
def sync_single_order(self, order_id: int):
    """Синхронизация одного заказа (отложенная после создания)"""
    return _run(self, SyncEvent(SyncEventType.ORDER_SYNC_REQUESTED, order_id))

@celery_app.task(bind=True, max_retries=3)
def scheduled_customer_sync(self):
    return _run(self, SyncEvent(SyncEventType.SCHEDULED_CUSTOMER_SYNC))

@celery_app.task(bind=True, max_retries=3)
def scheduled_order_sync(self):
    return _run(self, SyncEvent(SyncEventType.SCHEDULED_ORDER_SYNC))

@celery_app.task(bind=True, max_retries=3)
def scheduled_inventory_sync(self):
    return _run(self, SyncEvent(SyncEventType.SCHEDULED_INVENTORY_SYNC))

@celery_app.task(bind=True, max_retries=3)
def scheduled_product_sync(self):
    return _run(self, SyncEvent(SyncEventType.SCHEDULED_PRODUCT_SYNC))

@celery_app.task
def monitor_connection():
    """Проверка соединения с Dolibarr и оповещение о смене состояния"""
    return _run(None, SyncEvent(SyncEventType.CONNECTION_MONITOR))

@celery_app.task
def refresh_reference_cache():
    return _run(None, SyncEvent(SyncEventType.CACHE_REFRESH))

@celery_app.task
def cleanup_old_logs(days: int = 30):
    """Удаление записей журнала старше days дней"""
    return _run(None, SyncEvent(SyncEventType.LOG_CLEANUP, payload={"days": days}))
