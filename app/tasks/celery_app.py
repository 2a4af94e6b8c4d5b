from celery import Celery
from celery.schedules import crontab
from app.core.config import Settings, settings

# Периодичность импорта остатков
INVENTORY_SCHEDULES = {
    "hourly": crontab(minute=0),
    "twicedaily": crontab(minute=0, hour="*/12"),
    "daily": crontab(minute=0, hour=0),
}

def build_beat_schedule(config: Settings) -> dict:
    return {
        # Остатки из Dolibarr с настраиваемой периодичностью
        'import-inventory': {
            'task': 'app.tasks.sync_tasks.scheduled_inventory_sync',
            'schedule': INVENTORY_SCHEDULES[config.INVENTORY_SYNC_INTERVAL],
            'options': {'queue': 'sync'}
        },

        # Выгрузка товаров раз в сутки
        'export-products-daily': {
            'task': 'app.tasks.sync_tasks.scheduled_product_sync',
            'schedule': crontab(minute=30, hour=1),
            'options': {'queue': 'sync'}
        },

        # Покупатели и заказы каждый час
        'sync-customers-hourly': {
            'task': 'app.tasks.sync_tasks.scheduled_customer_sync',
            'schedule': crontab(minute=10),
            'options': {'queue': 'sync'}
        },
        'sync-orders-hourly': {
            'task': 'app.tasks.sync_tasks.scheduled_order_sync',
            'schedule': crontab(minute=20),
            'options': {'queue': 'sync'}
        },

        # Проверка соединения каждый час
        'monitor-connection': {
            'task': 'app.tasks.sync_tasks.monitor_connection',
            'schedule': crontab(minute=0),
            'options': {'queue': 'monitoring'}
        },

        # Справочники раз в сутки в 4:00
        'refresh-reference-cache': {
            'task': 'app.tasks.sync_tasks.refresh_reference_cache',
            'schedule': crontab(minute=0, hour=4),
            'options': {'queue': 'maintenance'}
        },

        # Очистка журнала каждый день в 2:00
        'cleanup-old-logs': {
            'task': 'app.tasks.sync_tasks.cleanup_old_logs',
            'schedule': crontab(minute=0, hour=2),
            'args': (config.LOG_RETENTION_DAYS,),
            'options': {'queue': 'maintenance'}
        },
    }

def make_celery(config: Settings = settings):
    """Создание и настройка Celery приложения"""

    celery_app = Celery(
        "dolisync",
        broker=config.celery_broker_url,
        backend=config.celery_result_backend,
        include=["app.tasks.sync_tasks"]
    )

    celery_app.conf.update(
        task_serializer=config.CELERY_TASK_SERIALIZER,
        result_serializer=config.CELERY_RESULT_SERIALIZER,
        accept_content=config.CELERY_ACCEPT_CONTENT,
        timezone=config.CELERY_TIMEZONE,
        enable_utc=config.CELERY_ENABLE_UTC,

        # Настройки задач
        task_track_started=True,
        task_time_limit=30 * 60,  # 30 минут
        task_soft_time_limit=25 * 60,  # 25 минут

        # Настройки брокера
        broker_connection_retry_on_startup=True,
        broker_connection_max_retries=10,

        # Результаты
        result_expires=3600,  # 1 час

        beat_schedule=build_beat_schedule(config),

        # Очереди
        task_routes={
            'app.tasks.sync_tasks.monitor_connection': {'queue': 'monitoring'},
            'app.tasks.sync_tasks.refresh_reference_cache': {'queue': 'maintenance'},
            'app.tasks.sync_tasks.cleanup_old_logs': {'queue': 'maintenance'},
            'app.tasks.sync_tasks.*': {'queue': 'sync'},
        },

        # Одна синхронизация за раз на воркер
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=1000,
        worker_concurrency=1
    )

    return celery_app

# Создаем экземпляр Celery
celery_app = make_celery()
