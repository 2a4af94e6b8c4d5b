from typing import Optional, List, Literal
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl
import secrets

class Settings(BaseSettings):
    PROJECT_NAME: str = "Dolisync API"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Безопасность
    SECRET_KEY: str = secrets.token_urlsafe(32)
    ALGORITHM: str = "HS256"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # База данных
    DATABASE_URL: str = "sqlite:///./dolisync.db"

    # Redis для Celery и кэша
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_URL: Optional[str] = None

    # Подключение к Dolibarr
    DOLIBARR_URL: str = ""
    DOLIBARR_API_KEY: str = ""
    DOLIBARR_API_KEY_HEADER: str = "DOLAPIKEY"
    DOLIBARR_SSL_VERIFY: bool = True
    DOLIBARR_TIMEOUT: int = 30
    DOLIBARR_MAX_RETRIES: int = 3
    DEBUG_MODE: bool = False

    # Что синхронизируем
    SYNC_CUSTOMERS: bool = False
    SYNC_ORDERS: bool = False
    SYNC_PRODUCTS: bool = False
    SYNC_INVENTORY: bool = False
    ENABLE_TAX_SYNC: bool = False

    # Значения по умолчанию в Dolibarr
    DEFAULT_WAREHOUSE_ID: Optional[int] = None
    DEFAULT_PAYMENT_METHOD_ID: Optional[int] = None
    DEFAULT_BANK_ACCOUNT_ID: Optional[int] = None
    PAYMENT_METHODS_LANG: str = "en_US"

    # Адаптер витрины: "модуль:Класс"
    STOREFRONT_ADAPTER: str = "app.services.storefront:InMemoryStorefront"

    # Заказы
    SYNCABLE_ORDER_STATUSES: List[str] = ["processing", "completed", "on-hold"]
    EXCLUDED_ORDER_STATUSES: List[str] = ["failed", "cancelled", "refunded"]

    # Настройки синхронизации
    INVENTORY_SYNC_INTERVAL: Literal["hourly", "twicedaily", "daily"] = "hourly"
    CUSTOMER_SYNC_BATCH: int = 50
    ORDER_SYNC_BATCH: int = 25
    LOG_RETENTION_DAYS: int = 30

    # Кэш и проверка соединения
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    CONNECTION_CACHE_TTL: int = 300         # 5 минут
    REFERENCE_CACHE_TTL: int = 86400        # сутки

    # Пакетная обработка
    BATCH_SIZE: int = 10
    MEMORY_THRESHOLD_PERCENT: int = 80
    MEMORY_LIMIT_MB: int = 512  # 0 - вся память системы

    # Celery
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    CELERY_ACCEPT_CONTENT: List[str] = ["json"]
    CELERY_TIMEZONE: str = "UTC"
    CELERY_ENABLE_UTC: bool = True

    # Настройки логирования
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    @property
    def redis_url(self) -> str:
        if self.REDIS_URL:
            return self.REDIS_URL
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def celery_broker_url(self) -> str:
        return self.CELERY_BROKER_URL or f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    @property
    def celery_result_backend(self) -> str:
        return self.CELERY_RESULT_BACKEND or f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/1"

    @property
    def is_configured(self) -> bool:
        """Заданы ли адрес и ключ API Dolibarr"""
        return bool(self.DOLIBARR_URL) and bool(self.DOLIBARR_API_KEY)

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore"

settings = Settings()
