from typing import Optional, Any

class DolibarrError(Exception):
    """Базовое исключение интеграции с Dolibarr"""
    pass

class ConfigError(DolibarrError):
    """Не заданы адрес или ключ API"""
    pass

class TransportError(DolibarrError):
    """Сетевая ошибка при обращении к Dolibarr"""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)

class ApiError(DolibarrError):
    """Dolibarr отклонил запрос (HTTP >= 400)"""
    def __init__(self, status: int, message: str, payload: Optional[Any] = None):
        self.status = status
        self.message = message
        self.payload = payload
        super().__init__(message)

class DecodeError(DolibarrError):
    """Некорректный (не JSON) ответ Dolibarr"""
    pass

class ValidationError(DolibarrError):
    """У локальной сущности нет обязательных данных - синхронизация пропускается"""
    pass

class SyncError(DolibarrError):
    """Непредвиденная ошибка во время синхронизации"""
    pass

class DependencyError(SyncError):
    """Не удалось синхронизировать зависимость заказа (покупателя или товар)"""
    pass
