import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable, List
from app.services.cache import Cache
from app.services.dolibarr_client import DolibarrClient
from app.services.exceptions import DolibarrError
from app.services.sync_ledger import SyncLedger, CONNECTION_STATUS

logger = logging.getLogger(__name__)

TransitionListener = Callable[[bool], None]

class ConnectionHealthMonitor:
    """Проверка доступности Dolibarr.

    is_valid() кэширует результат на ttl секунд и используется как шлюз
    для плановых задач. monitor() всегда делает живую проверку и сообщает
    о смене состояния (соединение потеряно / восстановлено). Последнее
    состояние хранится в integration_options и переживает перезапуск.
    """

    CACHE_KEY = "connection_status"

    def __init__(self, client: DolibarrClient, cache: Cache, ledger: SyncLedger, ttl: int = 300):
        self.client = client
        self.cache = cache
        self.ledger = ledger
        self.ttl = ttl
        self._listeners: List[TransitionListener] = []

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    async def probe(self) -> Dict[str, Any]:
        """Живая проверка соединения без кэша"""
        if not self.client.is_configured():
            return {"success": False, "version": "", "message": "Dolibarr API credentials not configured."}
        try:
            return await self.client.test_connection()
        except DolibarrError as e:
            logger.warning(f"Dolibarr connection check failed: {e}")
            return {"success": False, "version": "", "message": str(e)}

    async def is_valid(self) -> bool:
        cached = self.cache.get(self.CACHE_KEY)
        if cached is not None:
            return bool(cached.get("is_valid"))

        result = await self.probe()
        is_valid = bool(result.get("success"))
        self.cache.set(self.CACHE_KEY, {
            "is_valid": is_valid,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }, self.ttl)
        return is_valid

    def clear_cache(self) -> None:
        self.cache.delete(self.CACHE_KEY)

    async def monitor(self) -> Dict[str, Any]:
        """Свежая проверка и сравнение с последним сохраненным состоянием"""
        self.clear_cache()
        is_valid = await self.is_valid()
        previous: Optional[bool] = self.ledger.get_option(CONNECTION_STATUS)

        changed = previous is not None and bool(previous) != is_valid
        if changed:
            if is_valid:
                logger.info("Dolibarr connection restored.")
            else:
                logger.error("Dolibarr connection lost.")
            for listener in self._listeners:
                try:
                    listener(is_valid)
                except Exception as e:
                    logger.error(f"Connection transition listener failed: {e}")

        self.ledger.set_option(CONNECTION_STATUS, is_valid)
        return {"is_valid": is_valid, "previous": previous, "changed": changed}

    async def status(self) -> Dict[str, Any]:
        """Подробности для панели администратора"""
        if not self.client.is_configured():
            return {
                "has_settings": False,
                "is_valid": False,
                "message": "Dolibarr API credentials not configured.",
                "version": "",
            }

        result = await self.probe()
        is_valid = bool(result.get("success"))
        self.cache.set(self.CACHE_KEY, {
            "is_valid": is_valid,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }, self.ttl)
        return {
            "has_settings": True,
            "is_valid": is_valid,
            "message": result.get("message", ""),
            "version": result.get("version") or "",
        }
