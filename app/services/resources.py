import logging
from typing import Optional
import psutil

logger = logging.getLogger(__name__)

MB = 1024 * 1024

class MemoryGuard:
    """Проверка потребления памяти процессом для пакетной обработки.

    Процент считается от MEMORY_LIMIT_MB, а если лимит 0 - от всей памяти
    системы.
    """

    def __init__(self, threshold_percent: int = 80, limit_mb: int = 512, process: Optional[psutil.Process] = None):
        self.threshold_percent = threshold_percent
        self.limit_mb = limit_mb
        self._process = process or psutil.Process()

    def _limit_bytes(self) -> int:
        if self.limit_mb > 0:
            return self.limit_mb * MB
        return psutil.virtual_memory().total

    def usage_percent(self) -> float:
        rss = self._process.memory_info().rss
        return rss / self._limit_bytes() * 100

    def is_too_high(self) -> bool:
        usage = self.usage_percent()
        if usage >= self.threshold_percent:
            logger.warning(f"Memory usage {usage:.1f}% reached threshold {self.threshold_percent}%")
            return True
        return False
