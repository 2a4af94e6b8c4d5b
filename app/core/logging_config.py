import logging
import logging.handlers
from pathlib import Path
from typing import Optional
from app.core.config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(settings: Optional[Settings] = None) -> None:
    """Настройка логирования приложения (консоль + файл, если задан LOG_FILE)"""
    settings = settings or default_settings

    root = logging.getLogger()
    root.setLevel(settings.LOG_LEVEL.upper())

    # Повторный вызов не должен дублировать обработчики
    for handler in list(root.handlers):
        if getattr(handler, "_dolisync", False):
            root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    stream_handler._dolisync = True
    root.addHandler(stream_handler)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler._dolisync = True
        root.addHandler(file_handler)

    # httpx слишком многословен на INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
