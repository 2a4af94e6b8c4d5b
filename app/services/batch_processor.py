import logging
from typing import Dict, Any, List, Sequence, Callable, Awaitable, Optional
from app.models.sync import EntityType
from app.schemas.entities import Ref
from app.schemas.sync import SyncResult, ResultStatus
from app.services.resources import MemoryGuard

logger = logging.getLogger(__name__)

SyncFn = Callable[[Ref], Awaitable[SyncResult]]

def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]

class BatchProcessor:
    """Обработка набора сущностей частями с остановкой по памяти.

    После каждой части проверяется потребление памяти; при превышении порога
    обработка прекращается и возвращаются частичные счетчики.
    """

    def __init__(self, handlers: Dict[EntityType, SyncFn], guard: Optional[MemoryGuard] = None):
        self.handlers = handlers
        self.guard = guard

    async def process(self, entity_type: EntityType, items: Sequence[Ref], batch_size: int = 10) -> Dict[str, Any]:
        handler = self.handlers.get(entity_type)
        if handler is None:
            raise ValueError(f"No sync handler for {entity_type}")

        processed = 0
        errors = 0
        stopped = False

        for batch in chunked(list(items), batch_size):
            for item in batch:
                result = await handler(item)
                if result.status != ResultStatus.ERROR:
                    processed += 1
                else:
                    errors += 1

            if self.guard is not None and self.guard.is_too_high():
                logger.warning(
                    f"Batch processing of {entity_type.value} stopped early: "
                    f"{processed + errors} of {len(items)} handled"
                )
                stopped = True
                break

        return {
            "processed": processed,
            "errors": errors,
            "total": len(items),
            "stopped_early": stopped,
        }
