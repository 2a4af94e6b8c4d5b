import pytest
from unittest.mock import AsyncMock, Mock
from app.models.sync import EntityType
from app.schemas.sync import SyncAction, SyncResult
from app.services.batch_processor import BatchProcessor, chunked
from app.services.resources import MB, MemoryGuard

def test_chunked_keeps_remainder():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 3) == []
    assert chunked([1, 2], 0) == [[1], [2]]

@pytest.mark.asyncio
async def test_process_counts_skips_as_processed():
    results = {
        1: SyncResult.success("ok", 501, SyncAction.UPDATED),
        2: SyncResult.skipped("disabled"),
        3: SyncResult.error("boom"),
    }
    handler = AsyncMock(side_effect=lambda ref: results[ref])
    processor = BatchProcessor({EntityType.CUSTOMER: handler})

    summary = await processor.process(EntityType.CUSTOMER, [1, 2, 3], batch_size=2)

    assert summary == {"processed": 2, "errors": 1, "total": 3, "stopped_early": False}
    assert handler.await_count == 3

@pytest.mark.asyncio
async def test_process_stops_after_chunk_when_memory_is_high():
    handler = AsyncMock(return_value=SyncResult.success("ok", 1, SyncAction.UPDATED))
    guard = Mock()
    guard.is_too_high.return_value = True
    processor = BatchProcessor({EntityType.ORDER: handler}, guard)

    summary = await processor.process(EntityType.ORDER, list(range(10)), batch_size=3)

    assert summary["stopped_early"] is True
    assert summary["processed"] == 3
    assert summary["total"] == 10
    assert handler.await_count == 3

@pytest.mark.asyncio
async def test_unknown_entity_type_is_rejected():
    processor = BatchProcessor({})

    with pytest.raises(ValueError):
        await processor.process(EntityType.PRODUCT, [1])

@pytest.mark.asyncio
async def test_context_processor_drives_orchestrators(context, mock_dolibarr):
    summary = await context.batch.process(EntityType.CUSTOMER, [1, 2])

    # Покупатель без email пропускается, но не считается ошибкой
    assert summary["processed"] == 2
    assert summary["errors"] == 0
    assert context.ledger.get_remote_id("customer", 1) is not None

def test_memory_guard_uses_configured_limit():
    process = Mock()
    process.memory_info.return_value.rss = 450 * MB

    assert MemoryGuard(threshold_percent=80, limit_mb=512, process=process).is_too_high()
    assert not MemoryGuard(threshold_percent=80, limit_mb=1024, process=process).is_too_high()
    assert MemoryGuard(limit_mb=1000, process=process).usage_percent() == pytest.approx(45.0)
