import pytest
from unittest.mock import Mock
from app.services.events import (
    EventDispatcher, SyncEvent, SyncEventType, ORDER_CREATED_DELAY, REGISTRATION_DELAY,
)

@pytest.mark.asyncio
async def test_shipping_address_change_is_ignored(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)

    shipping = await dispatcher.dispatch(SyncEvent(
        SyncEventType.CUSTOMER_ADDRESS_SAVED, 1, {"address_type": "shipping"}
    ))
    billing = await dispatcher.dispatch(SyncEvent(
        SyncEventType.CUSTOMER_ADDRESS_SAVED, 1, {"address_type": "billing"}
    ))

    assert shipping["status"] == "skipped"
    assert billing["status"] == "success"
    assert len([c for c in mock_dolibarr.calls if c[:2] == ("POST", "thirdparties")]) == 1

@pytest.mark.asyncio
async def test_registration_and_new_order_are_deferred(context, mock_dolibarr):
    scheduler = Mock()
    dispatcher = EventDispatcher(context, scheduler)

    registered = await dispatcher.dispatch(SyncEvent(SyncEventType.USER_REGISTERED, 1))
    created = await dispatcher.dispatch(SyncEvent(SyncEventType.ORDER_CREATED, 100))

    assert registered["status"] == "scheduled"
    assert created["countdown"] == ORDER_CREATED_DELAY
    assert [call.args for call in scheduler.call_args_list] == [
        ("app.tasks.sync_tasks.sync_single_customer", 1, REGISTRATION_DELAY),
        ("app.tasks.sync_tasks.sync_single_order", 100, ORDER_CREATED_DELAY),
    ]
    assert mock_dolibarr.calls == []

@pytest.mark.asyncio
async def test_without_scheduler_deferred_work_runs_inline(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)

    result = await dispatcher.dispatch(SyncEvent(SyncEventType.ORDER_CREATED, 100))

    assert result["status"] == "success"
    assert context.ledger.get_remote_id("order", 100) == result["dolibarr_id"]

@pytest.mark.asyncio
async def test_status_change_only_for_syncable_statuses(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)

    pending = await dispatcher.dispatch(SyncEvent(
        SyncEventType.ORDER_STATUS_CHANGED, 100, {"new_status": "pending"}
    ))
    processing = await dispatcher.dispatch(SyncEvent(
        SyncEventType.ORDER_STATUS_CHANGED, 100, {"new_status": "processing"}
    ))

    assert pending == {"status": "skipped", "reason": "Status pending is not synced"}
    assert processing["status"] == "success"

@pytest.mark.asyncio
async def test_stock_change_for_unknown_product(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)

    result = await dispatcher.dispatch(SyncEvent(SyncEventType.PRODUCT_STOCK_CHANGED, 999))

    assert result["status"] == "skipped"

@pytest.mark.asyncio
async def test_customer_deleted_forgets_mapping(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)
    context.ledger.set_xref("customer", 1, "success", 501)

    assert (await dispatcher.dispatch(SyncEvent(SyncEventType.CUSTOMER_DELETED, 1)))["status"] == "success"
    assert (await dispatcher.dispatch(SyncEvent(SyncEventType.CUSTOMER_DELETED, 1)))["status"] == "skipped"

@pytest.mark.asyncio
async def test_scheduled_sync_is_gated_by_connection(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)
    context.client.set_credentials(context.client.base_url, "wrong-key")

    result = await dispatcher.dispatch(SyncEvent(SyncEventType.SCHEDULED_CUSTOMER_SYNC))

    assert result == {"status": "skipped", "reason": "Dolibarr connection is not valid"}
    assert context.ledger.query() == []

@pytest.mark.asyncio
async def test_scheduled_customer_sync_runs_one_batch(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)

    result = await dispatcher.dispatch(SyncEvent(SyncEventType.SCHEDULED_CUSTOMER_SYNC))

    assert result["status"] == "completed"
    assert result["total"] == 1
    assert result["synced"] == 1

@pytest.mark.asyncio
async def test_log_cleanup_and_cache_refresh(context, mock_dolibarr):
    dispatcher = EventDispatcher(context)
    context.ledger.append("customer", 1, "success", "ok")

    cleanup = await dispatcher.dispatch(SyncEvent(SyncEventType.LOG_CLEANUP, payload={"days": 30}))
    refresh = await dispatcher.dispatch(SyncEvent(SyncEventType.CACHE_REFRESH))

    assert cleanup == {"status": "completed", "deleted": 0}
    assert refresh["cached"]["warehouses"] == 2
