import logging
import pytest
from app.services.sync_ledger import CONNECTION_STATUS

def _status_calls(mock):
    return [c for c in mock.calls if c[1] == "status"]

@pytest.mark.asyncio
async def test_is_valid_is_cached(context, mock_dolibarr):
    assert await context.monitor.is_valid()
    assert await context.monitor.is_valid()

    assert len(_status_calls(mock_dolibarr)) == 1

    context.monitor.clear_cache()
    assert await context.monitor.is_valid()
    assert len(_status_calls(mock_dolibarr)) == 2

@pytest.mark.asyncio
async def test_first_check_is_not_a_transition(context, mock_dolibarr):
    result = await context.monitor.monitor()

    assert result == {"is_valid": True, "previous": None, "changed": False}
    assert context.ledger.get_option(CONNECTION_STATUS) is True

@pytest.mark.asyncio
async def test_loss_and_recovery_are_reported(context, mock_dolibarr, caplog):
    seen = []
    context.monitor.add_listener(seen.append)
    await context.monitor.monitor()
    good_key = context.client.api_key

    context.client.set_credentials(context.client.base_url, "wrong-key")
    with caplog.at_level(logging.INFO):
        lost = await context.monitor.monitor()
    assert lost["changed"] is True
    assert lost["is_valid"] is False
    assert "Dolibarr connection lost." in caplog.text

    context.client.set_credentials(context.client.base_url, good_key)
    with caplog.at_level(logging.INFO):
        restored = await context.monitor.monitor()
    assert restored == {"is_valid": True, "previous": False, "changed": True}
    assert "Dolibarr connection restored." in caplog.text

    assert seen == [False, True]

@pytest.mark.asyncio
async def test_unchanged_state_does_not_notify(context, mock_dolibarr):
    seen = []
    context.monitor.add_listener(seen.append)

    await context.monitor.monitor()
    again = await context.monitor.monitor()

    assert again["changed"] is False
    assert seen == []

@pytest.mark.asyncio
async def test_status_reports_version(context, mock_dolibarr):
    status = await context.monitor.status()

    assert status["has_settings"] is True
    assert status["is_valid"] is True
    assert status["version"]

@pytest.mark.asyncio
async def test_status_without_credentials(context, mock_dolibarr):
    context.client.set_credentials("", "")

    status = await context.monitor.status()

    assert status == {
        "has_settings": False,
        "is_valid": False,
        "message": "Dolibarr API credentials not configured.",
        "version": "",
    }
    assert mock_dolibarr.calls == []
