import json
import pytest
from unittest.mock import Mock
from app.services.cache import MemoryCache, RedisCache, ReferenceDataCache

class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

def test_memory_cache_expires_entries():
    clock = FakeClock()
    cache = MemoryCache(clock)
    cache.set("warehouses", [1, 2], 60)

    clock.now += 30
    assert cache.get("warehouses") == [1, 2]
    assert cache.ttl("warehouses") == 30

    clock.now += 30
    assert cache.get("warehouses") is None
    assert cache.ttl("warehouses") is None

def test_redis_cache_stores_json_with_ttl():
    client = Mock()
    cache = RedisCache(client)

    cache.set("connection_status", {"is_valid": True}, 300)
    client.setex.assert_called_once_with("dolisync:connection_status", 300, json.dumps({"is_valid": True}))

    client.get.return_value = '{"is_valid": false}'
    assert cache.get("connection_status") == {"is_valid": False}

    client.ttl.return_value = -2
    assert cache.ttl("connection_status") is None

def test_redis_cache_drops_garbage():
    client = Mock()
    client.get.return_value = "not-json"
    cache = RedisCache(client)

    assert cache.get("warehouses") is None
    client.delete.assert_called_once_with("dolisync:warehouses")

@pytest.mark.asyncio
async def test_reference_data_is_fetched_once(context, mock_dolibarr):
    first = await context.reference_cache.get_warehouses()
    second = await context.reference_cache.get_warehouses()

    assert [w.label for w in first] == ["Main warehouse", "EU warehouse"]
    assert second == first
    assert [c for c in mock_dolibarr.calls if c[1] == "warehouses"] == [("GET", "warehouses", None)]

@pytest.mark.asyncio
async def test_reference_stats_refresh_and_clear(context, mock_dolibarr):
    counts = await context.reference_cache.refresh()
    assert counts == {"warehouses": 2, "payment_methods": 2, "bank_accounts": 1}

    stats = context.reference_cache.stats()
    assert stats["payment_methods"]["cached"] is True
    assert stats["payment_methods"]["count"] == 2
    assert stats["bank_accounts"]["expires_in"] > 0

    accounts = await context.reference_cache.get_bank_accounts()
    assert accounts[0].active is True

    context.reference_cache.clear()
    assert context.reference_cache.stats()["warehouses"] == {"cached": False, "count": 0, "expires_in": None}

@pytest.mark.asyncio
async def test_forced_reload_bypasses_cache():
    client = Mock()
    calls = []

    async def get_warehouses():
        calls.append(1)
        return []

    client.get_warehouses = get_warehouses
    cache = ReferenceDataCache(MemoryCache(), client, ttl=60)

    await cache.get_warehouses()
    await cache.get_warehouses(force=True)

    assert len(calls) == 2
