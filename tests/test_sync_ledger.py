from datetime import timedelta
from app.crud.sync_ledger import utcnow
from app.models.sync import SyncLog
from app.services.sync_ledger import INVENTORY_LAST_UPDATE

def test_append_and_query_newest_first(ledger):
    ledger.append("customer", 1, "success", "Customer created successfully.", 501)
    ledger.append("order", 100, "error", "Resource not found.")
    ledger.append("customer", 2, "skipped", "Customer sync disabled or invalid data")

    rows = ledger.query()
    assert [row.wc_id for row in rows] == [2, 100, 1]
    assert rows[2].dolibarr_id == "501"
    assert rows[2].sync_direction == "wc_to_dolibarr"

    customers = ledger.query(sync_type="customer", status="success")
    assert len(customers) == 1
    assert ledger.count(sync_type="customer") == 2

    assert [row.wc_id for row in ledger.query(limit=1, offset=1)] == [100]

def test_update_patches_latest_matching_entry(ledger):
    ledger.append("order", 7, "pending", "Started")

    assert ledger.update("order", 7, remote_id=900, status="success", message="Done")
    assert not ledger.update("order", 8, status="success")

    row = ledger.query(sync_type="order")[0]
    assert (row.dolibarr_id, row.status, row.message) == ("900", "success", "Done")

def test_purge_removes_only_old_entries(ledger, session_factory):
    ledger.append("customer", 1, "success", "new")
    ledger.append("customer", 2, "success", "old")

    db = session_factory()
    old = db.query(SyncLog).filter(SyncLog.wc_id == 2).one()
    old.created_at = utcnow() - timedelta(days=45)
    db.commit()
    db.close()

    assert ledger.purge(30) == 1
    assert [row.wc_id for row in ledger.query()] == [1]
    assert ledger.clear() == 1

def test_xref_is_unique_per_entity_and_keeps_remote_id(ledger):
    ledger.set_xref("customer", 1, "success", 501)
    ledger.set_xref("customer", 1, "error")
    ledger.set_xref("product", 1, "success", 777)

    xref = ledger.get_xref("customer", 1)
    assert xref.remote_id == 501
    assert xref.sync_status == "error"
    assert xref.last_sync_at.tzinfo is not None
    assert ledger.get_remote_id("product", 1) == 777
    assert ledger.find_local_id("product", 777) == 1

    assert ledger.clear_xref("customer", 1)
    assert ledger.get_xref("customer", 1) is None

def test_order_history_replaces_row(ledger):
    ledger.upsert_order_history(100, "error", error_message="Resource not found.")
    ledger.upsert_order_history(100, "success", remote_order_id=900)
    ledger.upsert_order_history(101, "success", remote_order_id=901)

    total, items = ledger.order_history()
    assert total == 2
    row = ledger.get_order_history(100)
    assert row.sync_status == "success"
    assert row.dolibarr_order_id == "900"
    assert row.error_message is None

    total, items = ledger.order_history(search="901")
    assert total == 1
    assert items[0].order_id == 101

def test_dashboard_stats(ledger):
    ledger.upsert_order_history(100, "success", remote_order_id=900)
    ledger.upsert_order_history(101, "error", error_message="boom")
    ledger.append("customer", 1, "success", "ok", 501)
    ledger.append("customer", 2, "error", "boom")
    ledger.set_option(INVENTORY_LAST_UPDATE, "2026-01-01T00:00:00+00:00")

    stats = ledger.dashboard_stats()
    assert stats == {
        "total_orders_synced": 1,
        "total_customers_synced": 1,
        "inventory_last_update": "2026-01-01T00:00:00+00:00",
    }

def test_options_round_trip(ledger):
    assert ledger.get_option("connection_status") is None
    ledger.set_option("connection_status", False)
    assert ledger.get_option("connection_status") is False
    ledger.set_option("connection_status", True)
    assert ledger.get_option("connection_status") is True
