from datetime import datetime, timedelta, timezone

import pytest

from services.db import DocumentStore
from services.inventory_processor import process_items
from services.inventory_reconciler import CURRENT_ITEMS_COLLECTION
from services.inventory_store import (
    METADATA_DOC,
    SNAPSHOTS_DOC,
    InventoryWriteError,
    InventoryWriter,
    empty_current_data,
    format_timestamp_for_id,
)

RUN_1 = datetime(2025, 6, 20, 9, 0, 0, tzinfo=timezone.utc)
RUN_2 = RUN_1 + timedelta(days=1)


def _writer(tmp_path, **kwargs):
    store = DocumentStore(tmp_path / "docs.db")
    kwargs.setdefault("chunk_delay_seconds", 0)
    return InventoryWriter(store, **kwargs), store


def _processed(raw, when=RUN_1):
    return process_items(raw, when)


RAW_RUN_1 = [
    {"id": "A", "name": "Alpha", "category": "Tools", "onhand": 5, "available": 5, "costBasis": 50},
    {"id": "B", "name": "Beta", "category": "Parts", "onhand": 3, "available": 0, "costBasis": 0},
    {"id": "C", "name": "Gamma", "onhand": -1, "available": -1, "costBasis": 10},
]


def test_format_timestamp_for_id():
    assert format_timestamp_for_id("2025-06-20T13:05:09.123Z") == "2025-06-20T13-05-09"
    assert format_timestamp_for_id(datetime(2025, 6, 20, 13, 5, 9)) == "2025-06-20T13-05-09"
    ny = timezone(timedelta(hours=-4))
    assert format_timestamp_for_id(datetime(2025, 6, 20, 9, 5, 9, tzinfo=ny)) == "2025-06-20T13-05-09"


def test_write_then_read_current(tmp_path):
    writer, store = _writer(tmp_path)

    result = writer.write_snapshot(_processed(RAW_RUN_1))

    assert result["success"] is True
    assert result["item_count"] == 3
    assert result["snapshot_id"] == "2025-06-20T09-00-00"
    assert result["batch_count"] == 1
    assert result["timestamp"] == RUN_1.isoformat()

    current = writer.read_current()
    assert sorted(item["id"] for item in current["items"]) == ["A", "B", "C"]
    summary = current["summary"]
    assert summary["total_items"] == 3
    assert summary["total_value"] == 60
    assert summary["categories"] == ["Parts", "Tools", "Uncategorized"]
    assert summary["out_of_stock_items"] == 2
    assert summary["low_stock_items"] == 1
    assert summary["negative_stock_items"] == 1
    assert summary["items_with_issues"] == 2
    assert current["last_updated"] == RUN_1.isoformat()

    snapshot_item = store.get("inventory/snapshots/2025-06-20T09-00-00/items/data/A")
    assert snapshot_item["qty_on_hand"] == 5
    assert snapshot_item["item_status"] == "active"
    assert store.get("inventory/snapshots/2025-06-20T09-00-00/items")["item_count"] == 3
    assert store.get(SNAPSHOTS_DOC)["total_snapshots"] == 1
    assert store.get(METADATA_DOC)["total_item_count"] == 3


def test_items_missing_from_next_run_are_archived_and_hidden(tmp_path):
    writer, store = _writer(tmp_path)
    writer.write_snapshot(_processed(RAW_RUN_1))

    result = writer.write_snapshot(_processed(RAW_RUN_1[:1], RUN_2))

    assert result["archived_count"] == 2
    assert [item["id"] for item in writer.read_current()["items"]] == ["A"]
    archived = store.get(f"{CURRENT_ITEMS_COLLECTION}/B")
    assert archived["item_status"] == "archived"
    assert archived["archived_at"] == RUN_2.isoformat()
    assert store.get(SNAPSHOTS_DOC)["total_snapshots"] == 2
    # snapshots are immutable
    assert store.get("inventory/snapshots/2025-06-20T09-00-00/items/data/B")["item_status"] == "active"


def test_archived_item_is_resurrected_when_it_returns(tmp_path):
    writer, store = _writer(tmp_path)
    writer.write_snapshot(_processed(RAW_RUN_1))
    writer.write_snapshot(_processed(RAW_RUN_1[:1], RUN_2))

    writer.write_snapshot(_processed(RAW_RUN_1, RUN_2 + timedelta(days=1)))

    doc = store.get(f"{CURRENT_ITEMS_COLLECTION}/B")
    assert doc["item_status"] == "active"
    assert "archived_at" not in doc
    assert len(writer.read_current()["items"]) == 3


def test_same_second_snapshot_is_rejected(tmp_path):
    writer, _ = _writer(tmp_path)
    writer.write_snapshot(_processed(RAW_RUN_1))
    with pytest.raises(InventoryWriteError, match="already exists"):
        writer.write_snapshot(_processed(RAW_RUN_1))


def test_empty_items_are_rejected(tmp_path):
    writer, _ = _writer(tmp_path)
    with pytest.raises(InventoryWriteError):
        writer.write_snapshot({"items": [], "summary": {"timestamp": RUN_1}})
    with pytest.raises(InventoryWriteError):
        writer.write_snapshot({"items": None, "summary": {"timestamp": RUN_1}})


def test_chunk_with_missing_item_id_is_aborted_before_any_item_write(tmp_path):
    writer, store = _writer(tmp_path)
    processed = _processed(RAW_RUN_1)
    del processed["items"][1]["item_id"]

    with pytest.raises(InventoryWriteError, match="Invalid item IDs"):
        writer.write_snapshot(processed)

    assert store.list_collection(CURRENT_ITEMS_COLLECTION) == []
    assert store.list_collection("inventory/snapshots/2025-06-20T09-00-00/items/data") == []


def test_earlier_chunks_remain_when_a_later_chunk_fails(tmp_path):
    writer, store = _writer(tmp_path, chunk_size=2)
    processed = _processed(RAW_RUN_1)
    processed["items"][2]["item_id"] = "bad/id"

    with pytest.raises(InventoryWriteError):
        writer.write_snapshot(processed)

    assert [doc_id for doc_id, _ in store.list_collection(CURRENT_ITEMS_COLLECTION)] == ["A", "B"]


def test_items_are_written_in_chunks(tmp_path):
    writer, _ = _writer(tmp_path, chunk_size=2)
    raw = [{"id": f"I{idx}", "onhand": 1, "costBasis": 1} for idx in range(5)]
    assert writer.write_snapshot(_processed(raw))["batch_count"] == 3
    assert writer.read_current()["summary"]["total_items"] == 5


def test_chunk_size_must_fit_in_one_batch(tmp_path):
    store = DocumentStore(tmp_path / "docs.db", max_batch_operations=10)
    with pytest.raises(ValueError):
        InventoryWriter(store, chunk_size=6)
    InventoryWriter(store, chunk_size=5)


def test_default_reconciler_fits_a_small_store(tmp_path):
    store = DocumentStore(tmp_path / "docs.db", max_batch_operations=20)
    writer = InventoryWriter(store, chunk_size=10, chunk_delay_seconds=0)

    assert writer.reconciler.batch_limit == 18

    raw = [{"id": f"I{idx}", "onhand": 1, "costBasis": 1} for idx in range(25)]
    writer.write_snapshot(_processed(raw))
    result = writer.write_snapshot(_processed(raw[:2], RUN_2))

    assert result["archived_count"] == 23
    assert [item["id"] for item in writer.read_current()["items"]] == ["I0", "I1"]


def test_read_current_before_any_write_returns_empty_shape(tmp_path):
    writer, _ = _writer(tmp_path)
    assert writer.read_current() == empty_current_data()


def test_read_current_with_pointer_docs_but_no_items_returns_empty_shape(tmp_path):
    writer, store = _writer(tmp_path)
    processed = _processed(RAW_RUN_1)
    del processed["items"][0]["item_id"]
    with pytest.raises(InventoryWriteError):
        writer.write_snapshot(processed)

    assert store.get(METADATA_DOC) is not None
    assert writer.read_current() == empty_current_data()


def test_history_is_filtered_ordered_and_limited(tmp_path):
    writer, _ = _writer(tmp_path)
    runs = [RUN_1 + timedelta(days=offset) for offset in range(4)]
    for when in runs:
        writer.write_snapshot(_processed(RAW_RUN_1, when))

    history = writer.read_history(runs[1], runs[3], limit=30)
    assert [entry["id"] for entry in history] == [
        "2025-06-23T09-00-00",
        "2025-06-22T09-00-00",
        "2025-06-21T09-00-00",
    ]
    assert history[0]["total_items"] == 3
    assert history[0]["category_breakdown"]["Tools"] == 1

    limited = writer.read_history(runs[0], runs[3], limit=2)
    assert [entry["id"] for entry in limited] == ["2025-06-23T09-00-00", "2025-06-22T09-00-00"]


def test_item_named_summary_does_not_leak_into_history(tmp_path):
    writer, _ = _writer(tmp_path)
    writer.write_snapshot(_processed([{"id": "summary", "onhand": 1, "costBasis": 1}]))
    history = writer.read_history(RUN_1 - timedelta(hours=1), RUN_1 + timedelta(hours=1))
    assert [entry["id"] for entry in history] == ["2025-06-20T09-00-00"]


def test_get_items_by_status_returns_active_items_only(tmp_path):
    writer, _ = _writer(tmp_path)
    writer.write_snapshot(_processed(RAW_RUN_1))
    writer.write_snapshot(
        _processed([RAW_RUN_1[0], {"id": "D", "onhand": -5, "costBasis": 1}], RUN_2)
    )

    negative = writer.get_items_by_status("NEGATIVE_QUANTITY")
    assert [item["id"] for item in negative] == ["D"]


def test_store_connection_check(tmp_path):
    writer, store = _writer(tmp_path)
    result = writer.test_connection()
    assert result["success"] is True
    assert result["details"]["can_write"] is True
    assert store.get("inventory/test/connection/test") is None
