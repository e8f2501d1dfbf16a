from datetime import datetime, timedelta, timezone

from services.db import DocumentStore
from services.inventory_dashboard import get_dashboard_data
from services.inventory_processor import process_items
from services.inventory_store import InventoryWriter

NOW = datetime(2025, 6, 27, 12, 0, tzinfo=timezone.utc)


def _writer(tmp_path):
    return InventoryWriter(DocumentStore(tmp_path / "docs.db"), chunk_delay_seconds=0)


def test_dashboard_sorts_exceptions_first_and_includes_recent_history(tmp_path):
    writer = _writer(tmp_path)
    raw = [
        {"id": "ok", "onhand": 1, "available": 1, "costBasis": 100},
        {"id": "neg", "onhand": -3, "costBasis": 5},
    ]
    writer.write_snapshot(process_items(raw, NOW - timedelta(days=10)))
    writer.write_snapshot(process_items(raw, NOW - timedelta(days=1)))

    data = get_dashboard_data(writer, now=NOW)

    assert [item["id"] for item in data["current"]["items"]] == ["neg", "ok"]
    assert [entry["id"] for entry in data["recent_history"]] == ["2025-06-26T12-00-00"]
    assert data["last_updated"] == NOW.isoformat()


def test_written_snapshot_reaches_history_and_dashboard(tmp_path):
    writer = _writer(tmp_path)
    writer.write_snapshot(process_items([{"id": "A", "onhand": 2, "costBasis": 4}], NOW - timedelta(days=1)))

    # read_history directly so a store error fails here instead of degrading to []
    history = writer.read_history(NOW - timedelta(days=7), NOW, 7)
    assert [entry["id"] for entry in history] == ["2025-06-26T12-00-00"]
    assert history[0]["total_items"] == 1

    data = get_dashboard_data(writer, now=NOW)
    assert len(data["recent_history"]) == 1
    assert data["recent_history"][0]["total_value"] == 4


def test_dashboard_survives_history_failure(tmp_path, monkeypatch):
    writer = _writer(tmp_path)
    writer.write_snapshot(process_items([{"id": "A", "onhand": 1, "costBasis": 1}], NOW))

    def boom(*_args, **_kwargs):
        raise RuntimeError("history index missing")

    monkeypatch.setattr(writer, "read_history", boom)

    data = get_dashboard_data(writer, now=NOW)

    assert data["recent_history"] == []
    assert data["current"]["summary"]["total_items"] == 1


def test_dashboard_empty_state(tmp_path):
    data = get_dashboard_data(_writer(tmp_path), now=NOW)
    assert data["current"]["items"] == []
    assert data["current"]["summary"]["total_items"] == 0
    assert data["recent_history"] == []
