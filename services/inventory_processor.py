"""
Inventory Record Normalizer
===========================

Maps raw SOS item payloads into the canonical item shape, assigns a stable
document id and classifies each item's status.

Status rules (first match wins):
  on hand < 0                       -> NEGATIVE_QUANTITY
  available < 0                     -> NEGATIVE_AVAILABLE
  cost basis < 0                    -> NEGATIVE_VALUE
  on hand > 0 and cost basis <= 0   -> NO_COST_BASIS
  otherwise                         -> OK
"""

import logging
import random
import re
import string
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

STATUS_OK = "OK"
STATUS_NEGATIVE_QUANTITY = "NEGATIVE_QUANTITY"
STATUS_NEGATIVE_AVAILABLE = "NEGATIVE_AVAILABLE"
STATUS_NEGATIVE_VALUE = "NEGATIVE_VALUE"
STATUS_NO_COST_BASIS = "NO_COST_BASIS"

INVENTORY_STATUSES = (
    STATUS_OK,
    STATUS_NEGATIVE_QUANTITY,
    STATUS_NEGATIVE_AVAILABLE,
    STATUS_NEGATIVE_VALUE,
    STATUS_NO_COST_BASIS,
)

# Dashboard severity per status; only "error" and "warning" count as issues.
STATUS_FLAGS = {
    STATUS_OK: "ok",
    STATUS_NEGATIVE_QUANTITY: "error",
    STATUS_NEGATIVE_AVAILABLE: "error",
    STATUS_NEGATIVE_VALUE: "error",
    STATUS_NO_COST_BASIS: "warning",
}

UNCATEGORIZED = "Uncategorized"

ID_SOURCE_ORIGINAL = "original_id"
ID_SOURCE_SKU = "sku"
ID_SOURCE_GENERATED = "generated"

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_BASE36_DIGITS = string.digits + string.ascii_lowercase


class InventoryProcessingError(ValueError):
    """Raised when a batch of raw items cannot be processed at all."""


class IdResolution(NamedTuple):
    item_id: str
    source: str


# ------------------------------------------------------------
# Identifier assignment
# ------------------------------------------------------------
def _text(value: Any) -> str:
    if isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int):
        return str(value)
    return ""


def _present(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return bool(value)


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def _id_from_source(raw_item: Dict[str, Any], timestamp: datetime) -> Optional[IdResolution]:
    value = _text(raw_item.get("id"))
    return IdResolution(value, ID_SOURCE_ORIGINAL) if value else None


def _id_from_sku(raw_item: Dict[str, Any], timestamp: datetime) -> Optional[IdResolution]:
    value = _text(raw_item.get("sku"))
    return IdResolution(f"sku_{value}", ID_SOURCE_SKU) if value else None


def _id_generated(raw_item: Dict[str, Any], timestamp: datetime) -> Optional[IdResolution]:
    millis = int(timestamp.timestamp() * 1000)
    suffix = "".join(random.choices(_BASE36_DIGITS, k=6))
    return IdResolution(f"item_{_to_base36(millis)}_{suffix}", ID_SOURCE_GENERATED)


IdRule = Callable[[Dict[str, Any], datetime], Optional[IdResolution]]

# Evaluated in order; the generated rule always yields an id.
ID_RULES: List[IdRule] = [_id_from_source, _id_from_sku, _id_generated]


def sanitize_item_id(value: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", value)


def resolve_item_id(raw_item: Dict[str, Any], timestamp: datetime) -> IdResolution:
    for rule in ID_RULES:
        resolved = rule(raw_item, timestamp)
        if resolved is not None:
            return IdResolution(sanitize_item_id(resolved.item_id), resolved.source)
    raise InventoryProcessingError("Failed to generate valid item ID")


# ------------------------------------------------------------
# Field mapping
# ------------------------------------------------------------
def parse_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def normalize_category(value: Any) -> str:
    if isinstance(value, bool):
        return UNCATEGORIZED
    if isinstance(value, str):
        return value.strip() or UNCATEGORIZED
    if isinstance(value, (int, float)):
        return str(value)
    return UNCATEGORIZED


def classify_status(on_hand: float, available: float, cost_basis: float) -> str:
    if on_hand < 0:
        return STATUS_NEGATIVE_QUANTITY
    if available < 0:
        return STATUS_NEGATIVE_AVAILABLE
    if cost_basis < 0:
        return STATUS_NEGATIVE_VALUE
    if on_hand > 0 and cost_basis <= 0:
        return STATUS_NO_COST_BASIS
    return STATUS_OK


def compute_average_cost(on_hand: float, cost_basis: float) -> float:
    return cost_basis / on_hand if on_hand > 0 and cost_basis > 0 else 0.0


def process_item(raw_item: Dict[str, Any], timestamp: datetime) -> Dict[str, Any]:
    on_hand = parse_number(raw_item.get("onhand"))
    available = parse_number(raw_item.get("available"))
    cost_basis = parse_number(raw_item.get("costBasis"))
    status = classify_status(on_hand, available, cost_basis)
    resolved = resolve_item_id(raw_item, timestamp)
    name = raw_item.get("name") or ""

    return {
        "item_id": resolved.item_id,
        "id_source": resolved.source,
        "sku": _text(raw_item.get("sku")),
        "name": name,
        "full_name": raw_item.get("fullname") or name,
        "category": normalize_category(raw_item.get("category")),
        "qty_on_hand": on_hand,
        "qty_available": available,
        "cost_basis": cost_basis,
        "average_cost": compute_average_cost(on_hand, cost_basis),
        "status": status,
        "status_flag": STATUS_FLAGS[status],
        "last_updated": timestamp.isoformat(),
    }


def _dedupe_id(item_id: str, seen: Dict[str, int]) -> str:
    if item_id not in seen:
        seen[item_id] = 1
        return item_id
    while True:
        seen[item_id] += 1
        candidate = f"{item_id}_{seen[item_id]}"
        if candidate not in seen:
            seen[candidate] = 1
            return candidate


def process_items(raw_items: Any, fetch_timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Process raw SOS inventory items into the canonical item shape.

    Items missing both id and sku, or failing to map, are skipped and counted.
    Raises InventoryProcessingError if the input is not a list, is empty, or
    no item survives.
    """
    timestamp = fetch_timestamp or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    if not isinstance(raw_items, list):
        raise InventoryProcessingError(f"Expected list of items, got {type(raw_items).__name__}")
    if not raw_items:
        raise InventoryProcessingError("No items to process")

    logger.info("[InventoryProcessor] Processing %d raw items", len(raw_items))

    processed: List[Dict[str, Any]] = []
    invalid: List[Dict[str, Any]] = []
    status_counts = {status: 0 for status in INVENTORY_STATUSES}
    seen_ids: Dict[str, int] = {}

    for raw_item in raw_items:
        if not isinstance(raw_item, dict):
            invalid.append({"error": "null or non-object item", "item": raw_item})
            continue
        if not _present(raw_item.get("id")) and not _present(raw_item.get("sku")):
            invalid.append({"error": "missing both ID and SKU", "item": raw_item})
            continue
        try:
            item = process_item(raw_item, timestamp)
        except Exception as exc:
            logger.warning(
                "[InventoryProcessor] Failed to process item %s: %s",
                raw_item.get("id") or raw_item.get("sku") or "unknown",
                exc,
            )
            invalid.append({"error": str(exc), "item": raw_item})
            continue

        deduped = _dedupe_id(item["item_id"], seen_ids)
        if deduped != item["item_id"]:
            logger.warning("[InventoryProcessor] Duplicate item id %s renamed to %s", item["item_id"], deduped)
            item["item_id"] = deduped
        processed.append(item)
        status_counts[item["status"]] += 1

    if invalid:
        logger.error(
            "[InventoryProcessor] Found %d invalid items during processing (first: %s)",
            len(invalid),
            invalid[:5],
        )
    if not processed:
        raise InventoryProcessingError("No valid items were processed")

    logger.info(
        "[InventoryProcessor] Processed %d items (%d invalid) status_counts=%s",
        len(processed),
        len(invalid),
        status_counts,
    )
    return {
        "items": processed,
        "summary": {
            "total_items": len(processed),
            "total_value": calculate_total_value(processed),
            "timestamp": timestamp,
            "status_counts": status_counts,
            "invalid_items_count": len(invalid),
        },
    }


# ------------------------------------------------------------
# Summaries and helpers
# ------------------------------------------------------------
def calculate_total_value(items: Iterable[Dict[str, Any]]) -> float:
    return sum(parse_number(item.get("cost_basis")) for item in items)


def extract_unique_categories(items: Iterable[Dict[str, Any]]) -> List[str]:
    return sorted({normalize_category(item.get("category")) for item in items})


def generate_inventory_summary(items: List[Dict[str, Any]], timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "timestamp": timestamp or datetime.now(timezone.utc),
        "total_items": len(items),
        "total_value": calculate_total_value(items),
        "status_counts": {status: 0 for status in INVENTORY_STATUSES},
        "category_breakdown": {},
        "value_by_category": {},
    }
    for item in items:
        status = item.get("status")
        summary["status_counts"][status] = summary["status_counts"].get(status, 0) + 1
        category = normalize_category(item.get("category"))
        summary["category_breakdown"][category] = summary["category_breakdown"].get(category, 0) + 1
        summary["value_by_category"][category] = (
            summary["value_by_category"].get(category, 0.0) + parse_number(item.get("cost_basis"))
        )
    return summary


def get_items_by_status(items: Iterable[Dict[str, Any]], status: str) -> List[Dict[str, Any]]:
    return [item for item in items if item.get("status") == status]


def get_exception_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [item for item in items if item.get("status") != STATUS_OK]


REQUIRED_ITEM_FIELDS = ("item_id", "sku", "qty_on_hand", "cost_basis", "status")


def validate_processed_item(item: Dict[str, Any]) -> bool:
    missing = [field for field in REQUIRED_ITEM_FIELDS if item.get(field) is None]
    if missing:
        logger.warning("[InventoryProcessor] Processed item missing required fields: %s", ", ".join(missing))
        return False
    return True


def sort_items_for_display(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Exceptions first, then by cost basis descending within each group."""
    return sorted(
        items,
        key=lambda item: (item.get("status") == STATUS_OK, -parse_number(item.get("cost_basis"))),
    )
