"""
Production cost analysis over SOS process transactions.

Exploratory only: answers "which cost fields does the process API actually
carry?" and groups transactions into per-product production batches. Nothing
here is written to the document store.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.inventory_processor import parse_number

logger = logging.getLogger(__name__)

COST_FIELDS = ("cost", "unitCost", "totalCost", "price", "unitPrice", "amount")


def _parse_date(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        logger.debug("[ProductionAnalyzer] Could not parse date %r", value)
        return None
    # naive timestamps are UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _lines(transaction: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    lines = transaction.get(key)
    if not isinstance(lines, list):
        return []
    return [line for line in lines if isinstance(line, dict)]


def _line_name(line: Dict[str, Any], default: str) -> str:
    item = line.get("item")
    if isinstance(item, dict) and item.get("name"):
        return str(item["name"])
    return default


def _has_value(value: Any) -> bool:
    return value is not None and value != 0 and value != ""


def analyze_transaction_structure(transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not transactions:
        return {"error": "No transactions to analyze"}

    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None
    output_products = set()
    input_materials = set()
    transaction_fields = set()
    input_fields = set()
    output_fields = set()
    detailed_cost_fields: List[str] = []
    cost = {
        "transaction_total": False,
        "input_costs": False,
        "output_costs": False,
        "input_unit_costs": False,
        "output_unit_costs": False,
    }

    for txn in transactions:
        when = _parse_date(txn.get("date"))
        if when is not None:
            if earliest is None or when < earliest:
                earliest = when
            if latest is None or when > latest:
                latest = when
        transaction_fields.update(txn.keys())
        if _has_value(txn.get("total")):
            cost["transaction_total"] = True

        for side, names, fields in (
            ("input", input_materials, input_fields),
            ("output", output_products, output_fields),
        ):
            for line in _lines(txn, f"{side}s"):
                name = _line_name(line, "")
                if name:
                    names.add(name)
                fields.update(line.keys())
                for field in COST_FIELDS:
                    if not _has_value(line.get(field)):
                        continue
                    cost[f"{side}_costs"] = True
                    if "unit" in field.lower():
                        cost[f"{side}_unit_costs"] = True
                    label = f"{side}.{field}"
                    if label not in detailed_cost_fields:
                        detailed_cost_fields.append(label)

    return {
        "total_transactions": len(transactions),
        "date_range": {
            "earliest": earliest.isoformat() if earliest else None,
            "latest": latest.isoformat() if latest else None,
        },
        "output_products": sorted(output_products),
        "input_materials": sorted(input_materials),
        "cost_data_available": {**cost, "detailed_cost_fields": detailed_cost_fields},
        "data_structure": {
            "common_input_fields": sorted(input_fields),
            "common_output_fields": sorted(output_fields),
            "transaction_fields": sorted(transaction_fields),
        },
        "sample_transaction": transactions[0],
    }


def extract_production_batches(transactions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Group process transactions into per-product batches with cost coverage stats."""
    products: Dict[str, Dict[str, Any]] = {}
    daily: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"batches": 0, "products": set(), "total_value": 0.0})
    quality = {"batches_with_costs": 0, "batches_without_costs": 0, "total_value": 0.0}

    for txn in transactions:
        when = _parse_date(txn.get("date"))
        day = when.date().isoformat() if when else "unknown"
        inputs = _lines(txn, "inputs")
        txn_total = parse_number(txn.get("total"))

        for output in _lines(txn, "outputs"):
            product_name = _line_name(output, "Unknown Product")
            product = products.setdefault(
                product_name,
                {
                    "batches": [],
                    "total_quantity": 0.0,
                    "total_batches": 0,
                    "cost_analysis": {"batches_with_costs": 0, "average_cost_per_unit": 0.0, "total_value": 0.0},
                },
            )
            has_cost_data = bool(
                txn_total
                or any(_has_value(line.get("cost")) or _has_value(line.get("unitCost")) for line in inputs)
                or _has_value(output.get("cost"))
                or _has_value(output.get("unitCost"))
            )
            batch = {
                "transaction_id": txn.get("id"),
                "transaction_number": txn.get("number"),
                "date": txn.get("date"),
                "quantity": parse_number(output.get("quantity")),
                "inputs": [
                    {
                        "name": _line_name(line, "Unknown Input"),
                        "quantity": parse_number(line.get("quantity")),
                        "cost": line.get("cost") or line.get("unitCost") or line.get("totalCost"),
                    }
                    for line in inputs
                ],
                "total_transaction_value": txn_total,
                "has_cost_data": has_cost_data,
            }
            product["batches"].append(batch)
            product["total_quantity"] += batch["quantity"]
            product["total_batches"] += 1

            if has_cost_data:
                product["cost_analysis"]["batches_with_costs"] += 1
                quality["batches_with_costs"] += 1
                product["cost_analysis"]["total_value"] += txn_total
                quality["total_value"] += txn_total
            else:
                quality["batches_without_costs"] += 1

            daily[day]["batches"] += 1
            daily[day]["products"].add(product_name)
            daily[day]["total_value"] += txn_total

    for product in products.values():
        analysis = product["cost_analysis"]
        if analysis["batches_with_costs"] and product["total_quantity"] > 0:
            analysis["average_cost_per_unit"] = analysis["total_value"] / product["total_quantity"]

    return {
        "total_batches": len(transactions),
        "products": products,
        "daily_totals": {
            day: {**totals, "products": sorted(totals["products"])} for day, totals in sorted(daily.items())
        },
        "cost_data_quality": quality,
    }


def generate_cost_data_recommendations(analysis: Dict[str, Any]) -> Dict[str, Any]:
    cost = analysis.get("cost_data_available") or {}
    detailed = cost.get("detailed_cost_fields") or []

    if cost.get("input_costs") and cost.get("output_costs"):
        route, confidence = "DIRECT_API", "HIGH"
        next_steps = ["Proceed with direct API integration", "Build cost tracking dashboard"]
    elif cost.get("transaction_total"):
        route, confidence = "TRANSACTION_TOTALS", "MEDIUM"
        next_steps = [
            "Use transaction totals for cost tracking",
            "May need additional data for input/labor breakdown",
        ]
    elif detailed:
        route, confidence = "PARTIAL_API", "MEDIUM"
        next_steps = ["Limited cost data available via API", "Consider supplementing with Reports API"]
    else:
        route, confidence = "REPORTS_API_REQUIRED", "HIGH"
        next_steps = [
            "No cost data in process API",
            "Explore SOS Reports API for cost information",
            "Consider manual cost calculation from inventory data",
        ]

    notes = []
    if detailed:
        notes.append(f"Available cost fields: {', '.join(detailed)}")
    notes.append(f"Products to track: {len(analysis.get('output_products') or [])} different products")
    notes.append(f"Input materials: {len(analysis.get('input_materials') or [])} different materials")

    return {
        "data_route": route,
        "confidence": confidence,
        "next_steps": next_steps,
        "implementation_notes": notes,
    }
