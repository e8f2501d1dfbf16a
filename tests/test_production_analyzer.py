from services.production_analyzer import (
    analyze_transaction_structure,
    extract_production_batches,
    generate_cost_data_recommendations,
)


def _txn(txn_id, date, product, quantity, total=0, inputs=None):
    return {
        "id": txn_id,
        "number": f"P-{txn_id}",
        "date": date,
        "total": total,
        "inputs": inputs or [],
        "outputs": [{"item": {"name": product}, "quantity": quantity}],
    }


def test_analyze_empty_transactions_reports_error():
    assert analyze_transaction_structure([]) == {"error": "No transactions to analyze"}


def test_analyze_detects_cost_fields_and_date_range():
    transactions = [
        _txn(1, "2025-06-02T10:00:00Z", "Widget", 10, total=120,
             inputs=[{"item": {"name": "Steel"}, "quantity": 4, "unitCost": 3}]),
        _txn(2, "2025-06-01T08:00:00", "Gadget", 5),
    ]

    analysis = analyze_transaction_structure(transactions)

    assert analysis["total_transactions"] == 2
    assert analysis["date_range"]["earliest"].startswith("2025-06-01")
    assert analysis["date_range"]["latest"].startswith("2025-06-02")
    assert analysis["output_products"] == ["Gadget", "Widget"]
    assert analysis["input_materials"] == ["Steel"]
    cost = analysis["cost_data_available"]
    assert cost["transaction_total"] is True
    assert cost["input_costs"] is True
    assert cost["input_unit_costs"] is True
    assert cost["output_costs"] is False
    assert cost["detailed_cost_fields"] == ["input.unitCost"]
    assert analysis["sample_transaction"]["id"] == 1


def test_extract_production_batches_groups_by_product_and_day():
    transactions = [
        _txn(1, "2025-06-02T10:00:00", "Widget", 10, total=100),
        _txn(2, "2025-06-02T15:00:00", "Widget", 30),
        _txn(3, "2025-06-03T09:00:00", "Gadget", 2),
    ]

    result = extract_production_batches(transactions)

    assert result["total_batches"] == 3
    widget = result["products"]["Widget"]
    assert widget["total_batches"] == 2
    assert widget["total_quantity"] == 40
    assert widget["cost_analysis"]["batches_with_costs"] == 1
    assert widget["cost_analysis"]["average_cost_per_unit"] == 2.5
    assert result["daily_totals"]["2025-06-02"] == {"batches": 2, "products": ["Widget"], "total_value": 100.0}
    assert result["cost_data_quality"] == {"batches_with_costs": 1, "batches_without_costs": 2, "total_value": 100.0}


def test_recommendations_pick_data_route():
    full = {"cost_data_available": {"input_costs": True, "output_costs": True, "detailed_cost_fields": ["input.cost"]}}
    totals = {"cost_data_available": {"transaction_total": True, "detailed_cost_fields": []}}
    partial = {"cost_data_available": {"input_costs": True, "detailed_cost_fields": ["input.cost"]}}
    none = {"cost_data_available": {"detailed_cost_fields": []}, "output_products": ["A", "B"]}

    assert generate_cost_data_recommendations(full)["data_route"] == "DIRECT_API"
    assert generate_cost_data_recommendations(totals)["data_route"] == "TRANSACTION_TOTALS"
    assert generate_cost_data_recommendations(partial)["data_route"] == "PARTIAL_API"
    fallback = generate_cost_data_recommendations(none)
    assert fallback["data_route"] == "REPORTS_API_REQUIRED"
    assert fallback["confidence"] == "HIGH"
    assert "Products to track: 2 different products" in fallback["implementation_notes"]
