from fastapi.testclient import TestClient


def _completed_return(client: TestClient, order, quantity: int = 2, item_index: int = 0, approve: dict | None = None) -> dict:
    opened = client.post(
        "/api/v1/returns",
        json={
            "order_id": order.id,
            "return_reason": "Changed mind",
            "return_type": "unwanted",
            "items": [{"order_item_id": order.items[item_index].id, "quantity": quantity}],
        },
    )
    assert opened.status_code == 201
    return_id = opened.json()["data"]["id"]
    client.patch(f"/api/v1/returns/{return_id}", json={"quality_check_passed": True})
    approved = client.post(f"/api/v1/returns/{return_id}/approve", json=approve or {})
    assert approved.status_code == 200, approved.json()
    client.post(f"/api/v1/returns/{return_id}/process", json={})
    completed = client.post(f"/api/v1/returns/{return_id}/complete")
    assert completed.status_code == 200
    return completed.json()["data"]


def _workflow(client: TestClient, return_id: int) -> dict:
    return client.get(f"/api/v1/returns/{return_id}/workflow").json()["data"]


def test_scenario_b_partial_payment_above_return_value(client: TestClient, make_order):
    order = make_order(paid=150000)
    case = _completed_return(client, order)
    assert case["total_refund_amount"] == 1000


def test_scenario_c_refund_capped_at_amount_paid(client: TestClient, make_order):
    order = make_order(paid=40000)
    case = _completed_return(client, order)
    assert case["total_return_value"] == 1000
    assert case["total_refund_amount"] == 400


def test_requested_amount_is_capped_and_fee_kept_beside_it(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order, approve={"total_refund_amount": "5000", "processing_fee": "50"})
    assert case["total_refund_amount"] == 1000
    assert case["processing_fee"] == 50
    assert case["net_refund_amount"] == 950

    too_much = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": 1000}})
    assert too_much.status_code == 409
    assert too_much.json()["errors"][0]["remaining"] == 950

    paid = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": 950}})
    assert paid.json()["data"]["status"] == "refunded"
    assert _workflow(client, case["id"])["total_refunded"] == 950


def test_fee_larger_than_refund_leaves_nothing_to_pay(client: TestClient, make_order):
    order = make_order(paid=10000)
    case = _completed_return(client, order, quantity=1, approve={"processing_fee": "150"})

    assert case["total_refund_amount"] == 100
    assert case["processing_fee"] == 150
    assert case["net_refund_amount"] == 0
    assert case["status"] == "refunded"


def test_refund_cap_accounts_for_other_cases_on_the_order(client: TestClient, make_order):
    order = make_order(paid=120000)
    first = _completed_return(client, order, quantity=2)
    second = _completed_return(client, order, quantity=1, item_index=1)

    assert first["total_refund_amount"] == 1000
    assert second["total_refund_amount"] == 200


def test_scenario_d_partial_allocation_keeps_case_open(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    first = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": 300}})
    assert first.status_code == 201
    assert first.json()["data"]["status"] == "completed"
    assert first.json()["data"]["remaining"] == 700

    view = _workflow(client, case["id"])
    assert view["total_refunded"] == 300
    assert view["remaining_amount"] == 700
    assert view["can_create_refund"] is True

    second = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"card": 700}})
    assert second.json()["data"]["status"] == "refunded"
    assert second.json()["data"]["remaining"] == 0
    assert _workflow(client, case["id"])["can_create_refund"] is False


def test_over_allocation_is_rejected_without_side_effects(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    response = client.post(
        "/api/v1/refunds",
        json={"return_id": case["id"], "amounts": {"cash": 600, "bkash": 500}},
    )
    assert response.status_code == 409
    error = response.json()["errors"][0]
    assert error["code"] == "over_allocation"
    assert error["remaining"] == 1000

    refunds = client.get("/api/v1/refunds", params={"return_id": case["id"]}).json()["data"]
    assert refunds == []


def test_negative_and_empty_splits_are_rejected(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    negative = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": -10}})
    assert negative.status_code == 400

    empty = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {}})
    assert empty.status_code == 400

    unknown = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cheque": 10}})
    assert unknown.status_code == 422


def test_denominations_take_precedence_over_cash_figure(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    response = client.post(
        "/api/v1/refunds",
        json={
            "return_id": case["id"],
            "amounts": {"cash": 999, "nagad": 200},
            "denominations": {"500": 1, "100": 3},
        },
    )
    assert response.status_code == 201
    refunds = {r["method"]: r for r in response.json()["data"]["refunds"]}
    assert refunds["cash"]["amount"] == 800
    assert refunds["cash"]["denominations"] == {"500": 1, "100": 3}
    assert refunds["nagad"]["amount"] == 200
    assert response.json()["data"]["status"] == "refunded"


def test_unknown_denomination_is_rejected(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    response = client.post(
        "/api/v1/refunds",
        json={"return_id": case["id"], "amounts": {}, "denominations": {"300": 1}},
    )
    assert response.status_code == 400


def test_pending_refund_settles_through_process_and_complete(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)

    created = client.post(
        "/api/v1/refunds",
        json={"return_id": case["id"], "amounts": {"bkash": 1000}, "settle": False},
    )
    assert created.status_code == 201
    assert created.json()["data"]["status"] == "completed"
    refund_id = created.json()["data"]["refunds"][0]["id"]
    assert created.json()["data"]["refunds"][0]["status"] == "pending"

    # Fully allocated but not yet paid out
    again = client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": 1}})
    assert again.status_code == 409

    premature = client.post(f"/api/v1/refunds/{refund_id}/complete", json={})
    assert premature.status_code == 409

    processed = client.post(f"/api/v1/refunds/{refund_id}/process")
    assert processed.json()["data"]["status"] == "processed"
    assert client.post(f"/api/v1/refunds/{refund_id}/process").status_code == 409

    completed = client.post(f"/api/v1/refunds/{refund_id}/complete", json={"transaction_reference": "BK-7781"})
    assert completed.status_code == 200
    assert completed.json()["data"]["transaction_reference"] == "BK-7781"
    assert client.get(f"/api/v1/returns/{case['id']}").json()["data"]["status"] == "refunded"

    retry = client.post(f"/api/v1/refunds/{refund_id}/complete", json={})
    assert retry.status_code == 200
    assert retry.json()["data"]["status"] == "completed"
    assert _workflow(client, case["id"])["remaining_amount"] == 0


def test_zero_refund_case_skips_straight_to_refunded(client: TestClient, make_order):
    order = make_order(paid=0)
    case = _completed_return(client, order)
    assert case["total_refund_amount"] == 0
    assert case["status"] == "refunded"


def test_unknown_refund_is_404(client: TestClient):
    assert client.post("/api/v1/refunds/999/process").status_code == 404


def test_refund_cap_counts_net_refunds_of_other_cases(client: TestClient, make_order):
    order = make_order(paid=120000)
    first = _completed_return(client, order, quantity=2, approve={"processing_fee": "100"})
    second = _completed_return(client, order, quantity=1, item_index=1)

    assert first["net_refund_amount"] == 900
    assert second["total_refund_amount"] == 300


def test_refund_list_filters_by_status_and_method(client: TestClient, make_order):
    order = make_order()
    case = _completed_return(client, order)
    client.post("/api/v1/refunds", json={"return_id": case["id"], "amounts": {"cash": 400}})
    client.post(
        "/api/v1/refunds",
        json={"return_id": case["id"], "amounts": {"bkash": 600}, "settle": False},
    )

    pending = client.get("/api/v1/refunds", params={"status": "pending"}).json()["data"]
    assert [r["method"] for r in pending] == ["bkash"]

    cash = client.get("/api/v1/refunds", params={"refund_method": "cash", "return_id": case["id"]}).json()["data"]
    assert [r["amount"] for r in cash] == [400]

    assert client.get("/api/v1/refunds", params={"refund_method": "cheque"}).status_code == 422
