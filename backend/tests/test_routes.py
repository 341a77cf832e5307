"""
HTTP tests for the back-office API.

Each flow drives the endpoints the way the front end does and checks the
JSON it gets back; business rules themselves are covered by the service
and lifecycle tests.
"""

import pytest

from backoffice.services import purchase_order_service


def test_actor_header_required(client):
    for method, url in [
        ("get", "/api/stock"),
        ("post", "/api/purchase-orders"),
        ("get", "/api/transfers"),
        ("get", "/api/returns"),
        ("put", "/api/return-policy"),
    ]:
        response = getattr(client, method)(url, json={})
        assert response.status_code == 401
        assert response.get_json() == {"error": "Actor identity required"}


def test_health_reports_missing_policy_as_degraded(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["status"] == "healthy"


def test_health_with_policy(client, policy):
    assert client.get("/health").get_json()["status"] == "healthy"
    assert client.get("/version").get_json()["api_version"] == "1.0.0"


# =============================================================================
# STOCK
# =============================================================================

def test_set_and_list_stock(client, headers, make_product):
    product = make_product()

    response = client.put(f"/api/stock/A/{product.id}", json={"quantity": 12}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()["quantity"] == 12

    items = client.get("/api/stock?outlet_id=A", headers=headers).get_json()["items"]
    assert [(i["product_id"], i["quantity"]) for i in items] == [(product.id, 12)]

    movements = client.get("/api/stock/movements", headers=headers).get_json()["items"]
    assert movements[0]["movement_type"] == "adjustment"


@pytest.mark.parametrize("quantity", [-1, 1.5, "1e3", True])
def test_set_stock_rejects_bad_quantity(client, headers, make_product, quantity):
    product = make_product()
    response = client.put(f"/api/stock/A/{product.id}", json={"quantity": quantity}, headers=headers)
    assert response.status_code == 400


def test_set_stock_unknown_product(client, headers):
    response = client.put("/api/stock/A/missing", json={"quantity": 1}, headers=headers)
    assert response.status_code == 404


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def test_purchase_order_flow(client, headers, make_product):
    product = make_product()
    response = client.post("/api/purchase-orders", json={
        "supplier_id": "sup-1",
        "outlet_id": "A",
        "items": [{"product_id": product.id, "quantity": 10, "unit_price": 1500}],
    }, headers=headers)
    assert response.status_code == 201
    order = response.get_json()["purchase_order"]
    assert order["status"] == "pending"
    assert order["total_amount"] == 15000
    assert order["order_number"].startswith("PO-")

    receive_url = f"/api/purchase-orders/{order['id']}/receive"
    receipt = {"items": [{"product_id": product.id, "received_quantity": 7}]}
    assert client.post(receive_url, json=receipt, headers=headers).status_code == 400

    response = client.post(f"/api/purchase-orders/{order['id']}/approve", headers=headers)
    assert response.get_json()["purchase_order"]["status"] == "approved"

    response = client.post(receive_url, json=receipt, headers=headers)
    assert response.status_code == 200
    body = response.get_json()
    assert body["purchase_order"]["status"] == "received"
    assert [(d["product_id"], d["difference"]) for d in body["discrepancies"]] == [(product.id, -3)]

    breakdown = client.get(f"/api/stock/products/{product.id}", headers=headers).get_json()
    assert breakdown["total"] == 7

    listed = client.get("/api/purchase-orders?status=received", headers=headers).get_json()
    assert [o["id"] for o in listed["purchase_orders"]] == [order["id"]]


def test_purchase_order_validation_lists_every_problem(client, headers):
    response = client.post("/api/purchase-orders", json={
        "supplier_id": "",
        "outlet_id": "A",
        "items": [{"product_id": "missing", "quantity": 0, "unit_price": 100}],
    }, headers=headers)
    assert response.status_code == 400
    body = response.get_json()
    assert body["kind"] == "validation"
    assert len(body["errors"]) >= 3


def test_purchase_order_number_conflict_is_409(client, headers, make_product, monkeypatch):
    product = make_product()
    payload = {
        "supplier_id": "sup-1",
        "outlet_id": "A",
        "items": [{"product_id": product.id, "quantity": 1, "unit_price": 100}],
    }
    first = client.post("/api/purchase-orders", json=payload, headers=headers).get_json()["purchase_order"]
    monkeypatch.setattr(
        purchase_order_service, "next_identifier", lambda column, prefix, **kwargs: first["order_number"],
    )

    response = client.post("/api/purchase-orders", json=payload, headers=headers)

    assert response.status_code == 409
    assert first["order_number"] in response.get_json()["error"]


def test_purchase_order_not_found(client, headers):
    assert client.get("/api/purchase-orders/nope", headers=headers).status_code == 404
    assert client.post("/api/purchase-orders/nope/cancel", headers=headers).status_code == 404


def test_purchase_order_requires_json(client, headers):
    response = client.post("/api/purchase-orders", data="x", headers=headers)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Request body must be JSON"


# =============================================================================
# TRANSFERS
# =============================================================================

def test_transfer_flow(client, headers, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 100)

    response = client.post("/api/transfers", json={
        "source_outlet_id": "A",
        "destination_outlet_id": "B",
        "items": [{"product_id": product.id, "quantity": 30}],
    }, headers=headers)
    assert response.status_code == 201
    transfer = response.get_json()["transfer"]

    early = client.post(f"/api/transfers/{transfer['id']}/complete", headers=headers)
    assert early.status_code == 400
    assert early.get_json()["kind"] == "invalid_transition"

    client.post(f"/api/transfers/{transfer['id']}/approve", headers=headers)
    response = client.post(f"/api/transfers/{transfer['id']}/complete", headers=headers)
    assert response.status_code == 200
    assert response.get_json()["transfer"]["status"] == "completed"

    items = client.get(f"/api/stock?product_id={product.id}", headers=headers).get_json()["items"]
    assert {i["outlet_id"]: i["quantity"] for i in items} == {"A": 70, "B": 30}

    cancel = client.post(f"/api/transfers/{transfer['id']}/cancel", headers=headers)
    assert cancel.status_code == 400
    assert cancel.get_json()["kind"] == "terminal_state"


def test_transfer_insufficient_stock(client, headers, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 5)
    response = client.post("/api/transfers", json={
        "source_outlet_id": "A",
        "destination_outlet_id": "B",
        "items": [{"product_id": product.id, "quantity": 6}],
    }, headers=headers)
    assert response.status_code == 400
    assert response.get_json()["kind"] == "insufficient_stock"


def test_transfer_missing_field(client, headers):
    response = client.post("/api/transfers", json={"items": []}, headers=headers)
    assert response.status_code == 400
    assert "Missing required field" in response.get_json()["error"]


# =============================================================================
# RETURNS
# =============================================================================

def test_return_flow_with_manager_approval(client, headers, make_product, make_sale, put_stock, policy):
    product = make_product()
    sale = make_sale([(product, 2, 10000, 1000)], outlet_id="A", days_ago=10)
    line_id = sale.items[0].id

    eligibility = client.get(f"/api/returns/transactions/{sale.id}/eligibility", headers=headers).get_json()
    assert eligibility["requires_approval"] is True

    response = client.post("/api/returns", json={
        "transaction_id": sale.id,
        "items": [{"transaction_item_id": line_id, "quantity": 2, "reason": "changed_mind"}],
    }, headers=headers)
    assert response.status_code == 201
    ret = response.get_json()["return"]
    assert ret["status"] == "pending_approval"
    assert ret["total_refund"] == 18000

    pending = client.get("/api/returns/pending-approvals", headers=headers).get_json()["returns"]
    assert [r["id"] for r in pending] == [ret["id"]]

    missing_reason = client.post(f"/api/returns/{ret['id']}/approve", json={}, headers=headers)
    assert missing_reason.status_code == 400

    approved = client.post(f"/api/returns/{ret['id']}/approve", json={"reason": "Receipt checked"}, headers=headers)
    assert approved.get_json()["return"]["approved_by"] == headers["X-Actor-Id"]

    completed = client.post(f"/api/returns/{ret['id']}/complete", json={"refund_method": "card"}, headers=headers)
    assert completed.status_code == 200
    assert completed.get_json()["return"]["status"] == "completed"

    refund = client.get(f"/api/returns/{ret['id']}/refund", headers=headers).get_json()
    assert refund["total_refund"] == 18000
    assert refund["refund_method"] == "card"

    returnable = client.get(f"/api/returns/transactions/{sale.id}/returnable-items", headers=headers).get_json()
    assert returnable["items"][0]["available_quantity"] == 0

    items = client.get("/api/stock?outlet_id=A", headers=headers).get_json()["items"]
    assert items[0]["quantity"] == 2


def test_return_blocked_category(client, headers, make_product, make_sale, policy):
    product = make_product(category_id="cat-hygiene")
    sale = make_sale([(product, 1, 500)])
    response = client.post("/api/returns", json={
        "transaction_id": sale.id,
        "items": [{"transaction_item_id": sale.items[0].id, "quantity": 1}],
    }, headers=headers)
    assert response.status_code == 400
    assert response.get_json()["kind"] == "policy_blocked"


def test_return_bad_refund_method_and_unknown_return(client, headers, make_product, make_sale):
    product = make_product()
    sale = make_sale([(product, 1, 500)])
    ret = client.post("/api/returns", json={
        "transaction_id": sale.id,
        "items": [{"transaction_item_id": sale.items[0].id, "quantity": 1}],
    }, headers=headers).get_json()["return"]

    response = client.post(f"/api/returns/{ret['id']}/complete", json={"refund_method": "cheque"}, headers=headers)
    assert response.status_code == 400

    assert client.get("/api/returns/nope", headers=headers).status_code == 404
    assert client.get("/api/returns/transactions/nope/eligibility", headers=headers).status_code == 404


# =============================================================================
# RETURN POLICY
# =============================================================================

def test_policy_get_and_update(client, headers):
    assert client.get("/api/return-policy", headers=headers).get_json() == {"policy": None}

    response = client.put("/api/return-policy", json={
        "max_return_days": 14,
        "non_returnable_categories": ["cat-underwear"],
    }, headers=headers)
    assert response.status_code == 200
    policy = response.get_json()["policy"]
    assert policy["max_return_days"] == 14
    assert policy["non_returnable_categories"] == ["cat-underwear"]
    assert policy["require_receipt"] is True


def test_policy_update_rejects_unknown_and_invalid_fields(client, headers):
    unknown = client.put("/api/return-policy", json={"id": "x"}, headers=headers)
    assert unknown.status_code == 400
    assert unknown.get_json()["error"] == "Field not allowed: id"

    invalid = client.put("/api/return-policy", json={"max_return_days": 0}, headers=headers)
    assert invalid.status_code == 400
    assert invalid.get_json()["kind"] == "validation"
