import pytest

from tillbook.services.scheduler import segmentation_flight


@pytest.fixture
def api(client, db_session):
    return client


def _create_product(api, **overrides):
    payload = {"name": "Notebook", "category": "Office", "price_cents": 1500, "cost_cents": 900, "stock": 5}
    payload.update(overrides)
    resp = api.post("/api/products", json=payload)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["product"]


def _create_order(api, **order_fields):
    customer = api.post("/api/customers", json={"name": "Ana", "email": "ana@example.com"}).get_json()["customer"]
    resp = api.post("/api/orders", json={"customer_id": customer["id"], **order_fields})
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["order"]


def test_health(api):
    resp = api.get("/api/health")

    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"


def test_commit_line_flow(api):
    product = _create_product(api)
    order = _create_order(api)

    resp = api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": 2})

    assert resp.status_code == 201
    line = resp.get_json()["line"]
    assert line["unit_price_cents_at_sale"] == 1500
    assert line["subtotal_cents"] == 3000
    assert line["margin_cents"] == 1200

    detail = api.get(f"/api/orders/{order['id']}").get_json()
    assert detail["order"]["total_cents"] == 3000
    assert len(detail["lines"]) == 1
    assert api.get(f"/api/products/{product['id']}").get_json()["product"]["stock"] == 3


def test_rejected_sale_reports_product_and_quantities(api):
    product = _create_product(api, stock=1)
    order = _create_order(api)

    resp = api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": 4})

    assert resp.status_code == 409
    body = resp.get_json()
    assert body["kind"] == "InsufficientStock"
    assert body["retryable"] is False
    assert body["details"] == {"product_id": product["id"], "available": 1, "requested": 4}


@pytest.mark.parametrize("quantity", [0, -2, "3", 1.5, None])
def test_bad_quantity_is_400(api, quantity):
    product = _create_product(api)
    order = _create_order(api)

    resp = api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": quantity})

    assert resp.status_code == 400
    assert resp.get_json()["kind"] == "InvalidArgument"


def test_unknown_order_is_404(api):
    product = _create_product(api)

    resp = api.post("/api/orders/424242/lines", json={"product_id": product["id"], "quantity": 1})

    assert resp.status_code == 404


def test_product_validation(api):
    resp = api.post("/api/products", json={"name": "No price"})
    assert resp.status_code == 400

    resp = api.post("/api/products", json={"name": "Negative", "price_cents": -5})
    assert resp.status_code == 400

    product = _create_product(api)
    resp = api.patch(f"/api/products/{product['id']}", json={"stock": 100})
    assert resp.status_code == 400


def test_price_patch_and_restock(api):
    product = _create_product(api, stock=0)

    resp = api.patch(f"/api/products/{product['id']}", json={"price_cents": 1800})
    assert resp.get_json()["product"]["price_cents"] == 1800

    resp = api.post(f"/api/products/{product['id']}/restock", json={"quantity": 7})
    assert resp.get_json()["product"]["stock"] == 7


def test_delete_product_with_sales_is_409(api):
    product = _create_product(api)
    order = _create_order(api)
    api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": 1})

    resp = api.delete(f"/api/products/{product['id']}")

    assert resp.status_code == 409
    assert resp.get_json()["kind"] == "Conflict"


def test_pay_then_rollup(api):
    product = _create_product(api, price_cents=2000, cost_cents=1500)
    order = _create_order(api, created_at="2026-02-14T09:30:00Z")
    api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": 1})

    assert api.post(f"/api/orders/{order['id']}/pay").status_code == 200

    resp = api.get("/api/reports/profitability")
    assert resp.status_code == 200
    rows = resp.get_json()["rows"]
    assert rows == [{
        "year": 2026,
        "month": 2,
        "month_name": "February",
        "quarter": None,
        "category": "Office",
        "gross_revenue_cents": 2000,
        "net_margin_cents": 500,
        "margin_percent": "25.0%",
    }]

    assert api.get("/api/reports/profitability?granularity=week").status_code == 400


def test_rollup_without_paid_orders_is_empty(api):
    resp = api.get("/api/reports/profitability")

    assert resp.status_code == 200
    assert resp.get_json()["rows"] == []


def test_recompute_segments_endpoint(api):
    product = _create_product(api, price_cents=100_000, stock=20)
    order = _create_order(api)
    api.post(f"/api/orders/{order['id']}/lines", json={"product_id": product["id"], "quantity": 3})
    api.post(f"/api/orders/{order['id']}/pay")

    resp = api.post("/api/segments/recompute")

    assert resp.status_code == 200
    summary = resp.get_json()["summary"]
    assert summary["succeeded"] == 1
    assert summary["skipped"] == []
    # one order placed today
    customer = api.get(f"/api/customers/{order['customer_id']}").get_json()["customer"]
    assert customer["segment"] == "New"


def test_recompute_while_running_is_409(api):
    with segmentation_flight.hold():
        resp = api.post("/api/segments/recompute")

    assert resp.status_code == 409
    assert resp.get_json()["kind"] == "AlreadyRunning"


def test_cancel_endpoint(api):
    assert api.post("/api/segments/cancel").get_json() == {"cancelled": False}

    with segmentation_flight.hold() as lease:
        assert api.post("/api/segments/cancel").get_json() == {"cancelled": True}
        assert lease.lost()


def test_cancel_and_delete_order(api):
    order = _create_order(api)

    assert api.post(f"/api/orders/{order['id']}/cancel").get_json()["order"]["status"] == "Cancelled"
    assert api.post(f"/api/orders/{order['id']}/pay").status_code == 409
    assert api.delete(f"/api/orders/{order['id']}").status_code == 200
    assert api.get(f"/api/orders/{order['id']}").status_code == 404
