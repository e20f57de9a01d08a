import pytest
from fastapi.testclient import TestClient

from backend.app.deps import get_company_id, get_current_user
from backend.app.main import app
from backend.app.routers import definitions as definitions_router
from backend.app.routers import invoices as invoices_router
from backend.app.routers import payments as payments_router
from backend.app.routers import purchases as purchases_router

ADMIN = {"user_id": "user-1", "email": "owner@globex.test", "role": "company_admin", "company_id": "company-1"}
EMPLOYEE = {**ADMIN, "user_id": "user-2", "role": "employee"}


@pytest.fixture
def as_user():
    def _as(user):
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_company_id] = lambda: user["company_id"]
        return TestClient(app)

    yield _as
    app.dependency_overrides.clear()


@pytest.fixture
def api(as_user):
    return as_user(ADMIN)


PAYMENT = {
    "payment_date": "2026-02-01T10:00:00Z",
    "original_payment_amount": 100,
    "payment_method": "NEFT",
    "amount_paid_by_client": 100,
    "amount": 8300,
    "company_to_inr": 83,
    "pending_payment_in_inr": 74700,
    "client_currency": "usd",
    "company_currency": "USD",
    "reference_number": "UTR123",
}


def _invoice(store):
    store.set("invoices", "inv-1", {"invoiceNumber": "INV-0001", "companyAmount": 1000, "dueDate": "2099-01-01", "status": "pending"})


def test_record_and_delete_partial_payment(api, store, patch_open_store):
    patch_open_store(payments_router, store)
    _invoice(store)

    res = api.post("/payments/inv-1/partial", json=PAYMENT)
    assert res.status_code == 200
    ledger = res.json()["payment"]
    assert ledger["totalPaidUSD"] == 100
    entry = ledger["partialPayments"][0]
    assert entry["paymentMethod"] == "neft"
    assert entry["clientCurrency"] == "USD"
    assert entry["conversionRate"]["companyToINR"] == 83
    assert entry["referenceNumber"] == "UTR123"

    res = api.delete("/payments/inv-1/partial/3")
    assert res.status_code == 400

    res = api.delete("/payments/inv-1/partial/0")
    assert res.status_code == 200
    assert res.json()["payment"]["partialPayments"] == []


def test_partial_payment_rejects_non_positive_amount(api, store, patch_open_store):
    patch_open_store(payments_router, store)
    _invoice(store)
    res = api.post("/payments/inv-1/partial", json={**PAYMENT, "original_payment_amount": 0})
    assert res.status_code == 400


def test_partial_payment_for_missing_invoice_is_404(api, store, patch_open_store):
    patch_open_store(payments_router, store)
    res = api.post("/payments/nope/partial", json=PAYMENT)
    assert res.status_code == 404


def test_legacy_ledger_read_is_409(api, store, patch_open_store):
    patch_open_store(payments_router, store)
    store.set("payments", "inv-1", {"invoiceId": "inv-1", "amount": 100})
    res = api.get("/payments/inv-1")
    assert res.status_code == 409

    res = api.post("/payments/migrate-legacy")
    assert res.status_code == 200
    assert res.json()["migrated"] == 1
    assert api.get("/payments/inv-1").status_code == 200


def test_admin_only_routes_reject_employees(as_user, store, patch_open_store):
    patch_open_store(payments_router, store)
    client = as_user(EMPLOYEE)
    assert client.post("/payments/migrate-legacy").status_code == 403
    assert client.post("/payments/sync").status_code == 403


def test_manual_sync_reports_updates(api, store, patch_open_store):
    patch_open_store(payments_router, store)
    _invoice(store)
    store.set("payments", "inv-1", {"invoiceId": "inv-1", "totalPaidUSD": 1000, "totalPaidINR": 83000, "pendingINR": 0, "partialPayments": []})
    res = api.post("/payments/sync")
    assert res.status_code == 200
    assert res.json()["updated"] == ["inv-1"]
    assert store.get("invoices", "inv-1")["status"] == "paid"


def test_invoice_list_carries_status_display(api, store, patch_open_store):
    patch_open_store(invoices_router, store)
    store.set("invoices", "inv-9", {"invoiceNumber": "INV-0009", "companyAmount": 100, "dueDate": "2000-01-01", "paidUSD": 20, "status": "overdue"})
    res = api.get("/invoices")
    assert res.status_code == 200
    [inv] = res.json()["invoices"]
    assert inv["statusDisplay"].startswith("Partial - Overdue by ")
    assert inv["statusDetail"]["isPartialOverdue"] is True


def test_create_invoice_with_short_stock_is_409(api, store, patch_open_store):
    patch_open_store(invoices_router, store)
    store.set("companies", "company-1", {"name": "Globex", "country": "IN", "companyCurrency": "INR"})
    store.set("clients", "client-1", {"name": "Initech", "country": "IN", "clientCurrency": "INR"})
    body = {
        "client_id": "client-1",
        "issue_date": "2026-01-15T00:00:00Z",
        "due_date": "2026-03-01T00:00:00Z",
        "items": [
            {"description": "HDMI", "quantity": 3, "rate": 10, "source_type": "stock", "product_category": "Cables", "item_name": "HDMI", "product_version": "2.1"}
        ],
    }
    res = api.post("/invoices", json=body)
    assert res.status_code == 409
    data = res.json()
    assert data["isValid"] is False
    assert data["insufficientStockItems"][0]["itemName"] == "HDMI"


def test_delete_purchase_order_rolls_back(api, store, patch_open_store):
    patch_open_store(purchases_router, store)
    item = {"productCategory": "Network", "itemName": "Router", "productVersion": "AX", "quantityRequired": 2}
    req = store.insert("purchase_requests", {**item, "status": "PO Created"})
    order = store.insert("purchase_orders", {"status": "completed", "items": [item]})

    res = api.delete(f"/purchases/orders/{order}")
    assert res.status_code == 200
    assert res.json()["requests_reset"] == 1
    assert store.get("purchase_requests", req)["status"] == "approved"
    assert api.delete(f"/purchases/orders/{order}").status_code == 404


def test_definition_bulk_deletes(api, store, patch_open_store):
    patch_open_store(definitions_router, store)
    for name, version in [("Router", "AX"), ("Router", "AC"), ("Switch", "8p")]:
        res = api.post("/definitions/product", json={"product_category": "Network", "item_name": name, "product_version": version})
        assert res.status_code == 200
    assert api.post("/definitions/product", json={"product_category": "Network", "item_name": "Router", "product_version": "AX"}).status_code == 409

    res = api.delete("/definitions/product/category/Network/items/Router")
    assert res.json()["deleted"] == 2
    res = api.delete("/definitions/product/category/Network")
    assert res.json()["deleted"] == 1
    assert api.get("/definitions/product").json()["definitions"] == []
    assert api.get("/definitions/unknown").status_code == 422
