import pytest

from backend.app.docstore import DocumentNotFound
from backend.app.purchase_orders import create_purchase_order, delete_with_rollback


def _item(name="Router", qty=4):
    return {"productCategory": "Network", "itemName": name, "productVersion": "AX3000", "quantityRequired": qty, "pricePerUnit": 25}


@pytest.fixture
def seeded(store):
    req = store.insert("purchase_requests", {**_item(), "status": "approved"})
    stock = store.insert(
        "stock_details",
        {**{k: v for k, v in _item().items() if k != "quantityRequired"}, "currentStock": 1, "poCreatedQuantity": 0, "lastRequestStatus": "approved"},
    )
    return store, req, stock


def test_completed_order_marks_requests_and_stock(seeded):
    store, req, stock = seeded
    order_id = create_purchase_order(store, {"status": "completed", "supplier": "Acme", "items": [_item()]}, [req])

    assert store.get("purchase_orders", order_id)["subtotal"] == 100
    request = store.get("purchase_requests", req)
    assert request["status"] == "PO Created"
    assert request["purchaseOrderId"] == order_id
    stock_doc = store.get("stock_details", stock)
    assert stock_doc["poCreatedQuantity"] == 4
    assert stock_doc["lastRequestStatus"] == "po_created"


def test_draft_order_leaves_requests_alone(seeded):
    store, req, stock = seeded
    create_purchase_order(store, {"status": "draft", "items": [_item()]}, [req])
    assert store.get("purchase_requests", req)["status"] == "approved"
    assert store.get("stock_details", stock)["poCreatedQuantity"] == 0


def test_delete_with_rollback_resets_markers(seeded):
    store, req, stock = seeded
    order_id = create_purchase_order(store, {"status": "completed", "items": [_item()]}, [req])

    result = delete_with_rollback(store, order_id)

    assert result == {"ok": True, "requests_reset": 1, "stock_reset": 1}
    assert store.get("purchase_orders", order_id) is None
    assert store.get("purchase_requests", req)["status"] == "approved"
    stock_doc = store.get("stock_details", stock)
    assert stock_doc["poCreatedQuantity"] == 0
    assert stock_doc["lastRequestStatus"] == "approved"


def test_delete_with_rollback_is_all_or_nothing(seeded):
    store, req, stock = seeded
    order_id = create_purchase_order(store, {"status": "completed", "items": [_item()]}, [req])
    store.fail("delete", "purchase_orders")

    with pytest.raises(RuntimeError):
        delete_with_rollback(store, order_id)

    assert store.get("purchase_orders", order_id) is not None
    assert store.get("purchase_requests", req)["status"] == "PO Created"
    assert store.get("stock_details", stock)["poCreatedQuantity"] == 4


def test_delete_missing_order_raises(store):
    with pytest.raises(DocumentNotFound):
        delete_with_rollback(store, "nope")
