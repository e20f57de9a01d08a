from .docstore import DocStore, DocumentNotFound
from .jsonlog import json_log
from .payment_guards import money


def _item_filters(item: dict) -> dict:
    return {
        "productCategory": item.get("productCategory"),
        "itemName": item.get("itemName"),
        "productVersion": item.get("productVersion"),
    }


def delete_with_rollback(store: DocStore, order_id: str) -> dict:
    """
    Delete a purchase order and undo what creating it did.

    Matching purchase requests go back to `approved` and matching stock details
    lose their PO markers. Everything runs in one batch, so either the order is
    gone and every marker is reset, or nothing changed.
    """
    order = store.get("purchase_orders", order_id)
    if order is None:
        raise DocumentNotFound("purchase_orders", order_id)

    requests_reset = 0
    stock_reset = 0
    with store.batch():
        for item in order.get("items") or []:
            filters = _item_filters(item)
            for req in store.find("purchase_requests", **filters):
                store.update("purchase_requests", req["id"], {"status": "approved"})
                requests_reset += 1
            for stock in store.find("stock_details", **filters):
                store.update(
                    "stock_details",
                    stock["id"],
                    {"lastRequestStatus": "approved", "poCreatedQuantity": 0},
                )
                stock_reset += 1
        store.delete("purchase_orders", order_id)

    json_log(
        "info",
        "purchase_orders.deleted_with_rollback",
        order_id=order_id,
        requests_reset=requests_reset,
        stock_reset=stock_reset,
    )
    return {"ok": True, "requests_reset": requests_reset, "stock_reset": stock_reset}


def create_purchase_order(store: DocStore, order: dict, request_ids: list[str]) -> str:
    """
    Store a purchase order. Completed orders also mark the selected purchase
    requests `PO Created` and add their quantities to the matching stock
    details' `poCreatedQuantity`.
    """
    items = order.get("items") or []
    subtotal = sum(money(i.get("quantityRequired")) * money(i.get("pricePerUnit")) for i in items)
    with store.batch():
        order_id = store.insert("purchase_orders", {**order, "subtotal": subtotal})
        if order.get("status") == "completed":
            for request_id in request_ids:
                req = store.require("purchase_requests", request_id)
                store.update("purchase_requests", request_id, {"status": "PO Created", "purchaseOrderId": order_id})
                for stock in store.find("stock_details", **_item_filters(req)):
                    store.update(
                        "stock_details",
                        stock["id"],
                        {
                            "lastRequestStatus": "po_created",
                            "poCreatedQuantity": money(stock.get("poCreatedQuantity"))
                            + money(req.get("quantityRequired")),
                        },
                    )
    json_log("info", "purchase_orders.created", order_id=order_id, status=order.get("status"), items=len(items))
    return order_id
