from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import List, Literal, Optional

from ..docstore import open_store
from ..deps import get_company_id, get_current_user, require_role
from ..jsonlog import json_log
from ..payment_guards import money
from ..purchase_orders import create_purchase_order, delete_with_rollback
from ..validation import PurchaseOrderStatus

router = APIRouter(prefix="/purchases", tags=["purchases"])

RequestStatus = Literal["pending", "approved", "rejected", "PO Created"]

# stock_details counters that track each request status.
_STATUS_COUNTERS = {
    "pending": "pendingQuantity",
    "approved": "approvedQuantity",
    "rejected": "rejectedQuantity",
}


class PurchaseRequestIn(BaseModel):
    product_category: str
    item_name: str
    product_version: str
    quantity_required: float = Field(gt=0)
    unit: str = "pcs"
    notes: Optional[str] = None


class RequestStatusIn(BaseModel):
    status: Literal["approved", "rejected"]


class OrderItemIn(BaseModel):
    product_category: str
    item_name: str
    product_version: str
    quantity_required: float = Field(gt=0)
    price_per_unit: float = Field(default=0, ge=0)
    unit: str = "pcs"


class PurchaseOrderIn(BaseModel):
    supplier: Optional[str] = None
    status: PurchaseOrderStatus = "draft"
    items: List[OrderItemIn]
    request_ids: List[str] = []
    notes: Optional[str] = None


def _item_doc(item) -> dict:
    return {
        "productCategory": item.product_category,
        "itemName": item.item_name,
        "productVersion": item.product_version,
        "quantityRequired": item.quantity_required,
        "unit": item.unit,
    }


def _bump_stock_counter(store, req: dict, status: str, delta: float) -> None:
    counter = _STATUS_COUNTERS.get(status)
    if not counter:
        return
    for stock in store.find(
        "stock_details",
        productCategory=req.get("productCategory"),
        itemName=req.get("itemName"),
        productVersion=req.get("productVersion"),
    ):
        store.update(
            "stock_details",
            stock["id"],
            {counter: max(0.0, money(stock.get(counter)) + delta), "lastRequestStatus": status},
        )


@router.get("/requests")
def list_requests(status: Optional[RequestStatus] = Query(default=None), company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        reqs = store.find("purchase_requests", status=status) if status else store.find("purchase_requests")
    return {"requests": reqs}


@router.post("/requests")
def create_request(data: PurchaseRequestIn, company_id: str = Depends(get_company_id), user=Depends(get_current_user)):
    doc = {**_item_doc(data), "status": "pending", "requestedBy": user["user_id"]}
    if data.notes:
        doc["notes"] = data.notes
    with open_store(company_id) as store:
        with store.batch():
            request_id = store.insert("purchase_requests", doc)
            _bump_stock_counter(store, doc, "pending", data.quantity_required)
    return {"id": request_id}


@router.post("/requests/{request_id}/status", dependencies=[Depends(require_role("company_admin"))])
def set_request_status(request_id: str, data: RequestStatusIn, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        req = store.require("purchase_requests", request_id)
        if req.get("status") != "pending":
            raise HTTPException(status_code=400, detail=f"request is {req.get('status')}, expected pending")
        qty = money(req.get("quantityRequired"))
        with store.batch():
            store.update("purchase_requests", request_id, {"status": data.status})
            _bump_stock_counter(store, req, "pending", -qty)
            _bump_stock_counter(store, req, data.status, qty)
    json_log("info", "purchase_requests.status_changed", request_id=request_id, status=data.status)
    return {"ok": True}


@router.get("/orders")
def list_orders(company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return {"orders": store.find("purchase_orders")}


@router.get("/orders/{order_id}")
def get_order(order_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return {"order": store.require("purchase_orders", order_id)}


@router.post("/orders", dependencies=[Depends(require_role("company_admin"))])
def create_order(data: PurchaseOrderIn, company_id: str = Depends(get_company_id), user=Depends(get_current_user)):
    order = {
        "supplier": data.supplier,
        "status": data.status,
        "items": [{**_item_doc(i), "pricePerUnit": i.price_per_unit} for i in data.items],
        "createdBy": user["user_id"],
    }
    if data.notes:
        order["notes"] = data.notes
    with open_store(company_id) as store:
        order_id = create_purchase_order(store, order, data.request_ids)
    return {"id": order_id}


@router.delete("/orders/{order_id}", dependencies=[Depends(require_role("company_admin"))])
def delete_order(order_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return delete_with_rollback(store, order_id)
