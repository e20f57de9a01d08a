from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Literal, Optional

from ..docstore import open_store
from ..deps import get_company_id, require_role
from ..invoice_stock import get_stock_info, stock_status, with_stock_status

router = APIRouter(prefix="/inventory", tags=["inventory"])

StockStatus = Literal["critical", "low", "normal"]


class StockIn(BaseModel):
    product_category: str
    item_name: str
    product_version: str
    current_stock: float = Field(default=0, ge=0)
    unit: str = "pcs"
    price_per_unit: float = Field(default=0, ge=0)
    min_required: float = Field(default=0, ge=0)
    safe_quantity_limit: float = Field(default=0, ge=0)


class StockUpdateIn(BaseModel):
    current_stock: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    price_per_unit: Optional[float] = Field(default=None, ge=0)
    min_required: Optional[float] = Field(default=None, ge=0)
    safe_quantity_limit: Optional[float] = Field(default=None, ge=0)
    display_status: Optional[str] = None


_STOCK_FIELDS = {
    "product_category": "productCategory",
    "item_name": "itemName",
    "product_version": "productVersion",
    "current_stock": "currentStock",
    "unit": "unit",
    "price_per_unit": "pricePerUnit",
    "min_required": "minRequired",
    "safe_quantity_limit": "safeQuantityLimit",
    "display_status": "displayStatus",
}


def stock_doc(payload: dict) -> dict:
    return {_STOCK_FIELDS[k]: v for k, v in payload.items()}


@router.get("/stock")
def list_stock(
    status: Optional[StockStatus] = Query(default=None),
    product_category: Optional[str] = Query(default=None),
    company_id: str = Depends(get_company_id),
):
    with open_store(company_id) as store:
        if product_category:
            docs = store.find("stock_details", productCategory=product_category)
        else:
            docs = store.find("stock_details")
    if status:
        docs = [d for d in docs if stock_status(d) == status]
    return {"stock": [with_stock_status(d) for d in docs]}


@router.get("/stock/lookup")
def lookup_stock(
    product_category: str = Query(...),
    item_name: str = Query(...),
    product_version: str = Query(...),
    company_id: str = Depends(get_company_id),
):
    with open_store(company_id) as store:
        info = get_stock_info(store, product_category, item_name, product_version)
    if info is None:
        raise HTTPException(status_code=404, detail="stock item not found")
    return {"stock": info}


@router.post("/stock", dependencies=[Depends(require_role("company_admin"))])
def create_stock(data: StockIn, company_id: str = Depends(get_company_id)):
    doc = stock_doc(data.model_dump())
    with open_store(company_id) as store:
        existing = store.find(
            "stock_details",
            productCategory=doc["productCategory"],
            itemName=doc["itemName"],
            productVersion=doc["productVersion"],
        )
        if existing:
            raise HTTPException(status_code=409, detail="stock item already exists")
        doc.update(
            {
                "displayStatus": "active",
                "pendingQuantity": 0,
                "approvedQuantity": 0,
                "poCreatedQuantity": 0,
                "rejectedQuantity": 0,
            }
        )
        stock_id = store.insert("stock_details", doc)
    return {"id": stock_id}


@router.patch("/stock/{stock_id}", dependencies=[Depends(require_role("company_admin"))])
def update_stock(stock_id: str, data: StockUpdateIn, company_id: str = Depends(get_company_id)):
    payload = data.model_dump(exclude_unset=True, exclude_none=True)
    if not payload:
        raise HTTPException(status_code=400, detail="no fields to update")
    with open_store(company_id) as store:
        store.require("stock_details", stock_id)
        store.update("stock_details", stock_id, stock_doc(payload))
        doc = store.require("stock_details", stock_id)
    return {"stock": with_stock_status(doc)}
