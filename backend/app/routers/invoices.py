from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from ..docstore import open_store
from ..deps import get_company_id, get_current_user
from ..invoice_status import calculate_invoice_status, status_display
from ..invoice_stock import validate_availability
from ..invoices import create_invoice, delete_invoice, recompute_status, update_invoice
from ..payment_guards import money
from ..validation import InvoiceStatus, LineSourceType

router = APIRouter(prefix="/invoices", tags=["invoices"])


class InvoiceItemIn(BaseModel):
    description: str = ""
    quantity: float = Field(ge=0)
    rate: float = Field(default=0, ge=0)
    amount: Optional[float] = None
    source_type: LineSourceType = "manual"
    product_category: Optional[str] = None
    item_name: Optional[str] = None
    product_version: Optional[str] = None
    unit: Optional[str] = None
    discount: Optional[str] = None
    hsn: Optional[str] = None


class InvoiceIn(BaseModel):
    client_id: str
    invoice_number: Optional[str] = None
    issue_date: datetime
    due_date: datetime
    items: List[InvoiceItemIn]
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    allow_insufficient_stock: bool = False


class InvoiceUpdateIn(BaseModel):
    due_date: Optional[datetime] = None
    status: Optional[InvoiceStatus] = None
    notes: Optional[str] = None
    terms: Optional[str] = None


class StockCheckIn(BaseModel):
    items: List[InvoiceItemIn]


def item_doc(item: InvoiceItemIn) -> dict:
    doc = {
        "description": item.description,
        "quantity": item.quantity,
        "rate": item.rate,
        "amount": item.amount,
        "sourceType": item.source_type,
    }
    optional = {
        "productCategory": item.product_category,
        "itemName": item.item_name,
        "productVersion": item.product_version,
        "unit": item.unit,
        "discount": item.discount,
        "hsn": item.hsn,
    }
    doc.update({k: v for k, v in optional.items() if v is not None})
    return doc


def _with_status_display(invoice: dict) -> dict:
    result = calculate_invoice_status(invoice, money(invoice.get("paidUSD")))
    return {**invoice, "statusDetail": result.as_dict(), "statusDisplay": status_display(result)}


@router.get("")
def list_invoices(
    status: Optional[InvoiceStatus] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    company_id: str = Depends(get_company_id),
):
    filters = {}
    if status:
        filters["status"] = status
    if client_id:
        filters["clientId"] = client_id
    with open_store(company_id) as store:
        invoices = store.find("invoices", **filters)
    return {"invoices": [_with_status_display(i) for i in invoices]}


@router.get("/{invoice_id}")
def get_invoice(invoice_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        invoice = store.require("invoices", invoice_id)
    return {"invoice": _with_status_display(invoice)}


@router.post("/validate-stock")
def check_stock(data: StockCheckIn, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        result = validate_availability(store, [item_doc(i) for i in data.items])
    return result.as_dict()


@router.post("")
def create(data: InvoiceIn, company_id: str = Depends(get_company_id), user=Depends(get_current_user)):
    payload = {
        "clientId": data.client_id,
        "invoiceNumber": data.invoice_number,
        "issueDate": data.issue_date.isoformat(),
        "dueDate": data.due_date.isoformat(),
        "items": [item_doc(i) for i in data.items],
        "status": data.status,
        "notes": data.notes,
        "terms": data.terms,
        "createdBy": user["user_id"],
    }
    with open_store(company_id) as store:
        invoice = create_invoice(
            store,
            {k: v for k, v in payload.items() if v is not None},
            allow_insufficient_stock=data.allow_insufficient_stock,
        )
    return {"id": invoice["id"], "invoice": invoice}


@router.patch("/{invoice_id}")
def update(invoice_id: str, data: InvoiceUpdateIn, company_id: str = Depends(get_company_id)):
    fields = {}
    if data.due_date is not None:
        fields["dueDate"] = data.due_date.isoformat()
    if data.status is not None:
        fields["status"] = data.status
    if data.notes is not None:
        fields["notes"] = data.notes
    if data.terms is not None:
        fields["terms"] = data.terms
    with open_store(company_id) as store:
        invoice = update_invoice(store, invoice_id, fields)
    return {"invoice": invoice}


@router.delete("/{invoice_id}")
def delete(invoice_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return delete_invoice(store, invoice_id)


@router.post("/{invoice_id}/recompute-status")
def recompute(invoice_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        result = recompute_status(store, invoice_id)
    return {"ok": True, **result}
