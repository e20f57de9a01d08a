from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from ..docstore import open_store
from ..deps import get_company_id, require_role
from ..payment_guards import assert_positive_amount
from ..payment_ledger import (
    delete_partial_payment,
    migrate_legacy_payments,
    normalize_ledger,
    is_ledger_document,
    record_partial_payment,
    update_payment_totals,
)
from ..payment_sync import PaymentStatusSynchronizer
from ..validation import CurrencyCode, PaymentMethod

router = APIRouter(prefix="/payments", tags=["payments"])


class BankDetailsIn(BaseModel):
    from_account: Optional[str] = None
    to_account: Optional[str] = None
    ifsc_code: Optional[str] = None


class PartialPaymentIn(BaseModel):
    payment_date: datetime
    original_payment_amount: float
    payment_method: PaymentMethod
    amount_paid_by_client: float = 0
    amount: float
    company_to_inr: float = Field(gt=0)
    inr_to_client: float = Field(default=1, gt=0)
    pending_payment_in_inr: float
    client_currency: CurrencyCode
    company_currency: CurrencyCode
    reference_number: Optional[str] = None
    bank_details: Optional[BankDetailsIn] = None
    notes: Optional[str] = None


class PaymentTotalsIn(BaseModel):
    total_paid_usd: float
    total_paid_inr: float
    pending_inr: float


def partial_payment_doc(data: PartialPaymentIn) -> dict:
    doc = {
        "paymentDate": data.payment_date.isoformat(),
        "originalPaymentAmount": data.original_payment_amount,
        "paymentMethod": data.payment_method,
        "amountPaidByClient": data.amount_paid_by_client,
        "amount": data.amount,
        "conversionRate": {"companyToINR": data.company_to_inr, "INRToClient": data.inr_to_client},
        "pendingPaymentInINR": data.pending_payment_in_inr,
        "clientCurrency": data.client_currency,
        "companyCurrency": data.company_currency,
    }
    if data.reference_number:
        doc["referenceNumber"] = data.reference_number
    if data.bank_details:
        doc["bankDetails"] = {
            "fromAccount": data.bank_details.from_account,
            "toAccount": data.bank_details.to_account,
            "ifscCode": data.bank_details.ifsc_code,
        }
    if data.notes:
        doc["notes"] = data.notes
    return doc


@router.get("")
def list_payments(company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        docs = store.find("payments")
    ledgers = [normalize_ledger(d) for d in docs if is_ledger_document(d)]
    return {"payments": ledgers, "legacy_count": len(docs) - len(ledgers)}


@router.get("/{invoice_id}")
def get_payment_ledger(invoice_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        doc = store.get("payments", invoice_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="payment ledger not found")
    return {"payment": normalize_ledger(doc)}


@router.post("/{invoice_id}/partial")
def add_partial_payment(invoice_id: str, data: PartialPaymentIn, company_id: str = Depends(get_company_id)):
    assert_positive_amount(data.original_payment_amount, detail="payment amount must be > 0")
    with open_store(company_id) as store:
        ledger = record_partial_payment(store, invoice_id, partial_payment_doc(data))
    return {"ok": True, "payment": ledger}


@router.delete("/{invoice_id}/partial/{index}")
def remove_partial_payment(invoice_id: str, index: int, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        ledger = delete_partial_payment(store, invoice_id, index)
    return {"ok": True, "payment": ledger}


@router.put("/{invoice_id}/totals", dependencies=[Depends(require_role("company_admin"))])
def override_payment_totals(invoice_id: str, data: PaymentTotalsIn, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        ledger = update_payment_totals(store, invoice_id, data.total_paid_usd, data.total_paid_inr, data.pending_inr)
    return {"ok": True, "payment": ledger}


@router.post("/migrate-legacy", dependencies=[Depends(require_role("company_admin"))])
def migrate_legacy(company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        result = migrate_legacy_payments(store)
    return {"ok": True, **result}


@router.post("/sync", dependencies=[Depends(require_role("company_admin"))])
def sync_invoices_now(company_id: str = Depends(get_company_id)):
    # One immediate pass, outside the worker's debounce.
    with open_store(company_id) as store:
        report = PaymentStatusSynchronizer(quiet_period=0).run_pass(store)
    return {
        "ok": True,
        "examined": report.examined,
        "updated": report.updated,
        "outbox_processed": report.outbox_processed,
    }
