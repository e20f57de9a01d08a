"""
Invoice aggregate: creation with company/client snapshots, updates, deletion.

Invoices copy the company and client fields they print at creation time, so
later edits to either never rewrite historical invoices.
"""

from datetime import datetime, timezone
from typing import Optional

from .docstore import DocStore, DocumentNotFound, utcnow_iso
from .exchange_rates import ExchangeRateService, get_exchange_rate_service
from .invoice_status import calculate_invoice_status
from .invoice_stock import StockValidationResult, apply_on_create, apply_on_delete, validate_availability
from .jsonlog import json_log
from .lookup_cache import client_cache, company_cache
from .payment_guards import money, round_money


class InsufficientStock(Exception):
    def __init__(self, result: StockValidationResult):
        super().__init__(result.message or "insufficient stock")
        self.result = result


# Company fields copied onto invoices only when present.
_OPTIONAL_COMPANY_FIELDS = {
    "companyEmail": "email",
    "companyWebsite": "website",
    "companyPhone": "phone",
    "companyCity": "city",
    "companyBankDetails": "bankDetails",
    "bankInfo": "bankInfo",
    "logoUrl": "logoUrl",
    "signatureUrl": "signatureUrl",
    "ownerSignatureUrl": "ownerSignatureUrl",
    "companyLogoUrl": "logo",
    "businessOwnerName": "businessOwnerName",
    "businessOwnerPosition": "businessOwnerPosition",
}

_OPTIONAL_CLIENT_FIELDS = {
    "clientPhone": "phone",
    "clientPincode": "pincode",
    "clientTaxInfo": "taxInfo",
}


def load_company(store: DocStore, company_id: str) -> dict:
    company = company_cache.get_or_load(company_id, lambda: store.get("companies", company_id))
    if company is None:
        raise DocumentNotFound("companies", company_id)
    return company


def load_client(store: DocStore, client_id: str) -> dict:
    key = f"{store.company_id}:{client_id}"
    client = client_cache.get_or_load(key, lambda: store.get("clients", client_id))
    if client is None:
        raise DocumentNotFound("clients", client_id)
    return client


def company_snapshot(company: dict) -> dict:
    snap = {
        "companyCountry": company.get("country") or "IN",
        "companyName": company.get("companyName") or company.get("name") or "",
        "companyCurrency": company.get("companyCurrency") or "INR",
        "companyAddress": company.get("streetAddress") or company.get("address") or "",
    }
    tax = company.get("taxInfo")
    if tax:
        snap["companyTaxInfo"] = {
            "primaryType": tax.get("primaryType"),
            "primaryId": tax.get("primaryId"),
            "secondaryId": tax.get("secondaryId"),
        }
    for target, source in _OPTIONAL_COMPANY_FIELDS.items():
        if company.get(source):
            snap[target] = company[source]
    return snap


def client_snapshot(client: dict) -> dict:
    snap = {
        "clientCountry": client.get("country") or "IN",
        "clientAddress": client.get("address") or "",
        "clientCurrency": client.get("clientCurrency") or "INR",
        "clientState": client.get("state") or "",
        "clientName": client.get("name") or "",
        "clientEmail": client.get("email") or "",
    }
    for target, source in _OPTIONAL_CLIENT_FIELDS.items():
        if client.get(source):
            snap[target] = client[source]
    return snap


def calculate_taxes(subtotal: float, company: dict, client_country: str) -> dict:
    defaults = (company.get("invoiceSettings") or {}).get("defaultTaxes")
    company_country = company.get("country") or "IN"
    if defaults:
        taxes = [{"name": t.get("name"), "rate": money(t.get("rate"))} for t in defaults]
    elif company_country == "IN":
        if company_country != client_country:
            taxes = [{"name": "IGST", "rate": money(company.get("defaultIGST") or 18)}]
        else:
            taxes = [
                {"name": "CGST", "rate": money(company.get("defaultCGST") or 9)},
                {"name": "SGST", "rate": money(company.get("defaultSGST") or 9)},
            ]
    else:
        taxes = []

    for t in taxes:
        t["amount"] = subtotal * t["rate"] / 100
    by_name = {str(t["name"]).upper(): t["amount"] for t in taxes}
    total_tax = sum(t["amount"] for t in taxes)
    return {
        "taxes": taxes,
        "cgst": by_name.get("CGST", 0.0),
        "sgst": by_name.get("SGST", 0.0),
        "igst": by_name.get("IGST", 0.0),
        "totalGst": total_tax,
    }


def normalize_items(items: list[dict]) -> list[dict]:
    out = []
    for item in items or []:
        line = dict(item)
        line["quantity"] = money(line.get("quantity"))
        line["rate"] = money(line.get("rate"))
        if line.get("amount") is None:
            line["amount"] = line["quantity"] * line["rate"]
        line.setdefault("sourceType", "manual")
        out.append(line)
    return out


def next_invoice_number(company: dict) -> tuple[str, int]:
    cfg = company.get("invoiceSettings") or {}
    prefix = cfg.get("prefix") or "INV-"
    number = int(cfg.get("nextNumber") or 1)
    return f"{prefix}{number:04d}", number + 1


def create_invoice(
    store: DocStore,
    data: dict,
    *,
    allow_insufficient_stock: bool = False,
    fx: Optional[ExchangeRateService] = None,
    now: Optional[datetime] = None,
) -> dict:
    fx = fx or get_exchange_rate_service()
    company = load_company(store, store.company_id)
    client = load_client(store, data["clientId"])
    items = normalize_items(data.get("items") or [])

    validation = validate_availability(store, items)
    if not validation.is_valid and not allow_insufficient_stock:
        raise InsufficientStock(validation)

    company_snap = company_snapshot(company)
    client_snap = client_snapshot(client)
    subtotal = sum(money(i["amount"]) for i in items)
    taxes = calculate_taxes(subtotal, company, client_snap["clientCountry"])
    total = subtotal + taxes["totalGst"]

    amount_inr, company_to_inr = fx.convert_to_inr(total, company_snap["companyCurrency"])
    client_amount, inr_to_client = fx.convert_from_inr(amount_inr, client_snap["clientCurrency"])

    invoice = {
        **{k: v for k, v in data.items() if k not in ("items", "status")},
        **company_snap,
        **client_snap,
        "items": items,
        "subtotal": subtotal,
        "cgst": taxes["cgst"],
        "sgst": taxes["sgst"],
        "igst": taxes["igst"],
        "totalGst": taxes["totalGst"],
        "taxes": taxes["taxes"],
        "totalAmount": total,
        "companyAmount": total,
        "totalAmountINR": round_money(amount_inr),
        "clientAmount": round_money(client_amount),
        "conversionRate": {
            "companyToINR": company_to_inr,
            "INRToClient": inr_to_client,
            "timestamp": utcnow_iso(),
        },
        "amountPaidByClient": 0,
        "paidUSD": 0,
        "paidINR": 0,
        "pendingINR": round_money(amount_inr),
        "partialPayments": [],
    }
    invoice["status"] = data.get("status") or calculate_invoice_status(invoice, 0, now=now).status

    # Invoice, numbering and stock decrement land together.
    with store.batch():
        if not invoice.get("invoiceNumber"):
            # The counter is read under a row lock, never from the lookup cache.
            current = store.get_for_update("companies", store.company_id) or company
            invoice["invoiceNumber"], next_number = next_invoice_number(current)
            settings_doc = {**(current.get("invoiceSettings") or {}), "nextNumber": next_number}
            store.update("companies", store.company_id, {"invoiceSettings": settings_doc})
            company_cache.invalidate(store.company_id)
        invoice_id = store.insert("invoices", invoice)
        apply_on_create(store, items)

    json_log(
        "info",
        "invoices.created",
        invoice_id=invoice_id,
        invoice_number=invoice["invoiceNumber"],
        company_id=store.company_id,
        total=total,
        stock_lines=sum(1 for i in items if i.get("sourceType") == "stock"),
    )
    return {**invoice, "id": invoice_id, "stockValidation": validation.as_dict()}


# Fields owned by the ledger/synchronizer or frozen at creation.
_IMMUTABLE_FIELDS = {
    "id",
    "companyId",
    "items",
    "paidUSD",
    "paidINR",
    "pendingINR",
    "partialPayments",
    "amountPaidByClient",
    "createdAt",
}


# Patching any of these can move the invoice across a status boundary.
_STATUS_INPUTS = {"dueDate", "companyAmount", "totalAmount"}


def update_invoice(store: DocStore, invoice_id: str, fields: dict, now: Optional[datetime] = None) -> dict:
    store.require("invoices", invoice_id)
    patch = {k: v for k, v in fields.items() if k not in _IMMUTABLE_FIELDS}
    if patch:
        store.update("invoices", invoice_id, patch)
    if _STATUS_INPUTS.intersection(patch) and "status" not in patch and store.get("payments", invoice_id) is not None:
        recompute_status(store, invoice_id, now=now)
    return store.require("invoices", invoice_id)


def delete_invoice(store: DocStore, invoice_id: str) -> dict:
    invoice = store.require("invoices", invoice_id)
    with store.batch():
        restored = apply_on_delete(store, invoice.get("items") or [])
        store.delete("payments", invoice_id)
        store.delete("invoices", invoice_id)
    json_log("info", "invoices.deleted", invoice_id=invoice_id, stock_restored=restored)
    return {"ok": True, "stock_restored": restored}


def recompute_status(store: DocStore, invoice_id: str, now: Optional[datetime] = None) -> dict:
    invoice = store.require("invoices", invoice_id)
    ledger = store.get("payments", invoice_id)
    paid = money((ledger or {}).get("totalPaidUSD", invoice.get("paidUSD")))
    result = calculate_invoice_status(invoice, paid, now=now or datetime.now(timezone.utc))
    if invoice.get("status") != result.status:
        store.update("invoices", invoice_id, {"status": result.status})
    return result.as_dict()
