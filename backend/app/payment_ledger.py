"""
Per-invoice payment ledger (`payments/{invoiceId}`).

The ledger is the authoritative record of partial payments. Its running totals
are always recomputed from the `partialPayments` list; each entry keeps the
conversion rate captured when it was recorded, so historical INR amounts never
move when rates change.

Writes go ledger + outbox first (one batch), then the invoice mirror. A failed
mirror leaves the outbox row pending and the payment synchronizer repairs the
invoice from the ledger.
"""

from typing import Optional

from .docstore import DocStore, utcnow_iso
from .jsonlog import json_log
from .payment_guards import money

LEDGER_SCHEMA = 2
OUTBOX_COLLECTION = "payment_sync_outbox"


class LedgerError(Exception):
    pass


class LedgerNotFound(LedgerError):
    def __init__(self, invoice_id: str):
        super().__init__(f"payment ledger not found for invoice {invoice_id}")
        self.invoice_id = invoice_id


class InvalidPaymentIndex(LedgerError):
    def __init__(self, index: int, size: int):
        super().__init__(f"invalid payment index {index} (ledger has {size} payments)")
        self.index = index
        self.size = size


class LegacyLedgerDocument(LedgerError):
    """Raised when a flat, pre-ledger payment document is read before migration."""


def is_ledger_document(doc: dict) -> bool:
    return isinstance(doc.get("partialPayments"), list)


def normalize_ledger(doc: dict) -> dict:
    if not is_ledger_document(doc):
        raise LegacyLedgerDocument(f"payment {doc.get('id')} uses the legacy flat shape; run the migration")
    if doc.get("schema") != LEDGER_SCHEMA:
        doc = {**doc, "schema": LEDGER_SCHEMA}
    return doc


def ledger_totals(partial_payments: list) -> dict:
    total_usd = 0.0
    total_inr = 0.0
    by_client = 0.0
    for pp in partial_payments:
        original = money(pp.get("originalPaymentAmount"))
        rate = money((pp.get("conversionRate") or {}).get("companyToINR"))
        total_usd += original
        total_inr += original * rate
        by_client += money(pp.get("amountPaidByClient"))
    return {"totalPaidUSD": total_usd, "totalPaidINR": total_inr, "amountPaidByClient": by_client}


def ledger_status(pending_inr) -> str:
    return "completed" if money(pending_inr) <= 0 else "partial"


def _stamp_entry(payment: dict) -> dict:
    entry = dict(payment)
    rate = dict(entry.get("conversionRate") or {})
    rate.setdefault("timestamp", utcnow_iso())
    entry["conversionRate"] = rate
    return entry


def _enqueue_sync(store: DocStore, invoice_id: str, reason: str) -> None:
    store.insert(OUTBOX_COLLECTION, {"invoiceId": invoice_id, "reason": reason, "status": "pending"})


def mirror_to_invoice(store: DocStore, invoice_id: str, partial_payments: list, totals: dict) -> bool:
    """Copy ledger totals onto the invoice. Returns False (and logs) when the write fails."""
    try:
        with store.batch():
            found = store.update(
                "invoices",
                invoice_id,
                {
                    "partialPayments": partial_payments,
                    "paidUSD": totals["totalPaidUSD"],
                    "paidINR": totals["totalPaidINR"],
                    "amountPaidByClient": totals["amountPaidByClient"],
                },
            )
    except Exception as exc:
        json_log("warning", "payments.invoice_mirror_failed", invoice_id=invoice_id, error=str(exc))
        return False
    if not found:
        json_log("warning", "payments.invoice_mirror_missing", invoice_id=invoice_id)
    return found


def record_partial_payment(store: DocStore, invoice_id: str, payment: dict, invoice: Optional[dict] = None) -> dict:
    invoice = invoice or store.require("invoices", invoice_id)
    entry = _stamp_entry(payment)
    pending = max(0.0, money(entry.get("pendingPaymentInINR")))

    with store.batch():
        existing = store.get("payments", invoice_id)
        if existing:
            ledger = normalize_ledger(existing)
            partial_payments = list(ledger.get("partialPayments") or []) + [entry]
            totals = ledger_totals(partial_payments)
            fields = {
                "partialPayments": partial_payments,
                "totalPaidUSD": totals["totalPaidUSD"],
                "totalPaidINR": totals["totalPaidINR"],
                "pendingINR": pending,
                "status": ledger_status(pending),
                "schema": LEDGER_SCHEMA,
            }
            store.update("payments", invoice_id, fields)
            ledger = {**ledger, **fields}
        else:
            partial_payments = [entry]
            totals = ledger_totals(partial_payments)
            ledger = {
                "invoiceId": invoice_id,
                "invoiceNumber": invoice.get("invoiceNumber"),
                "clientId": invoice.get("clientId"),
                "clientName": invoice.get("clientName"),
                "totalPaidUSD": totals["totalPaidUSD"],
                "totalPaidINR": totals["totalPaidINR"],
                "pendingINR": pending,
                "status": ledger_status(pending),
                "partialPayments": partial_payments,
                "schema": LEDGER_SCHEMA,
            }
            store.set("payments", invoice_id, ledger)
            ledger = {**ledger, "id": invoice_id}
        _enqueue_sync(store, invoice_id, "payment.recorded")

    mirror_to_invoice(store, invoice_id, partial_payments, totals)
    json_log(
        "info",
        "payments.partial.recorded",
        invoice_id=invoice_id,
        count=len(partial_payments),
        total_paid_usd=totals["totalPaidUSD"],
        pending_inr=pending,
    )
    return ledger


def delete_partial_payment(store: DocStore, invoice_id: str, index: int) -> dict:
    with store.batch():
        existing = store.get("payments", invoice_id)
        if not existing:
            raise LedgerNotFound(invoice_id)
        ledger = normalize_ledger(existing)
        partial_payments = list(ledger.get("partialPayments") or [])
        if index < 0 or index >= len(partial_payments):
            raise InvalidPaymentIndex(index, len(partial_payments))

        del partial_payments[index]
        totals = ledger_totals(partial_payments)
        # The outstanding figure is the one stored with the (new) latest payment, not total - paid.
        if partial_payments:
            pending = max(0.0, money(partial_payments[-1].get("pendingPaymentInINR")))
        else:
            pending = money(ledger.get("pendingINR"))
        fields = {
            "partialPayments": partial_payments,
            "totalPaidUSD": totals["totalPaidUSD"],
            "totalPaidINR": totals["totalPaidINR"],
            "pendingINR": pending,
            "status": ledger_status(pending),
            "schema": LEDGER_SCHEMA,
        }
        store.update("payments", invoice_id, fields)
        _enqueue_sync(store, invoice_id, "payment.deleted")

    mirror_to_invoice(store, invoice_id, partial_payments, totals)
    json_log("info", "payments.partial.deleted", invoice_id=invoice_id, index=index, remaining=len(partial_payments))
    return {**ledger, **fields}


def update_payment_totals(store: DocStore, invoice_id: str, paid_usd, paid_inr, pending_inr) -> dict:
    with store.batch():
        existing = store.get("payments", invoice_id)
        if not existing:
            raise LedgerNotFound(invoice_id)
        fields = {
            "totalPaidUSD": money(paid_usd),
            "totalPaidINR": money(paid_inr),
            "pendingINR": money(pending_inr),
            "status": ledger_status(pending_inr),
        }
        store.update("payments", invoice_id, fields)
        _enqueue_sync(store, invoice_id, "payment.totals_overridden")
    return {**existing, **fields}


def migrate_legacy_payment(doc: dict) -> dict:
    """
    Convert one flat payment document into a ledger entry.

    Legacy documents carry no conversion snapshot, so the entry gets a 1:1
    companyToINR rate and is tagged `migratedFrom: legacy`.
    """
    original = money(doc.get("originalPaymentAmount", doc.get("amount")))
    pending = max(0.0, money(doc.get("pendingAmountINR")))
    entry = {
        "paymentDate": doc.get("paymentDate") or doc.get("createdAt"),
        "originalPaymentAmount": original,
        "paymentMethod": doc.get("paymentMethod") or "cash",
        "amountPaidByClient": money(doc.get("amountPaidByClient")),
        "amount": money(doc.get("amount")),
        "conversionRate": {"companyToINR": 1.0, "INRToClient": 1.0, "timestamp": doc.get("createdAt")},
        "pendingPaymentInINR": pending,
        "clientCurrency": doc.get("originalCurrency"),
        "companyCurrency": doc.get("originalCurrency"),
        "migratedFrom": "legacy",
    }
    for key in ("referenceNumber", "bankDetails", "notes"):
        if doc.get(key) is not None:
            entry[key] = doc[key]
    return entry


def migrate_legacy_payments(store: DocStore) -> dict:
    """Fold every flat payment document of the tenant into its invoice's ledger."""
    migrated = 0
    invoices_touched = set()
    with store.batch():
        legacy = [d for d in store.find("payments") if not is_ledger_document(d)]
        legacy.sort(key=lambda d: str(d.get("paymentDate") or d.get("createdAt") or ""))
        for doc in legacy:
            invoice_id = doc.get("invoiceId")
            if not invoice_id:
                continue
            entry = migrate_legacy_payment(doc)
            target = store.get("payments", invoice_id)
            if target and is_ledger_document(target):
                partial_payments = list(target["partialPayments"]) + [entry]
            else:
                partial_payments = [entry]
                target = {
                    "invoiceId": invoice_id,
                    "invoiceNumber": doc.get("invoiceNumber"),
                    "clientId": doc.get("clientId"),
                    "clientName": doc.get("clientName"),
                }
            totals = ledger_totals(partial_payments)
            pending = entry["pendingPaymentInINR"]
            ledger = {
                **{k: v for k, v in target.items() if k != "id"},
                "partialPayments": partial_payments,
                "totalPaidUSD": totals["totalPaidUSD"],
                "totalPaidINR": totals["totalPaidINR"],
                "pendingINR": pending,
                "status": ledger_status(pending),
                "schema": LEDGER_SCHEMA,
            }
            if doc["id"] != invoice_id:
                store.delete("payments", doc["id"])
            store.set("payments", invoice_id, ledger)
            invoices_touched.add(invoice_id)
            migrated += 1
        for invoice_id in sorted(invoices_touched):
            _enqueue_sync(store, invoice_id, "payment.migrated")
    json_log("info", "payments.legacy.migrated", migrated=migrated, invoices=len(invoices_touched))
    return {"migrated": migrated, "invoices": len(invoices_touched)}
