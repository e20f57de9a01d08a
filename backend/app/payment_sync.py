"""
Payment -> invoice reconciliation.

The ledger (`payments`) is authoritative; invoices carry a denormalized copy of
its totals plus a derived status. `PaymentStatusSynchronizer` compares both
collections for one tenant and rewrites invoices that drifted. It is driven by
the payment sync worker: every observed change calls `notify()`, and `poll()`
only runs a pass once changes have been quiet for `quiet_period` seconds.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import settings
from .docstore import DocStore, utcnow_iso
from .invoice_status import calculate_invoice_status
from .jsonlog import json_log
from .payment_guards import has_drifted, money, round_money
from .payment_ledger import OUTBOX_COLLECTION, is_ledger_document, ledger_totals


@dataclass
class SyncReport:
    examined: int = 0
    updated: list = field(default_factory=list)
    unchanged: int = 0
    outbox_processed: int = 0


def ledger_key(invoice_id: str, ledger: dict) -> str:
    return "{}-{:.2f}-{:.2f}-{}".format(
        invoice_id,
        money(ledger.get("totalPaidUSD")),
        money(ledger.get("totalPaidINR")),
        ledger.get("updatedAt") or "",
    )


def plan_invoice_update(invoice: dict, ledger: dict, now: Optional[datetime] = None) -> Optional[dict]:
    """Fields to write on `invoice` so it matches `ledger`, or None when it already does."""
    paid_usd = money(ledger.get("totalPaidUSD"))
    paid_inr = money(ledger.get("totalPaidINR"))
    pending_inr = money(ledger.get("pendingINR"))
    status = calculate_invoice_status(invoice, paid_usd, now=now).status

    needs_update = (
        has_drifted(invoice.get("paidUSD"), paid_usd)
        or has_drifted(invoice.get("paidINR"), paid_inr)
        or has_drifted(invoice.get("pendingINR"), pending_inr)
        or invoice.get("status") != status
    )
    if not needs_update:
        return None
    return {
        "paidUSD": round_money(paid_usd),
        "paidINR": round_money(paid_inr),
        "pendingINR": round_money(pending_inr),
        "status": status,
    }


def _mirror_fields(ledger: dict) -> dict:
    partial_payments = list(ledger.get("partialPayments") or [])
    return {
        "partialPayments": partial_payments,
        "amountPaidByClient": ledger_totals(partial_payments)["amountPaidByClient"],
    }


class PaymentStatusSynchronizer:
    def __init__(
        self,
        quiet_period: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.quiet_period = settings.payment_sync_quiet_seconds if quiet_period is None else quiet_period
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._processed: set[str] = set()
        self._processing = False
        self._dirty = False
        self._last_change = 0.0

    @property
    def processing(self) -> bool:
        return self._processing

    def notify(self) -> None:
        self._dirty = True
        self._last_change = self._clock()

    def mark_dirty(self) -> None:
        self._dirty = True

    def due(self) -> bool:
        if not self._dirty or self._processing:
            return False
        return (self._clock() - self._last_change) >= self.quiet_period

    def poll(self, store: DocStore) -> Optional[SyncReport]:
        if not self.due():
            return None
        self._dirty = False
        try:
            return self.run_pass(store)
        except Exception:
            # Retry on the next poll.
            self._dirty = True
            raise

    def run_pass(self, store: DocStore) -> Optional[SyncReport]:
        if self._processing:
            return None
        self._processing = True
        try:
            return self._reconcile(store)
        finally:
            self._processing = False

    def _reconcile(self, store: DocStore) -> SyncReport:
        report = SyncReport()
        now = self._now()
        outbox = store.find(OUTBOX_COLLECTION, status="pending")
        forced = {o.get("invoiceId") for o in outbox}

        ledgers = {}
        for doc in store.find("payments"):
            if is_ledger_document(doc):
                ledgers[doc.get("invoiceId") or doc["id"]] = doc

        seen = set()
        for invoice in store.find("invoices"):
            ledger = ledgers.get(invoice["id"])
            if ledger is None:
                continue
            report.examined += 1
            key = ledger_key(invoice["id"], ledger)
            seen.add(key)
            if key in self._processed and invoice["id"] not in forced:
                report.unchanged += 1
                continue

            fields = plan_invoice_update(invoice, ledger, now=now)
            if invoice["id"] in forced:
                fields = {**(fields or {}), **_mirror_fields(ledger)}
            if fields:
                store.update("invoices", invoice["id"], fields)
                report.updated.append(invoice["id"])
                json_log(
                    "info",
                    "payment_sync.invoice.synced",
                    invoice_id=invoice["id"],
                    invoice_number=invoice.get("invoiceNumber"),
                    paid_usd=fields.get("paidUSD"),
                    paid_inr=fields.get("paidINR"),
                    pending_inr=fields.get("pendingINR"),
                    status=fields.get("status"),
                )
            else:
                report.unchanged += 1

        processed_at = utcnow_iso()
        for row in outbox:
            store.update(OUTBOX_COLLECTION, row["id"], {"status": "done", "processedAt": processed_at})
            report.outbox_processed += 1

        # Only keys for ledgers that still exist are worth remembering.
        self._processed = seen
        return report
