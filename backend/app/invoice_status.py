"""
Invoice status derivation.

`calculate_invoice_status` is the only place that decides what an invoice's
payment status is. The payment synchronizer and the manual recompute endpoint
both call it; do not re-implement the thresholds elsewhere.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional

from .payment_guards import is_settled, money

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class StatusResult:
    status: str
    days_overdue: Optional[int] = None
    is_partial_overdue: Optional[bool] = None

    def as_dict(self) -> dict:
        out = {"status": self.status}
        if self.days_overdue is not None:
            out["daysOverdue"] = self.days_overdue
        if self.is_partial_overdue is not None:
            out["isPartialOverdue"] = self.is_partial_overdue
        return out


def parse_timestamp(value) -> Optional[datetime]:
    """Accept ISO strings, dates and datetimes; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def invoice_total(invoice: dict) -> float:
    return money(invoice.get("companyAmount") or invoice.get("totalAmount") or 0)


def calculate_invoice_status(invoice: dict, paid_amount=0, now: Optional[datetime] = None) -> StatusResult:
    now = now or datetime.now(timezone.utc)
    total = invoice_total(invoice)
    paid = money(paid_amount)
    due = parse_timestamp(invoice.get("dueDate")) or now

    is_overdue = now > due
    is_paid = is_settled(total, paid)

    if is_paid:
        return StatusResult("paid-after-due" if is_overdue else "paid")
    if is_overdue:
        days = int((now - due).total_seconds() // _SECONDS_PER_DAY)
        return StatusResult("overdue", days_overdue=days, is_partial_overdue=paid > 0)
    if paid > 0:
        return StatusResult("partially-paid")
    return StatusResult("pending")


_LABELS = {
    "draft": "Draft",
    "sent": "Sent",
    "pending": "Pending",
    "partially-paid": "Partially Paid",
    "paid": "Paid",
    "paid-after-due": "Paid (After Due Date)",
}


def status_display(result: StatusResult) -> str:
    if result.status == "overdue":
        suffix = f" by {result.days_overdue} days" if result.days_overdue else ""
        if result.is_partial_overdue:
            return f"Partial - Overdue{suffix}"
        return f"Overdue{suffix}"
    return _LABELS.get(result.status, "Pending")
