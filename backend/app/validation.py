from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


# ISO 4217 style codes; the rate table decides which ones convert.
CurrencyCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=3, max_length=3, pattern=r"^[A-Z]{3}$"),
]
CountryCode = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=2, max_length=2, pattern=r"^[A-Z]{2}$"),
]

PaymentMethod = Annotated[
    Literal["neft", "rtgs", "imps", "upi", "cash", "credit_card", "debit_card", "cheque"],
    BeforeValidator(_to_lower_str),
]
InvoiceStatus = Annotated[
    Literal["draft", "sent", "pending", "partially-paid", "paid", "overdue", "paid-after-due"],
    BeforeValidator(_to_lower_str),
]
LineSourceType = Annotated[Literal["manual", "stock", "inventory"], BeforeValidator(_to_lower_str)]
UserRole = Annotated[Literal["company_admin", "employee"], BeforeValidator(_to_lower_str)]
PurchaseOrderStatus = Annotated[Literal["draft", "completed"], BeforeValidator(_to_lower_str)]
