"""
Stock adjustments driven by invoice line items.

Only lines with `sourceType == "stock"` touch inventory. A line is matched to a
`stock_details` document by (productCategory, itemName, productVersion) within
the tenant.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .docstore import DocStore
from .jsonlog import json_log
from .payment_guards import money


@dataclass
class StockValidationResult:
    is_valid: bool
    insufficient_items: list = field(default_factory=list)
    message: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "insufficientStockItems": self.insufficient_items,
            "message": self.message,
        }


def stock_key(doc: dict) -> tuple:
    return (doc.get("productCategory"), doc.get("itemName"), doc.get("productVersion"))


def stock_lines(items: Iterable[dict]) -> list[dict]:
    return [i for i in items or [] if i.get("sourceType") == "stock"]


def stock_status(doc: dict) -> str:
    current = money(doc.get("currentStock"))
    if current < money(doc.get("safeQuantityLimit")):
        return "critical"
    if current < money(doc.get("minRequired")):
        return "low"
    return "normal"


def with_stock_status(doc: dict) -> dict:
    # Derived on read; never persisted.
    return {**doc, "stock_status": stock_status(doc)}


def _index_stock(store: DocStore) -> dict:
    out = {}
    for doc in store.find("stock_details"):
        out.setdefault(stock_key(doc), doc)
    return out


def validate_availability(store: DocStore, items: Iterable[dict]) -> StockValidationResult:
    lines = stock_lines(items)
    if not lines:
        return StockValidationResult(True, [], "No stock items to validate")

    stock = _index_stock(store)
    insufficient = []
    for item in lines:
        match = stock.get(stock_key(item))
        required = money(item.get("quantity"))
        available = money(match.get("currentStock")) if match else 0.0
        if match is None or available < required:
            insufficient.append(
                {
                    "itemName": item.get("itemName") or "",
                    "productCategory": item.get("productCategory") or "",
                    "productVersion": item.get("productVersion") or "",
                    "requiredQuantity": required,
                    "availableStock": available,
                    "unit": (match or item).get("unit") or "pcs",
                }
            )

    ok = not insufficient
    return StockValidationResult(
        ok,
        insufficient,
        "All stock items have sufficient quantity" if ok else "Some items have insufficient stock",
    )


def _adjust(store: DocStore, items: Iterable[dict], sign: int, event: str) -> int:
    lines = stock_lines(items)
    if not lines:
        return 0
    touched = 0
    with store.batch():
        stock = _index_stock(store)
        for item in lines:
            match = stock.get(stock_key(item))
            if match is None:
                # Missing catalog entries never block the invoice; validation already reported them.
                continue
            current = money(match.get("currentStock"))
            qty = money(item.get("quantity"))
            new_stock = current + qty if sign > 0 else max(0.0, current - qty)
            store.update("stock_details", match["id"], {"currentStock": new_stock})
            # Several lines may hit the same stock document.
            match["currentStock"] = new_stock
            touched += 1
    json_log("info", event, company_id=store.company_id, lines=len(lines), updated=touched)
    return touched


def apply_on_create(store: DocStore, items: Iterable[dict]) -> int:
    return _adjust(store, items, -1, "stock.decremented_for_invoice")


def apply_on_delete(store: DocStore, items: Iterable[dict]) -> int:
    return _adjust(store, items, 1, "stock.restored_for_invoice")


def get_stock_info(store: DocStore, product_category: str, item_name: str, product_version: str) -> Optional[dict]:
    docs = store.find(
        "stock_details",
        productCategory=product_category,
        itemName=item_name,
        productVersion=product_version,
    )
    return with_stock_status(docs[0]) if docs else None
