import uuid
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..docstore import open_store
from ..deps import get_current_user, get_company_id, require_role
from ..jsonlog import json_log
from ..lookup_cache import company_cache
from ..validation import CountryCode, CurrencyCode

router = APIRouter(prefix="/companies", tags=["companies"], dependencies=[Depends(get_current_user)])


class TaxInfoIn(BaseModel):
    primary_type: Optional[str] = None
    primary_id: Optional[str] = None
    secondary_id: Optional[str] = None


class BankDetailsIn(BaseModel):
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None
    account_holder_name: Optional[str] = None


class InvoiceSettingsIn(BaseModel):
    prefix: Optional[str] = None
    next_number: Optional[int] = None


class CompanyIn(BaseModel):
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    country: CountryCode = "IN"
    company_currency: CurrencyCode = "INR"
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_info: Optional[TaxInfoIn] = None
    bank_details: Optional[BankDetailsIn] = None
    invoice_settings: Optional[InvoiceSettingsIn] = None
    default_cgst: Optional[float] = None
    default_sgst: Optional[float] = None
    default_igst: Optional[float] = None
    logo_url: Optional[str] = None
    signature_url: Optional[str] = None
    business_owner_name: Optional[str] = None
    business_owner_position: Optional[str] = None


class CompanyUpdateIn(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[CountryCode] = None
    company_currency: Optional[CurrencyCode] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_info: Optional[TaxInfoIn] = None
    bank_details: Optional[BankDetailsIn] = None
    invoice_settings: Optional[InvoiceSettingsIn] = None
    default_cgst: Optional[float] = None
    default_sgst: Optional[float] = None
    default_igst: Optional[float] = None
    logo_url: Optional[str] = None
    signature_url: Optional[str] = None
    business_owner_name: Optional[str] = None
    business_owner_position: Optional[str] = None


_FIELD_NAMES = {
    "company_currency": "companyCurrency",
    "logo_url": "logoUrl",
    "signature_url": "signatureUrl",
    "business_owner_name": "businessOwnerName",
    "business_owner_position": "businessOwnerPosition",
    "default_cgst": "defaultCGST",
    "default_sgst": "defaultSGST",
    "default_igst": "defaultIGST",
}


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(p.capitalize() for p in rest)


def company_doc(payload: dict) -> dict:
    doc = {}
    for key, value in payload.items():
        if isinstance(value, dict):
            value = {_camel(k): v for k, v in value.items() if v is not None}
        doc[_FIELD_NAMES.get(key, _camel(key))] = value
    if "name" in doc:
        # Invoices read either spelling.
        doc["companyName"] = doc["name"]
    if "address" in doc:
        doc["streetAddress"] = doc["address"]
    return doc


@router.post("")
def create_company(data: CompanyIn, user=Depends(get_current_user)):
    if user.get("company_id"):
        raise HTTPException(status_code=409, detail="user already belongs to a company")
    name = data.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name is required")

    company_id = uuid.uuid4().hex
    doc = company_doc(data.model_dump(exclude_none=True))
    doc["name"] = doc["companyName"] = name
    doc.setdefault("invoiceSettings", {"prefix": "INV-", "nextNumber": 1})

    with open_store() as store:
        with store.batch():
            store.set("companies", company_id, {**doc, "companyId": company_id})
            user_doc = {"companyId": company_id, "role": "company_admin"}
            if not store.update("users", user["user_id"], user_doc):
                store.set("users", user["user_id"], {**user_doc, "email": user.get("email")})
    json_log("info", "companies.created", company_id=company_id, user_id=user["user_id"])
    return {"id": company_id}


@router.get("/me")
def get_my_company(company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        company = store.require("companies", company_id)
    return {"company": company}


@router.patch("/me", dependencies=[Depends(require_role("company_admin"))])
def update_my_company(data: CompanyUpdateIn, company_id: str = Depends(get_company_id)):
    payload = data.model_dump(exclude_unset=True, exclude_none=True)
    if not payload:
        raise HTTPException(status_code=400, detail="no fields to update")
    if "name" in payload and not str(payload["name"]).strip():
        raise HTTPException(status_code=400, detail="name is required")

    with open_store(company_id) as store:
        store.require("companies", company_id)
        store.update("companies", company_id, company_doc(payload))
        company = store.require("companies", company_id)
    company_cache.invalidate(company_id)
    return {"company": company}
