from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import Literal, Optional

from ..docstore import open_store
from ..deps import get_company_id
from ..lookup_cache import client_cache
from ..validation import CountryCode, CurrencyCode

router = APIRouter(prefix="/clients", tags=["clients"])

ClientStatus = Literal["active", "inactive"]


class ClientTaxInfoIn(BaseModel):
    id: Optional[str] = None
    type: Optional[str] = None


class ClientIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: CountryCode = "IN"
    client_currency: CurrencyCode = "INR"
    tax_info: Optional[ClientTaxInfoIn] = None
    status: ClientStatus = "active"


class ClientUpdateIn(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[CountryCode] = None
    client_currency: Optional[CurrencyCode] = None
    tax_info: Optional[ClientTaxInfoIn] = None
    status: Optional[ClientStatus] = None


def client_doc(payload: dict) -> dict:
    doc = dict(payload)
    if "client_currency" in doc:
        doc["clientCurrency"] = doc.pop("client_currency")
    if "tax_info" in doc:
        doc["taxInfo"] = {k: v for k, v in (doc.pop("tax_info") or {}).items() if v is not None}
    return doc


def _cache_key(company_id: str, client_id: str) -> str:
    return f"{company_id}:{client_id}"


@router.get("")
def list_clients(status: Optional[ClientStatus] = Query(default=None), company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        clients = store.find("clients", status=status) if status else store.find("clients")
    return {"clients": clients}


@router.get("/{client_id}")
def get_client(client_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        client = store.require("clients", client_id)
    return {"client": client}


@router.post("")
def create_client(data: ClientIn, company_id: str = Depends(get_company_id)):
    if not data.name.strip():
        raise HTTPException(status_code=400, detail="name is required")
    with open_store(company_id) as store:
        client_id = store.insert("clients", client_doc(data.model_dump(exclude_none=True)))
    return {"id": client_id}


@router.patch("/{client_id}")
def update_client(client_id: str, data: ClientUpdateIn, company_id: str = Depends(get_company_id)):
    payload = data.model_dump(exclude_unset=True, exclude_none=True)
    if not payload:
        raise HTTPException(status_code=400, detail="no fields to update")
    with open_store(company_id) as store:
        store.require("clients", client_id)
        store.update("clients", client_id, client_doc(payload))
        client = store.require("clients", client_id)
    client_cache.invalidate(_cache_key(company_id, client_id))
    return {"client": client}


@router.delete("/{client_id}")
def delete_client(client_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        if not store.delete("clients", client_id):
            raise HTTPException(status_code=404, detail="client not found")
    client_cache.invalidate(_cache_key(company_id, client_id))
    return {"ok": True}
