from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel
from typing import Literal

from ..docstore import open_store
from ..deps import get_company_id
from ..jsonlog import json_log

router = APIRouter(prefix="/definitions", tags=["definitions"])

DefinitionKind = Literal["product", "inventory"]

_COLLECTIONS = {"product": "product_definitions", "inventory": "inventory_definitions"}


class DefinitionIn(BaseModel):
    product_category: str
    item_name: str
    product_version: str


def _collection(kind: str) -> str:
    return _COLLECTIONS[kind]


@router.get("/{kind}")
def list_definitions(kind: DefinitionKind = Path(...), company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return {"definitions": store.find(_collection(kind))}


@router.post("/{kind}")
def create_definition(data: DefinitionIn, kind: DefinitionKind = Path(...), company_id: str = Depends(get_company_id)):
    doc = {
        "productCategory": data.product_category.strip(),
        "itemName": data.item_name.strip(),
        "productVersion": data.product_version.strip(),
    }
    if not all(doc.values()):
        raise HTTPException(status_code=400, detail="category, item name and version are required")
    with open_store(company_id) as store:
        if store.find(_collection(kind), **doc):
            raise HTTPException(status_code=409, detail="definition already exists")
        definition_id = store.insert(_collection(kind), doc)
    return {"id": definition_id}


@router.delete("/{kind}/category/{product_category}")
def delete_category(product_category: str, kind: DefinitionKind = Path(...), company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        deleted = store.delete_where(_collection(kind), productCategory=product_category)
    json_log("info", "definitions.category_deleted", kind=kind, product_category=product_category, deleted=deleted)
    return {"ok": True, "deleted": deleted}


@router.delete("/{kind}/category/{product_category}/items/{item_name}")
def delete_item_versions(
    product_category: str,
    item_name: str,
    kind: DefinitionKind = Path(...),
    company_id: str = Depends(get_company_id),
):
    with open_store(company_id) as store:
        deleted = store.delete_where(_collection(kind), productCategory=product_category, itemName=item_name)
    json_log("info", "definitions.item_deleted", kind=kind, item_name=item_name, deleted=deleted)
    return {"ok": True, "deleted": deleted}


@router.delete("/{kind}/{definition_id}")
def delete_definition(definition_id: str, kind: DefinitionKind = Path(...), company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        if not store.delete(_collection(kind), definition_id):
            raise HTTPException(status_code=404, detail="definition not found")
    return {"ok": True}
