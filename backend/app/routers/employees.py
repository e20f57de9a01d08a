from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional

from ..docstore import open_store
from ..deps import get_company_id, require_role
from ..jsonlog import json_log
from ..mailer import send_registration_invite
from ..validation import UserRole

router = APIRouter(prefix="/employees", tags=["employees"])


class EmployeeInviteIn(BaseModel):
    name: str
    email: str
    role: UserRole = "employee"
    registration_url: str
    position: Optional[str] = None


@router.get("")
def list_employees(company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        return {"employees": store.find("employees")}


@router.post("", dependencies=[Depends(require_role("company_admin"))])
def invite_employee(data: EmployeeInviteIn, company_id: str = Depends(get_company_id)):
    name = data.name.strip()
    email = data.email.strip().lower()
    if not name or "@" not in email:
        raise HTTPException(status_code=400, detail="name and a valid email are required")

    with open_store(company_id) as store:
        if store.find("employees", email=email):
            raise HTTPException(status_code=409, detail="employee already invited")
        company = store.require("companies", company_id)
        doc = {"name": name, "email": email, "role": data.role, "status": "invited"}
        if data.position:
            doc["position"] = data.position
        employee_id = store.insert("employees", doc)

    # The employee row stays even if the relay is down; the invite can be re-sent.
    company_name = company.get("companyName") or company.get("name") or ""
    try:
        send_registration_invite(name, email, company_name, data.registration_url)
        invite_sent = True
    except Exception as exc:
        json_log("error", "employees.invite_failed", employee_id=employee_id, error=str(exc))
        invite_sent = False
    return {"id": employee_id, "invite_sent": invite_sent}


@router.delete("/{employee_id}", dependencies=[Depends(require_role("company_admin"))])
def delete_employee(employee_id: str, company_id: str = Depends(get_company_id)):
    with open_store(company_id) as store:
        if not store.delete("employees", employee_id):
            raise HTTPException(status_code=404, detail="employee not found")
    return {"ok": True}
