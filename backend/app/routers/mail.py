from datetime import datetime, timezone

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from ..jsonlog import json_log
from ..mailer import send_registration_invite

router = APIRouter(prefix="/api", tags=["mail"])

_REQUIRED = ("employeeName", "employeeEmail", "companyName", "registrationUrl")


@router.post("/send-registration-invite")
def send_invite(payload: dict = Body(default_factory=dict)):
    # Field names match the existing web client, so the body is read as-is.
    if any(not str(payload.get(k) or "").strip() for k in _REQUIRED):
        return JSONResponse(status_code=400, content={"success": False, "message": "Missing required fields"})
    try:
        send_registration_invite(
            payload["employeeName"],
            payload["employeeEmail"],
            payload["companyName"],
            payload["registrationUrl"],
        )
    except Exception as exc:
        json_log("error", "mail.invite_failed", to=payload["employeeEmail"], error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to send email", "error": str(exc)},
        )
    json_log("info", "mail.invite_sent", to=payload["employeeEmail"])
    return {"success": True, "message": "Invitation sent successfully"}


@router.get("/health")
def mail_health():
    return {"success": True, "message": "Server is running", "timestamp": datetime.now(timezone.utc).isoformat()}
