from fastapi import Header, HTTPException, Depends, Cookie
from .db import get_conn
from .docstore import DocStore
from .security import hash_session_token
from datetime import datetime, timezone
from typing import Optional


SESSION_COOKIE_NAME = "invoicing_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT user_id, expires_at, is_active
                FROM auth_sessions
                WHERE token = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            user = DocStore(cur).get("users", row["user_id"]) or {}
            return resolve_principal(row["user_id"], user)


def resolve_principal(user_id: str, user: dict) -> dict:
    """
    Map a `users` document to the principal every handler works with.

    Users without a stored role are treated as company admins (the account that
    signed the company up); employees get their company from the user document.
    """
    return {
        "user_id": user_id,
        "email": user.get("email"),
        "role": user.get("role") or "company_admin",
        "company_id": user.get("companyId"),
    }


def get_current_user(session=Depends(get_session)):
    return session


def get_company_id(
    x_company_id: Optional[str] = Header(None, alias="X-Company-Id"),
    user=Depends(get_current_user),
) -> str:
    company_id = user.get("company_id")
    if not company_id:
        raise HTTPException(status_code=400, detail="missing company id")
    # Principals belong to exactly one tenant; a mismatching header is a cross-tenant attempt.
    if x_company_id and x_company_id != company_id:
        raise HTTPException(status_code=403, detail="no company access")
    return str(company_id)


def require_company_access(company_id: str = Depends(get_company_id)):
    return True


def require_role(*roles: str):
    allowed = set(roles)

    def _dep(user=Depends(get_current_user), company_id: str = Depends(get_company_id)):
        if user.get("role") not in allowed:
            raise HTTPException(status_code=403, detail="permission denied")
        return True
    return _dep
