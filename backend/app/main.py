from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.companies import router as companies_router
from .routers.clients import router as clients_router
from .routers.invoices import router as invoices_router
from .routers.payments import router as payments_router
from .routers.inventory import router as inventory_router
from .routers.purchases import router as purchases_router
from .routers.fx import router as fx_router
from .routers.employees import router as employees_router
from .routers.definitions import router as definitions_router
from .routers.mail import router as mail_router
from .config import settings
from .deps import require_company_access
from .db import get_conn, close_pools
from .docstore import DocumentNotFound
from .invoices import InsufficientStock
from .jsonlog import json_log
from .payment_ledger import InvalidPaymentIndex, LedgerNotFound, LegacyLedgerDocument

app = FastAPI(title="Invoicing & Inventory API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _error_content(detail: str, exc: Exception) -> dict:
    content = {"detail": detail}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return content


# Domain errors map to 4xx so clients get actionable responses instead of generic 500s.
@app.exception_handler(DocumentNotFound)
def _document_not_found(_req: Request, exc: DocumentNotFound):
    return JSONResponse(status_code=404, content={"detail": f"{exc.collection} not found", "id": exc.doc_id})


@app.exception_handler(LedgerNotFound)
def _ledger_not_found(_req: Request, exc: Exception):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidPaymentIndex)
def _invalid_payment_index(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(LegacyLedgerDocument)
def _legacy_ledger(_req: Request, exc: Exception):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "hint": "run POST /payments/migrate-legacy"},
    )


@app.exception_handler(InsufficientStock)
def _insufficient_stock(_req: Request, exc: InsufficientStock):
    return JSONResponse(status_code=409, content={"detail": "insufficient stock", **exc.result.as_dict()})


@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("invalid value", exc))


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=409, content=_error_content("conflict", exc))


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    return JSONResponse(status_code=400, content=_error_content("constraint violation", exc))


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path not in {"/health", "/api/health"}:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

# The web client runs on a different origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(companies_router)
app.include_router(mail_router)
app.include_router(fx_router)
app.include_router(clients_router, dependencies=[Depends(require_company_access)])
app.include_router(invoices_router, dependencies=[Depends(require_company_access)])
app.include_router(payments_router, dependencies=[Depends(require_company_access)])
app.include_router(inventory_router, dependencies=[Depends(require_company_access)])
app.include_router(purchases_router, dependencies=[Depends(require_company_access)])
app.include_router(employees_router, dependencies=[Depends(require_company_access)])
app.include_router(definitions_router, dependencies=[Depends(require_company_access)])


@app.on_event("shutdown")
def _shutdown():
    close_pools()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    if not ok:
        content = {
            "status": "degraded",
            "env": settings.env,
            "db": "down",
            "service": "invoicing-backend",
            "version": settings.api_version,
            "started_at": STARTED_AT_UTC.isoformat(),
            "request_id": request_id,
        }
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return {
        "status": "ok",
        "env": settings.env,
        "db": "ok",
        "service": "invoicing-backend",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
