"""
Document collections on top of Postgres.

Each collection is a table `(id, company_id, data jsonb, created_at, updated_at)`
(see `backend/db/migrations/001_init.sql`). Field names inside `data` are the
document field names other clients query by (camelCase), so they are stored as-is.

A `DocStore` wraps one cursor. When built with a company id every read and write
is scoped to that tenant.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import partial
from typing import Any, Optional

from psycopg import sql
from psycopg.types.json import Jsonb

from .db import get_conn, set_company_context

COLLECTIONS = frozenset(
    {
        "companies",
        "clients",
        "invoices",
        "payments",
        "stock_details",
        "product_definitions",
        "inventory_definitions",
        "purchase_orders",
        "purchase_requests",
        "users",
        "employees",
        "payment_sync_outbox",
    }
)

_dumps = partial(json.dumps, default=str)


class DocumentNotFound(Exception):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _table(collection: str) -> sql.Identifier:
    if collection not in COLLECTIONS:
        raise ValueError(f"unknown collection: {collection}")
    return sql.Identifier(collection)


def _to_doc(row) -> dict:
    data = dict(row["data"] or {})
    data["id"] = row["id"]
    return data


class DocStore:
    def __init__(self, cur, company_id: Optional[str] = None):
        self._cur = cur
        self.company_id = company_id

    def _scope(self) -> tuple[sql.Composable, tuple]:
        if self.company_id is None:
            return sql.SQL(""), ()
        return sql.SQL(" AND company_id = %s"), (self.company_id,)

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("SELECT id, data FROM {} WHERE id = %s").format(_table(collection)) + scope,
            (doc_id, *params),
        )
        row = self._cur.fetchone()
        return _to_doc(row) if row else None

    def get_for_update(self, collection: str, doc_id: str) -> Optional[dict]:
        # Row lock held until the enclosing transaction ends; use inside `batch()`.
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("SELECT id, data FROM {} WHERE id = %s").format(_table(collection)) + scope + sql.SQL(" FOR UPDATE"),
            (doc_id, *params),
        )
        row = self._cur.fetchone()
        return _to_doc(row) if row else None

    def require(self, collection: str, doc_id: str) -> dict:
        doc = self.get(collection, doc_id)
        if doc is None:
            raise DocumentNotFound(collection, doc_id)
        return doc

    def find(self, collection: str, **filters: Any) -> list[dict]:
        # Equality filters on top-level document fields; `data @> {...}` can use the GIN index.
        scope, params = self._scope()
        query = sql.SQL("SELECT id, data FROM {} WHERE data @> %s").format(_table(collection))
        query = query + scope + sql.SQL(" ORDER BY created_at ASC, id ASC")
        self._cur.execute(query, (Jsonb(filters, dumps=_dumps), *params))
        return [_to_doc(r) for r in self._cur.fetchall() or []]

    def insert(self, collection: str, data: dict, doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or uuid.uuid4().hex
        now = utcnow_iso()
        body = {k: v for k, v in data.items() if k != "id"}
        if self.company_id is not None:
            body["companyId"] = self.company_id
        body.setdefault("createdAt", now)
        body["updatedAt"] = now
        self._cur.execute(
            sql.SQL(
                """
                INSERT INTO {} (id, company_id, data, created_at, updated_at)
                VALUES (%s, %s, %s, now(), now())
                """
            ).format(_table(collection)),
            (doc_id, body.get("companyId"), Jsonb(body, dumps=_dumps)),
        )
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        now = utcnow_iso()
        body = {k: v for k, v in data.items() if k != "id"}
        if self.company_id is not None:
            body["companyId"] = self.company_id
        body.setdefault("createdAt", now)
        body["updatedAt"] = now
        self._cur.execute(
            sql.SQL(
                """
                INSERT INTO {} (id, company_id, data, created_at, updated_at)
                VALUES (%s, %s, %s, now(), now())
                ON CONFLICT (id) DO UPDATE
                SET data = EXCLUDED.data, company_id = EXCLUDED.company_id, updated_at = now()
                """
            ).format(_table(collection)),
            (doc_id, body.get("companyId"), Jsonb(body, dumps=_dumps)),
        )

    def update(self, collection: str, doc_id: str, fields: dict) -> bool:
        # Shallow merge, like a document-store `update`: top-level keys are replaced.
        patch = {k: v for k, v in fields.items() if k != "id"}
        patch["updatedAt"] = utcnow_iso()
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("UPDATE {} SET data = data || %s, updated_at = now() WHERE id = %s").format(
                _table(collection)
            )
            + scope,
            (Jsonb(patch, dumps=_dumps), doc_id, *params),
        )
        return (self._cur.rowcount or 0) > 0

    def delete(self, collection: str, doc_id: str) -> bool:
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("DELETE FROM {} WHERE id = %s").format(_table(collection)) + scope,
            (doc_id, *params),
        )
        return (self._cur.rowcount or 0) > 0

    def delete_where(self, collection: str, **filters: Any) -> int:
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("DELETE FROM {} WHERE data @> %s").format(_table(collection)) + scope,
            (Jsonb(filters, dumps=_dumps), *params),
        )
        return self._cur.rowcount or 0

    def last_modified(self, collection: str) -> Optional[datetime]:
        scope, params = self._scope()
        self._cur.execute(
            sql.SQL("SELECT max(updated_at) AS ts FROM {} WHERE true").format(_table(collection)) + scope,
            params,
        )
        row = self._cur.fetchone()
        return row["ts"] if row else None

    @contextmanager
    def batch(self):
        # One transaction (a savepoint when nested): every write inside lands or none does.
        with self._cur.connection.transaction():
            yield self


@contextmanager
def open_store(company_id: Optional[str] = None):
    with get_conn() as conn:
        if company_id:
            set_company_context(conn, company_id)
        with conn.cursor() as cur:
            yield DocStore(cur, company_id)
