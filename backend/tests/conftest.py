import copy
import itertools
import os
import sys
from contextlib import contextmanager

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.app.docstore import DocumentNotFound  # noqa: E402
from backend.app.lookup_cache import clear_lookup_caches  # noqa: E402


class FakeDocStore:
    """
    In-memory stand-in for `DocStore` (one tenant).

    `batch()` snapshots every collection and restores it when the block raises,
    matching the all-or-nothing behaviour of a Postgres transaction/savepoint.
    `fail(op, collection)` makes the next matching write raise.
    """

    def __init__(self, company_id: str = "company-1"):
        self.company_id = company_id
        self.data: dict[str, dict[str, dict]] = {}
        self._order: dict[tuple, int] = {}
        self._seq = itertools.count(1)
        self._failures: dict[tuple, Exception] = {}
        self.batches = 0
        self.locked: list[tuple] = []

    # -- test helpers -------------------------------------------------------

    def fail(self, op: str, collection: str, exc: Exception = None):
        self._failures[(op, collection)] = exc or RuntimeError(f"{op} {collection} failed")

    def clear_failures(self):
        self._failures.clear()

    def all(self, collection: str) -> list[dict]:
        return self.find(collection)

    def _check(self, op: str, collection: str):
        exc = self._failures.get((op, collection))
        if exc is not None:
            raise exc

    def _stamp(self) -> str:
        # Strictly increasing so `updatedAt` always changes on write.
        n = next(self._seq)
        return f"2026-01-01T00:00:00.{n:06d}+00:00", n

    # -- DocStore surface -----------------------------------------------------

    def get(self, collection, doc_id):
        doc = self.data.get(collection, {}).get(doc_id)
        return copy.deepcopy({**doc, "id": doc_id}) if doc is not None else None

    def get_for_update(self, collection, doc_id):
        self.locked.append((collection, doc_id))
        return self.get(collection, doc_id)

    def require(self, collection, doc_id):
        doc = self.get(collection, doc_id)
        if doc is None:
            raise DocumentNotFound(collection, doc_id)
        return doc

    def find(self, collection, **filters):
        docs = self.data.get(collection, {})
        ids = sorted(docs, key=lambda i: self._order.get((collection, i), 0))
        out = []
        for doc_id in ids:
            doc = docs[doc_id]
            if all(doc.get(k) == v for k, v in filters.items()):
                out.append(copy.deepcopy({**doc, "id": doc_id}))
        return out

    def insert(self, collection, data, doc_id=None):
        self._check("insert", collection)
        ts, n = self._stamp()
        doc_id = doc_id or f"{collection}-{n}"
        body = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        body["companyId"] = self.company_id
        body.setdefault("createdAt", ts)
        body["updatedAt"] = ts
        self.data.setdefault(collection, {})[doc_id] = body
        self._order[(collection, doc_id)] = n
        return doc_id

    def set(self, collection, doc_id, data):
        self._check("set", collection)
        ts, n = self._stamp()
        body = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        body["companyId"] = self.company_id
        body.setdefault("createdAt", ts)
        body["updatedAt"] = ts
        self.data.setdefault(collection, {})[doc_id] = body
        self._order.setdefault((collection, doc_id), n)

    def update(self, collection, doc_id, fields):
        self._check("update", collection)
        doc = self.data.get(collection, {}).get(doc_id)
        if doc is None:
            return False
        ts, _ = self._stamp()
        doc.update({k: copy.deepcopy(v) for k, v in fields.items() if k != "id"})
        doc["updatedAt"] = ts
        return True

    def delete(self, collection, doc_id):
        self._check("delete", collection)
        return self.data.get(collection, {}).pop(doc_id, None) is not None

    def delete_where(self, collection, **filters):
        self._check("delete", collection)
        ids = [d["id"] for d in self.find(collection, **filters)]
        for doc_id in ids:
            self.data[collection].pop(doc_id, None)
        return len(ids)

    def last_modified(self, collection):
        stamps = [d.get("updatedAt") for d in self.data.get(collection, {}).values()]
        return max(stamps) if stamps else None

    @contextmanager
    def batch(self):
        self.batches += 1
        snapshot = copy.deepcopy(self.data)
        try:
            yield self
        except BaseException:
            self.data = snapshot
            raise


@pytest.fixture
def store():
    return FakeDocStore()


@pytest.fixture
def patch_open_store(monkeypatch):
    """Point a router module's `open_store` at a FakeDocStore."""

    def _patch(module, fake):
        @contextmanager
        def _open_store(company_id=None):
            yield fake

        monkeypatch.setattr(module, "open_store", _open_store)
        return fake

    return _patch


@pytest.fixture(autouse=True)
def _clear_lookup_caches():
    clear_lookup_caches()
    yield
    clear_lookup_caches()
