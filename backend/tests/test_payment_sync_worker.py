from contextlib import contextmanager

from backend.app.payment_ledger import OUTBOX_COLLECTION
from backend.app.payment_sync import PaymentStatusSynchronizer
from backend.workers import payment_sync_worker as worker


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def _seed(store):
    store.set("invoices", "inv-1", {"companyAmount": 100, "dueDate": "2099-01-01", "paidUSD": 0, "status": "pending"})
    store.set("payments", "inv-1", {"invoiceId": "inv-1", "totalPaidUSD": 40, "totalPaidINR": 3200, "pendingINR": 4800, "partialPayments": []})


def test_observe_notifies_only_on_change(store):
    _seed(store)
    watch = worker.CompanyWatch("company-1", PaymentStatusSynchronizer(quiet_period=0))
    assert watch.observe(store) is True
    assert watch.observe(store) is False

    store.update("payments", "inv-1", {"totalPaidUSD": 50})
    assert watch.observe(store) is True


def test_pending_outbox_keeps_tenant_dirty(store):
    _seed(store)
    watch = worker.CompanyWatch("company-1", PaymentStatusSynchronizer(quiet_period=0))
    watch.observe(store)
    store.insert(OUTBOX_COLLECTION, {"invoiceId": "inv-1", "status": "pending"})
    assert watch.observe(store) is True
    assert watch.observe(store) is True


def test_tick_debounces_then_reconciles(store):
    _seed(store)
    clock = FakeClock()
    watch = worker.CompanyWatch("company-1", PaymentStatusSynchronizer(quiet_period=1.0, clock=clock))

    assert watch.tick(store) is None
    clock.t = 1.5
    report = watch.tick(store)
    assert report.updated == ["inv-1"]
    assert store.get("invoices", "inv-1")["status"] == "partially-paid"


def test_pending_outbox_does_not_restart_quiet_period(store):
    _seed(store)
    store.insert(OUTBOX_COLLECTION, {"invoiceId": "inv-1", "status": "pending"})
    clock = FakeClock()
    watch = worker.CompanyWatch("company-1", PaymentStatusSynchronizer(quiet_period=1.0, clock=clock))

    reports = []
    for _ in range(5):
        reports.append(watch.tick(store))
        clock.t += 5.0

    assert any(r is not None for r in reports)
    assert store.get("invoices", "inv-1")["paidUSD"] == 40
    assert store.find(OUTBOX_COLLECTION, status="pending") == []


def test_run_once_survives_a_failing_tenant(store, monkeypatch):
    _seed(store)
    stores = {"good": store}

    @contextmanager
    def fake_open_store(company_id=None):
        if company_id == "bad":
            raise RuntimeError("db down")
        yield stores[company_id]

    monkeypatch.setattr(worker, "open_store", fake_open_store)
    watches = {
        "good": worker.CompanyWatch("good", PaymentStatusSynchronizer(quiet_period=0)),
    }
    assert worker.run_once(watches, ["bad", "good"]) is True
    assert "bad" in watches
    assert store.get("invoices", "inv-1")["paidUSD"] == 40
