#!/usr/bin/env python3
"""
Long-running payment status synchronizer.

For every company (or a specified subset) it watches the `invoices` and
`payments` collections plus the pending `payment_sync_outbox` rows. Any change
marks that company's synchronizer dirty; a reconciliation pass runs once the
collections have been quiet for `PAYMENT_SYNC_QUIET_SECONDS`, so a burst of
ledger writes collapses into one pass.

Run with `python3 -m backend.workers.payment_sync_worker`.
"""

import argparse
import sys
import time
import traceback
from typing import Optional

from backend.app.config import settings
from backend.app.db import get_conn
from backend.app.docstore import DocStore, open_store
from backend.app.jsonlog import json_log
from backend.app.payment_ledger import OUTBOX_COLLECTION
from backend.app.payment_sync import PaymentStatusSynchronizer

WORKER_NAME = "payment-sync-worker"


def list_company_ids() -> list[str]:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM companies ORDER BY created_at ASC")
            return [str(r["id"]) for r in cur.fetchall()]


class CompanyWatch:
    """Change detection plus the debounced synchronizer for one tenant."""

    def __init__(self, company_id: str, synchronizer: Optional[PaymentStatusSynchronizer] = None):
        self.company_id = company_id
        self.synchronizer = synchronizer or PaymentStatusSynchronizer()
        self._watermark = None

    def observe(self, store: DocStore) -> bool:
        pending = len(store.find(OUTBOX_COLLECTION, status="pending"))
        mark = (store.last_modified("invoices"), store.last_modified("payments"), pending)
        changed = mark != self._watermark
        self._watermark = mark
        if changed:
            self.synchronizer.notify()
            return True
        # Pending outbox rows keep the tenant dirty until a pass drains them,
        # without restarting the quiet period.
        if pending:
            self.synchronizer.mark_dirty()
            return True
        return False

    def tick(self, store: DocStore):
        self.observe(store)
        report = self.synchronizer.poll(store)
        if report is not None:
            json_log(
                "info",
                "payment_sync.pass_completed",
                company_id=self.company_id,
                examined=report.examined,
                updated=report.updated,
                unchanged=report.unchanged,
                outbox_processed=report.outbox_processed,
            )
        return report


def run_once(watches: dict[str, CompanyWatch], company_ids: list[str]) -> bool:
    did_work = False
    for cid in company_ids:
        watch = watches.get(cid)
        if watch is None:
            watch = watches[cid] = CompanyWatch(cid)
        try:
            with open_store(cid) as store:
                if watch.tick(store) is not None:
                    did_work = True
        except Exception as ex:
            # Never crash the worker loop; the synchronizer stays dirty and retries.
            json_log("error", "payment_sync.pass_failed", company_id=cid, error=str(ex))
            traceback.print_exc(file=sys.stderr)
    return did_work


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--sleep", type=float, default=max(0.2, settings.payment_sync_quiet_seconds / 2))
    parser.add_argument("--companies", nargs="*", help="Optional list of company ids to process")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    watches: dict[str, CompanyWatch] = {}
    json_log("info", "worker.started", worker=WORKER_NAME, quiet_seconds=settings.payment_sync_quiet_seconds)
    while True:
        try:
            company_ids = args.companies or list_company_ids()
        except Exception as ex:
            json_log("error", "worker.companies.error", worker=WORKER_NAME, error=str(ex))
            company_ids = []

        if args.once:
            for cid in company_ids:
                watches[cid] = CompanyWatch(cid, PaymentStatusSynchronizer(quiet_period=0))
            run_once(watches, company_ids)
            break

        did_work = run_once(watches, company_ids)
        # If a pass ran, loop again quickly; otherwise back off.
        time.sleep(0 if did_work else args.sleep)


if __name__ == "__main__":
    main()
