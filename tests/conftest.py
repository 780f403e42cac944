import os
import sqlite3
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

# Settings are read at import time; keep test runs away from real logs and the scheduler
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="bookkeeper-test-logs-"))
os.environ["CRON_ENABLED"] = "0"

from bookkeeper import db  # noqa: E402
from bookkeeper.core import config  # noqa: E402
from bookkeeper.ledger import LedgerWriteError, SqliteLedgerWriter  # noqa: E402
from bookkeeper.schemas import RecurringPaymentCreate  # noqa: E402
from bookkeeper.services.recurring_service import RecurringPaymentService  # noqa: E402
from bookkeeper.store import ScheduleStore, ScheduleStoreError  # noqa: E402

TODAY = date(2025, 3, 15)


class FlakyLedger:
    """SQLite ledger that refuses entries for chosen schedule ids."""

    def __init__(self, fail_for=()):
        self.inner = SqliteLedgerWriter()
        self.fail_for = set(fail_for)
        self.calls = []

    def append(self, entry):
        self.calls.append(entry)
        if entry.recurring_payment_id in self.fail_for:
            raise LedgerWriteError("ledger unavailable")
        return self.inner.append(entry)

    def close(self):
        pass


class FailingLedger:
    def __init__(self):
        self.calls = []

    def append(self, entry):
        self.calls.append(entry)
        raise LedgerWriteError("ledger unavailable")

    def close(self):
        pass


class FailingWriteBackStore(ScheduleStore):
    """Store whose post-booking update fails for chosen schedule ids, or for all."""

    def __init__(self, fail_for=(), fail_all=False):
        self.fail_for = set(fail_for)
        self.fail_all = fail_all

    def update_after_processing(self, schedule_id, *args, **kwargs):
        if self.fail_all or schedule_id in self.fail_for:
            raise ScheduleStoreError("disk I/O error")
        return super().update_after_processing(schedule_id, *args, **kwargs)


def make_request(**overrides) -> RecurringPaymentCreate:
    data = {
        "kind": "expense",
        "category": "rent",
        "description": "Office rent",
        "amount": Decimal("1200.00"),
        "frequency": "monthly",
        "start_date": date(2025, 4, 1),
    }
    data.update(overrides)
    return RecurringPaymentCreate(**data)


@pytest.fixture()
def temp_db_path(tmp_path, monkeypatch) -> Path:
    db_file = tmp_path / "bookkeeper_test.sqlite3"
    monkeypatch.setattr(db, "DB_PATH", db_file)
    monkeypatch.setattr(config, "LEDGER_URL", "")
    monkeypatch.setattr(config, "CRON_SECRET", "")
    db.initialise_database()
    return db_file


@pytest.fixture()
def db_conn(temp_db_path):
    conn = sqlite3.connect(str(temp_db_path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def store(temp_db_path) -> ScheduleStore:
    return ScheduleStore()


@pytest.fixture()
def ledger(temp_db_path) -> FlakyLedger:
    return FlakyLedger()


@pytest.fixture()
def service(store, ledger) -> RecurringPaymentService:
    return RecurringPaymentService(store, ledger)


@pytest.fixture()
def app_client(temp_db_path):
    from fastapi.testclient import TestClient

    from bookkeeper.api import recurring_payments
    from bookkeeper.main import create_app

    app = create_app(enable_cron=False)
    app.dependency_overrides[recurring_payments.get_today] = lambda: TODAY
    return TestClient(app)


def ledger_rows(conn, schedule_id=None):
    query = "SELECT * FROM transactions"
    params = ()
    if schedule_id is not None:
        query += " WHERE recurring_payment_id = ?"
        params = (schedule_id,)
    return conn.execute(query + " ORDER BY id", params).fetchall()
