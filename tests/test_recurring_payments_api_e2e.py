from bookkeeper.core import config

from conftest import ledger_rows


def _payload(**overrides):
    payload = {
        "kind": "expense",
        "category": "software",
        "description": "Accounting subscription",
        "amount": "49.99",
        "frequency": "monthly",
        "start_date": "2025-03-14",
        "customer_id": None,
        "interaction_id": None,
    }
    payload.update(overrides)
    return payload


def test_health(app_client):
    r = app_client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_create_due_schedule_books_first_transaction(app_client, db_conn):
    r = app_client.post("/api/recurring-payments", json=_payload())
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["warning"] is None
    created = body["recurring_payment"]
    assert created["payments_processed"] == 1
    assert created["next_due_date"] == "2025-04-14"
    assert created["is_active"] is True

    rows = ledger_rows(db_conn, created["id"])
    assert len(rows) == 1
    assert rows[0]["amount"] == "49.99"


def test_create_future_schedule_books_nothing(app_client, db_conn):
    r = app_client.post("/api/recurring-payments", json=_payload(start_date="2025-03-16"))
    assert r.status_code == 200, r.text
    created = r.json()["recurring_payment"]
    assert created["payments_processed"] == 0
    assert created["next_due_date"] == "2025-03-16"
    assert ledger_rows(db_conn) == []


def test_invalid_create_is_rejected(app_client, db_conn):
    assert app_client.post("/api/recurring-payments", json=_payload(amount="0")).status_code == 400
    assert app_client.post("/api/recurring-payments", json=_payload(frequency="hourly")).status_code == 400
    assert app_client.post("/api/recurring-payments", json=_payload(start_date="not-a-date")).status_code == 422
    assert app_client.get("/api/recurring-payments").json() == []


def test_get_update_delete(app_client):
    created = app_client.post("/api/recurring-payments", json=_payload(start_date="2025-04-01")).json()["recurring_payment"]
    rec_id = created["id"]

    got = app_client.get(f"/api/recurring-payments/{rec_id}")
    assert got.status_code == 200
    assert got.json()["description"] == "Accounting subscription"

    upd = app_client.patch(f"/api/recurring-payments/{rec_id}", json={"amount": "59.99", "is_active": False})
    assert upd.status_code == 200, upd.text
    assert upd.json()["is_active"] is False

    active = app_client.get("/api/recurring-payments", params={"only_active": "true"}).json()
    assert rec_id not in [p["id"] for p in active]

    assert app_client.patch(f"/api/recurring-payments/{rec_id}", json={"payment_limit": 0}).status_code == 400
    assert app_client.delete(f"/api/recurring-payments/{rec_id}").status_code == 200
    assert app_client.get(f"/api/recurring-payments/{rec_id}").status_code == 404
    assert app_client.delete(f"/api/recurring-payments/{rec_id}").status_code == 404
    assert app_client.patch(f"/api/recurring-payments/{rec_id}", json={"amount": "1"}).status_code == 404


def test_process_endpoint_runs_and_is_idempotent(app_client, db_conn):
    app_client.post("/api/recurring-payments", json=_payload(start_date="2025-03-16"))
    db_conn.execute("UPDATE recurring_payments SET start_date = '2025-03-10', next_due_date = '2025-03-10'")
    db_conn.commit()

    r = app_client.post("/api/process-recurring-payments")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["processed"] == 1
    assert body["occurrences"] == 1
    assert body["failed"] == 0
    assert "timestamp" in body
    assert "error" not in body

    again = app_client.post("/api/process-recurring-payments").json()
    assert again["success"] is True
    assert again["processed"] == 0
    assert len(ledger_rows(db_conn)) == 1


def test_process_endpoint_get_is_not_allowed(app_client):
    r = app_client.get("/api/process-recurring-payments")
    assert r.status_code == 405
    assert "POST" in r.json()["message"]


def test_process_endpoint_checks_cron_secret(app_client, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "s3cret")
    assert app_client.post("/api/process-recurring-payments").status_code == 401
    wrong = {"Authorization": "Bearer nope"}
    assert app_client.post("/api/process-recurring-payments", headers=wrong).status_code == 401
    ok = app_client.post("/api/process-recurring-payments", headers={"Authorization": "Bearer s3cret"})
    assert ok.status_code == 200
    assert ok.json()["success"] is True


def test_patch_rejects_null_for_required_fields(app_client, db_conn):
    created = app_client.post("/api/recurring-payments", json=_payload(start_date="2025-04-01")).json()["recurring_payment"]
    url = f"/api/recurring-payments/{created['id']}"

    for field in ("category", "description", "is_active", "amount", "frequency"):
        r = app_client.patch(url, json={field: None})
        assert r.status_code == 400, (field, r.text)
        assert field in r.json()["detail"]

    unchanged = app_client.get(url).json()
    assert unchanged["category"] == "software"
    assert unchanged["is_active"] is True

    # Optional fields can still be cleared
    assert app_client.patch(url, json={"payment_limit": 5}).status_code == 200
    cleared = app_client.patch(url, json={"payment_limit": None})
    assert cleared.status_code == 200, cleared.text
    assert cleared.json()["payment_limit"] is None


def test_storage_failure_is_reported_as_unavailable(app_client):
    from bookkeeper.api import recurring_payments
    from bookkeeper.store import ScheduleStore, ScheduleStoreError

    class BrokenStore(ScheduleStore):
        def _fetch(self, *args, **kwargs):
            raise ScheduleStoreError("database is locked")

    app_client.app.dependency_overrides[recurring_payments.get_store] = BrokenStore
    r = app_client.get("/api/recurring-payments")
    assert r.status_code == 503
    assert "database is locked" in r.json()["detail"]
    assert app_client.get("/api/recurring-payments/abc").status_code == 503
