"""
SQLite-backed store for recurring payment schedules.

Only the creation service and the due-payment processor change the
lifecycle columns (`next_due_date`, `payments_processed`, `is_active`);
user edits go through `update_fields`.
"""

from __future__ import annotations

import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from . import db
from .recurrence import format_date
from .schemas import RecurringPayment

# Columns a user edit may touch
EDITABLE_COLUMNS = (
    "kind",
    "category",
    "description",
    "amount",
    "frequency",
    "start_date",
    "end_date",
    "anchor_day_of_month",
    "payment_limit",
    "customer_id",
    "customer_name",
    "interaction_id",
    "interaction_title",
    "is_active",
    "next_due_date",
)


class ScheduleStoreError(Exception):
    """The schedule store could not be read or written."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _to_db(value: Any) -> Any:
    if isinstance(value, date):
        return format_date(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if value is not None and not isinstance(value, (int, float, str)):
        # Decimal amounts are kept as text
        return str(value)
    return value


class ScheduleStore:
    def _row_to_model(self, row: sqlite3.Row) -> RecurringPayment:
        data = dict(row)
        data["is_active"] = bool(data["is_active"])
        return RecurringPayment(**data)

    def _run(self, sql: str, params: tuple = ()) -> int:
        """Execute one write and return the number of affected rows."""
        try:
            conn = db.get_connection()
            try:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise ScheduleStoreError(str(exc)) from exc

    def _fetch(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            conn = db.get_connection()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise ScheduleStoreError(str(exc)) from exc

    # --------- reads ---------

    def get(self, schedule_id: str) -> Optional[RecurringPayment]:
        rows = self._fetch("SELECT * FROM recurring_payments WHERE id = ?", (schedule_id,))
        return self._row_to_model(rows[0]) if rows else None

    def list_all(self, only_active: bool = False) -> List[RecurringPayment]:
        query = "SELECT * FROM recurring_payments"
        if only_active:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC, id"
        return [self._row_to_model(r) for r in self._fetch(query)]

    def find_active_due_on(self, today: date) -> List[RecurringPayment]:
        """Active schedules whose next occurrence is on or before `today` and not past `end_date`."""
        rows = self._fetch(
            "SELECT * FROM recurring_payments "
            "WHERE is_active = 1 AND next_due_date <= ? "
            "AND (end_date IS NULL OR next_due_date <= end_date) "
            "ORDER BY next_due_date, id",
            (format_date(today),),
        )
        return [self._row_to_model(r) for r in rows]

    # --------- writes ---------

    def insert(self, fields: Dict[str, Any]) -> str:
        schedule_id = uuid.uuid4().hex
        now = _now()
        row = dict(fields, id=schedule_id, created_at=now, updated_at=now)
        columns = list(row.keys())
        self._run(
            f"INSERT INTO recurring_payments ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            tuple(_to_db(row[c]) for c in columns),
        )
        return schedule_id

    def update_after_processing(
        self,
        schedule_id: str,
        next_due_date: date,
        payments_processed: int,
        is_active: bool,
        expected_due_date: Optional[date] = None,
    ) -> None:
        """Write back one advanced occurrence in a single statement.

        With `expected_due_date` the update only applies while the row still
        holds that due date, so a schedule cannot be advanced twice for the
        same occurrence.
        """
        sql = (
            "UPDATE recurring_payments SET next_due_date = ?, payments_processed = ?, "
            "is_active = ?, updated_at = ? WHERE id = ?"
        )
        params: List[Any] = [
            format_date(next_due_date),
            payments_processed,
            1 if is_active else 0,
            _now(),
            schedule_id,
        ]
        if expected_due_date is not None:
            sql += " AND next_due_date = ?"
            params.append(format_date(expected_due_date))
        if self._run(sql, tuple(params)) != 1:
            raise ScheduleStoreError(f"recurring payment {schedule_id} was not updated (missing or changed)")

    def update_after_immediate_creation(
        self,
        schedule_id: str,
        next_due_date: date,
        payments_processed: int,
        is_active: bool,
    ) -> None:
        self.update_after_processing(schedule_id, next_due_date, payments_processed, is_active)

    def update_fields(self, schedule_id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(EDITABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        if not fields:
            return
        set_clause = ", ".join(f"{k} = ?" for k in fields.keys())
        params = [_to_db(v) for v in fields.values()] + [_now(), schedule_id]
        self._run(f"UPDATE recurring_payments SET {set_clause}, updated_at = ? WHERE id = ?", tuple(params))

    def delete(self, schedule_id: str) -> bool:
        return self._run("DELETE FROM recurring_payments WHERE id = ?", (schedule_id,)) > 0
