# bookkeeper/processor.py
"""
Batch materialization of due recurring payments.

Each run selects the active schedules whose `next_due_date` has arrived and,
one schedule at a time, books every overdue occurrence: write the ledger
transaction first, then advance the schedule in a single update. The two
steps are not one transaction. If the write-back fails after the ledger
accepted the entry, the schedule keeps its old due date and the next run
books that occurrence again. Delivery is at-least-once, never at-most-once.

A failing schedule is recorded and skipped; the rest of the batch still
runs. A run is unsuccessful only when it cannot read the due set or when
it loses its lease.

Runs are serialized through a lease row in `system_settings`, so a manual
trigger cannot overlap the daily job, even from another process. The lease
is renewed before every schedule and every further catch-up occurrence; a
run that finds it taken over stops without booking anything more. A single
ledger append must finish within PROCESSOR_LEASE_SECONDS.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from . import db
from .core import config
from .ledger import LedgerWriteError, get_ledger_writer
from .recurrence import next_due_date
from .schemas import RecurringPayment
from .services.recurring_service import build_transaction
from .store import ScheduleStore, ScheduleStoreError

logger = logging.getLogger(__name__)

LEASE_KEY = "recurring_processor_lease"
BUSY_MESSAGE = "Recurring payment processing already in progress"
LEASE_LOST_MESSAGE = "Processor lease lost to another run; stopped early"

# --------- Lease ---------

class ProcessorLease:
    """Time-bounded exclusive claim on the processor, stored in `system_settings`.

    A lease that outlived its expiry (crashed holder) can be taken over.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, owner: Optional[str] = None) -> None:
        self.ttl = timedelta(seconds=config.PROCESSOR_LEASE_SECONDS if ttl_seconds is None else ttl_seconds)
        self.owner = owner or uuid.uuid4().hex

    def acquire(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        conn = db.get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            current = self._read(conn)
            if current and current["owner"] != self.owner and current["expires_at"] > now:
                conn.rollback()
                return False
            value = {"owner": self.owner, "expires_at": (now + self.ttl).isoformat()}
            db.set_meta(conn, LEASE_KEY, json.dumps(value))
            conn.commit()
            return True
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def renew(self, now: Optional[datetime] = None) -> bool:
        """Push the expiry forward; False when another run has taken the lease."""
        now = now or datetime.now(timezone.utc)
        conn = db.get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            current = self._read(conn)
            if not current or current["owner"] != self.owner:
                conn.rollback()
                return False
            value = {"owner": self.owner, "expires_at": (now + self.ttl).isoformat()}
            db.set_meta(conn, LEASE_KEY, json.dumps(value))
            conn.commit()
            return True
        except sqlite3.Error:
            conn.rollback()
            raise
        finally:
            conn.close()

    def release(self) -> None:
        conn = db.get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            current = self._read(conn)
            if current and current["owner"] == self.owner:
                db.delete_meta(conn, LEASE_KEY)
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _read(conn: sqlite3.Connection) -> Optional[Dict[str, Any]]:
        raw = db.get_meta(conn, LEASE_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return {"owner": data["owner"], "expires_at": datetime.fromisoformat(data["expires_at"])}
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable processor lease: %r", raw)
            return None

# --------- Results ---------

@dataclass
class ScheduleError:
    schedule_id: str
    stage: str  # "ledger" | "store"
    message: str


@dataclass
class ProcessingResult:
    """Outcome of one run.

    `processed` counts schedules advanced without error and `failed` counts
    schedules with at least one error, so no schedule is in both.
    `occurrences` is the number of transactions booked in total.
    """

    success: bool
    processed: int = 0
    occurrences: int = 0
    errors: List[ScheduleError] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> int:
        return len({e.schedule_id for e in self.errors})

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            "occurrences": self.occurrences,
            "failed": self.failed,
            "errors": [vars(e) for e in self.errors],
        }
        if self.error:
            out["error"] = self.error
        return out

# --------- Core ---------

class _LeaseLost(Exception):
    pass


class RecurringPaymentProcessor:
    def __init__(
        self,
        store: ScheduleStore,
        ledger,
        lease: Optional[ProcessorLease] = None,
        max_catchup: Optional[int] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._lease = lease
        self._max_catchup = config.MAX_CATCHUP_OCCURRENCES if max_catchup is None else max_catchup

    def process_due_payments(self, today: date, stop_event: Optional[threading.Event] = None) -> ProcessingResult:
        """Book every occurrence due on or before `today`.

        `stop_event` lets a caller abort: the occurrence in flight completes,
        nothing new is started.
        """
        if self._lease is not None:
            try:
                acquired = self._lease.acquire()
            except sqlite3.Error as exc:
                logger.exception("Could not acquire processor lease")
                return ProcessingResult(success=False, error=f"Could not acquire processor lease: {exc}")
            if not acquired:
                logger.info("Skipping run: %s", BUSY_MESSAGE.lower())
                return ProcessingResult(success=False, error=BUSY_MESSAGE)
        try:
            return self._run(today, stop_event)
        finally:
            if self._lease is not None:
                try:
                    self._lease.release()
                except sqlite3.Error:
                    logger.exception("Could not release processor lease; it expires on its own")

    def _run(self, today: date, stop_event: Optional[threading.Event]) -> ProcessingResult:
        try:
            due = self._store.find_active_due_on(today)
        except ScheduleStoreError as exc:
            logger.exception("Could not read due recurring payments")
            return ProcessingResult(success=False, error=f"Could not read due recurring payments: {exc}")

        result = ProcessingResult(success=True)
        logger.info("Processing %d due recurring payment(s) for %s", len(due), today)
        for schedule in due:
            if stop_event is not None and stop_event.is_set():
                logger.info("Processing stopped on request")
                break
            errors_before = len(result.errors)
            try:
                if not self._keep_lease():
                    raise _LeaseLost()
                advanced = self._process_schedule(schedule, today, result, stop_event)
            except _LeaseLost:
                result.success = False
                result.error = LEASE_LOST_MESSAGE
                break
            if advanced and len(result.errors) == errors_before:
                result.processed += 1

        logger.info(
            "Recurring payments processed=%d failed=%d occurrences=%d",
            result.processed, result.failed, result.occurrences,
        )
        return result

    def _keep_lease(self) -> bool:
        if self._lease is None:
            return True
        try:
            kept = self._lease.renew()
        except sqlite3.Error:
            logger.exception("Could not renew processor lease")
            return False
        if not kept:
            logger.error("Processor lease %s was taken over by another run", self._lease.owner)
        return kept

    def _process_schedule(
        self,
        schedule: RecurringPayment,
        today: date,
        result: ProcessingResult,
        stop_event: Optional[threading.Event],
    ) -> bool:
        """Catch one schedule up to `today`; return True if it was advanced.

        Raises `_LeaseLost` between occurrences once another run owns the lease.
        """
        due = schedule.next_due_date
        count = schedule.payments_processed
        limit = schedule.payment_limit

        if limit is not None and count >= limit:
            # Limit lowered or schedule reactivated by hand: close it without booking
            try:
                self._store.update_after_processing(schedule.id, due, count, False, expected_due_date=due)
            except ScheduleStoreError as exc:
                result.errors.append(ScheduleError(schedule.id, "store", str(exc)))
            return False

        booked = 0
        while due <= today and (schedule.end_date is None or due <= schedule.end_date) and booked < self._max_catchup:
            if booked and not self._keep_lease():
                raise _LeaseLost()
            try:
                tx_id = self._ledger.append(build_transaction(schedule, due))
            except LedgerWriteError as exc:
                logger.warning("Ledger write failed for recurring payment %s on %s: %s", schedule.id, due, exc)
                result.errors.append(ScheduleError(schedule.id, "ledger", str(exc)))
                break
            except Exception as exc:
                logger.exception("Unexpected ledger error for recurring payment %s on %s", schedule.id, due)
                result.errors.append(ScheduleError(schedule.id, "ledger", repr(exc)))
                break

            advanced = next_due_date(due, schedule.frequency, schedule.anchor_day_of_month)
            new_count = count + 1
            should_deactivate = limit is not None and new_count >= limit
            try:
                self._store.update_after_processing(
                    schedule.id,
                    next_due_date=advanced,
                    payments_processed=new_count,
                    is_active=not should_deactivate,
                    expected_due_date=due,
                )
            except ScheduleStoreError as exc:
                logger.error(
                    "Transaction %s booked for %s on %s but the schedule was not advanced; "
                    "the next run will book it again: %s",
                    tx_id, schedule.id, due, exc,
                )
                result.errors.append(ScheduleError(schedule.id, "store", str(exc)))
                break

            booked += 1
            result.occurrences += 1
            due, count = advanced, new_count
            if should_deactivate:
                logger.info("Recurring payment %s reached its limit of %d payments", schedule.id, limit)
                break
            if stop_event is not None and stop_event.is_set():
                break

        if booked == self._max_catchup and due <= today:
            logger.info("Recurring payment %s still behind after %d occurrences; continuing next run", schedule.id, booked)
        return booked > 0


def run_due_payments(today: Optional[date] = None, stop_event: Optional[threading.Event] = None) -> ProcessingResult:
    """Run the processor once against the configured store and ledger."""
    if today is None:
        today = date.today()
    ledger = get_ledger_writer()
    try:
        processor = RecurringPaymentProcessor(ScheduleStore(), ledger, lease=ProcessorLease())
        return processor.process_due_payments(today, stop_event=stop_event)
    finally:
        ledger.close()
