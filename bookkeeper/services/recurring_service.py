"""
Creation and editing of recurring payment schedules.

A new schedule whose start date is today or earlier books its first
occurrence immediately. The schedule is saved before that booking is
attempted and is never rolled back: a failed booking only produces a
warning, and the unchanged `next_due_date` lets the next processor run
pick the occurrence up again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from ..ledger import LedgerWriteError
from ..recurrence import FREQUENCIES, next_due_date, parse_date
from ..schemas import GeneratedTransaction, RecurringPayment, RecurringPaymentCreate, RecurringPaymentUpdate
from ..store import ScheduleStore, ScheduleStoreError

logger = logging.getLogger(__name__)

KINDS = ("income", "expense")
RECURRING_SOURCE = "recurring"
REQUIRED_FIELDS = ("kind", "category", "description", "amount", "frequency", "start_date", "is_active")


class ScheduleValidationError(ValueError):
    """The schedule request is invalid and was not persisted."""


class ScheduleNotFoundError(LookupError):
    pass


@dataclass
class CreationResult:
    schedule: RecurringPayment
    warning: Optional[str] = None


def build_transaction(schedule: RecurringPayment, due: date) -> GeneratedTransaction:
    """The ledger entry for one occurrence of `schedule` on `due`."""
    return GeneratedTransaction(
        type=schedule.kind,
        category=schedule.category,
        description=schedule.description,
        amount=schedule.amount,
        date=due,
        source=RECURRING_SOURCE,
        recurring_payment_id=schedule.id,
        **schedule.linkage(),
    )


class RecurringPaymentService:
    def __init__(self, store: ScheduleStore, ledger):
        self._store = store
        self._ledger = ledger

    def create(self, request: RecurringPaymentCreate, today: date) -> CreationResult:
        start = self._validate(
            kind=request.kind,
            amount=request.amount,
            frequency=request.frequency,
            start_date=request.start_date,
            end_date=request.end_date,
            anchor_day_of_month=request.anchor_day_of_month,
            payment_limit=request.payment_limit,
        )
        fields = request.model_dump()
        fields.update(
            start_date=start,
            next_due_date=start,
            payments_processed=0,
            is_active=True,
        )
        schedule_id = self._store.insert(fields)
        schedule = self._store.get(schedule_id)
        logger.info("Created recurring payment %s (%s, %s)", schedule_id, schedule.frequency, schedule.amount)

        if start > today:
            return CreationResult(schedule=schedule)

        warning = self._book_first_occurrence(schedule)
        return CreationResult(schedule=self._store.get(schedule_id), warning=warning)

    def _book_first_occurrence(self, schedule: RecurringPayment) -> Optional[str]:
        due = schedule.next_due_date
        try:
            tx_id = self._ledger.append(build_transaction(schedule, due))
        except LedgerWriteError as exc:
            logger.warning("First occurrence of %s not booked: %s", schedule.id, exc)
            return f"Recurring payment saved, but the first transaction could not be created: {exc}"

        new_count = schedule.payments_processed + 1
        limit_reached = schedule.payment_limit is not None and new_count >= schedule.payment_limit
        try:
            self._store.update_after_immediate_creation(
                schedule.id,
                next_due_date=next_due_date(due, schedule.frequency, schedule.anchor_day_of_month),
                payments_processed=new_count,
                is_active=not limit_reached,
            )
        except ScheduleStoreError as exc:
            # The ledger row exists; the next processor run will book this date again.
            logger.error("Booked transaction %s for %s but could not advance it: %s", tx_id, schedule.id, exc)
            return f"First transaction created, but the schedule could not be advanced: {exc}"
        logger.info("Booked first occurrence of %s on %s (transaction %s)", schedule.id, due, tx_id)
        return None

    def update(self, schedule_id: str, update: RecurringPaymentUpdate) -> RecurringPayment:
        current = self._store.get(schedule_id)
        if current is None:
            raise ScheduleNotFoundError(schedule_id)
        fields: Dict[str, Any] = update.model_dump(exclude_unset=True)
        if not fields:
            raise ScheduleValidationError("No fields to update")
        cleared = sorted(name for name in REQUIRED_FIELDS if name in fields and fields[name] is None)
        if cleared:
            raise ScheduleValidationError(f"Fields cannot be null: {', '.join(cleared)}.")

        merged = current.model_dump()
        merged.update(fields)
        start = self._validate(
            kind=merged["kind"],
            amount=merged["amount"],
            frequency=merged["frequency"],
            start_date=merged["start_date"],
            end_date=merged["end_date"],
            anchor_day_of_month=merged["anchor_day_of_month"],
            payment_limit=merged["payment_limit"],
        )
        if "start_date" in fields:
            if current.payments_processed == 0:
                # Nothing booked yet: the first occurrence follows the new start
                fields["next_due_date"] = start
            elif start > current.next_due_date:
                raise ScheduleValidationError("start_date cannot move past the next due date once payments were made")
        if "payment_limit" in fields and merged["payment_limit"] is not None:
            if merged["payment_limit"] <= current.payments_processed:
                fields["is_active"] = False

        self._store.update_fields(schedule_id, fields)
        logger.info("Updated recurring payment %s: %s", schedule_id, ", ".join(sorted(fields)))
        return self._store.get(schedule_id)

    def delete(self, schedule_id: str) -> None:
        if not self._store.delete(schedule_id):
            raise ScheduleNotFoundError(schedule_id)
        logger.info("Deleted recurring payment %s", schedule_id)

    def _validate(self, kind, amount, frequency, start_date, end_date, anchor_day_of_month, payment_limit) -> date:
        if kind not in KINDS:
            raise ScheduleValidationError("Type must be income or expense.")
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ScheduleValidationError("Amount must be a number.") from exc
        if not value.is_finite() or value <= 0:
            raise ScheduleValidationError("Amount must be positive.")
        if frequency not in FREQUENCIES:
            raise ScheduleValidationError(f"Invalid frequency. Expected one of: {', '.join(FREQUENCIES)}.")
        try:
            start = parse_date(start_date)
        except (AttributeError, TypeError, ValueError) as exc:
            raise ScheduleValidationError("Invalid start date.") from exc
        if end_date is not None:
            try:
                end = parse_date(end_date)
            except (AttributeError, TypeError, ValueError) as exc:
                raise ScheduleValidationError("Invalid end date.") from exc
            if end < start:
                raise ScheduleValidationError("End date must be on or after the start date.")
        if anchor_day_of_month is not None and not 1 <= anchor_day_of_month <= 31:
            raise ScheduleValidationError("Day of month must be between 1 and 31.")
        if payment_limit is not None and payment_limit < 1:
            raise ScheduleValidationError("Payment limit must be at least 1.")
        return start
