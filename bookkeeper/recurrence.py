# bookkeeper/recurrence.py
"""
Date arithmetic for recurring payment schedules.

Everything here is pure: callers pass the schedule's current
`next_due_date` in and get the following occurrence back. Nothing reads
the wall clock, so applying `next_due_date` repeatedly from a start date
always yields the same forward chain.

Month-based frequencies clamp down: an anchor day that does not exist in
the target month becomes that month's last day (31 -> Feb 28/29, Apr 30),
and the anchor is restored on the next cycle.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "monthly", "quarterly", "yearly")

_DAY_STEPS = {"daily": 1, "weekly": 7}
_MONTH_STEPS = {"monthly": 1, "quarterly": 3, "yearly": 12}

# --------- Helpers: dates ---------

def parse_date(ds: Union[str, date]) -> date:
    """Parse an ISO date; a full ISO timestamp is truncated to its date."""
    if isinstance(ds, datetime):
        return ds.date()
    if isinstance(ds, date):
        return ds
    return datetime.strptime(ds.strip()[:10], "%Y-%m-%d").date()


def format_date(d: date) -> str:
    return d.isoformat()

# --------- Core ---------

def next_due_date(current_due: date, frequency: str, anchor_day_of_month: Optional[int] = None) -> date:
    """Return the occurrence that follows `current_due`.

    `anchor_day_of_month` only applies to monthly, quarterly and yearly
    schedules. Unknown frequencies advance by one day.
    """
    if frequency in _DAY_STEPS:
        return current_due + timedelta(days=_DAY_STEPS[frequency])

    months = _MONTH_STEPS.get(frequency)
    if months is not None:
        if anchor_day_of_month:
            # relativedelta clamps an absolute day to the end of the target month
            return current_due + relativedelta(months=months, day=int(anchor_day_of_month))
        return current_due + relativedelta(months=months)

    logger.warning("Unknown frequency %r, advancing one day", frequency)
    return current_due + timedelta(days=1)


def iter_due_dates(
    start: date,
    frequency: str,
    anchor_day_of_month: Optional[int] = None,
    until: Optional[date] = None,
    limit: Optional[int] = None,
) -> Iterator[date]:
    """Yield `start` and its successors, stopping after `until` or `limit` dates."""
    if until is None and limit is None:
        raise ValueError("iter_due_dates needs `until` or `limit`")
    due = start
    produced = 0
    while (until is None or due <= until) and (limit is None or produced < limit):
        yield due
        produced += 1
        due = next_due_date(due, frequency, anchor_day_of_month)
