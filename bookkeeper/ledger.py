"""
Ledger writers: append one immutable transaction per materialized occurrence.

The engine never reads back or edits what it appended. Each call either
returns the new transaction id or raises `LedgerWriteError`; a timeout is
reported the same way so the caller can treat it as a failed occurrence.

Environment variables used:
- LEDGER_URL: base URL of a remote ledger; unset means the local SQLite ledger
- LEDGER_TOKEN: optional Bearer token for the remote ledger
- LEDGER_TIMEOUT_SECONDS: bound on a single append
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional, Union

import httpx

from . import db
from .core import config
from .recurrence import format_date
from .schemas import GeneratedTransaction

logger = logging.getLogger(__name__)

TransactionId = Union[int, str]


class LedgerWriteError(Exception):
    """An append did not reach the ledger (error, rejection or timeout)."""


class SqliteLedgerWriter:
    """Appends to the `transactions` table of the bookkeeping database."""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._timeout = config.LEDGER_TIMEOUT_SECONDS if timeout is None else timeout

    def append(self, entry: GeneratedTransaction) -> TransactionId:
        try:
            conn = db.get_connection(timeout=self._timeout)
        except sqlite3.Error as exc:
            raise LedgerWriteError(f"cannot open ledger: {exc}") from exc
        try:
            cur = conn.execute(
                "INSERT INTO transactions (type, category, description, amount, date, source, "
                "customer_id, customer_name, interaction_id, interaction_title, recurring_payment_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    entry.type,
                    entry.category,
                    entry.description,
                    str(entry.amount),
                    format_date(entry.date),
                    entry.source,
                    entry.customer_id,
                    entry.customer_name,
                    entry.interaction_id,
                    entry.interaction_title,
                    entry.recurring_payment_id,
                ),
            )
            conn.commit()
            return cur.lastrowid
        except sqlite3.Error as exc:
            raise LedgerWriteError(str(exc)) from exc
        finally:
            conn.close()

    def close(self) -> None:
        pass


class HttpLedgerWriter:
    """Posts transactions to a remote ledger service as JSON."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=config.LEDGER_TIMEOUT_SECONDS if timeout is None else timeout,
            transport=transport,
        )

    def append(self, entry: GeneratedTransaction) -> TransactionId:
        try:
            resp = self._client.post("/transactions", json=entry.model_dump(mode="json"))
        except httpx.TimeoutException as exc:
            raise LedgerWriteError(f"ledger timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise LedgerWriteError(f"ledger unreachable: {exc}") from exc

        if resp.status_code >= 400:
            raise LedgerWriteError(f"ledger rejected transaction: HTTP {resp.status_code} {resp.text[:200]}")
        try:
            return resp.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise LedgerWriteError("ledger response has no transaction id") from exc

    def close(self) -> None:
        self._client.close()


def get_ledger_writer():
    """Pick the ledger from configuration."""
    if config.LEDGER_URL:
        logger.info("Using remote ledger at %s", config.LEDGER_URL)
        return HttpLedgerWriter(config.LEDGER_URL, token=config.LEDGER_TOKEN)
    return SqliteLedgerWriter()
