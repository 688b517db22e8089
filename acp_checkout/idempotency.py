"""
Idempotency Ledger: stores the outcome of every keyed mutating request.

A request carrying an ``Idempotency-Key`` is fingerprinted (operation, target
session and canonical body). The first request with a key runs; later ones
with the same fingerprint replay the stored response verbatim, and ones with a
different fingerprint are rejected as conflicts. While the first request is
running, the key stays locked so concurrent duplicates wait and then replay.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from acp_checkout.database import Database, IdempotencyRecordRow
from acp_checkout.locks import KeyedLock


logger = logging.getLogger(__name__)


def fingerprint(operation: str, params: dict[str, Any]) -> str:
    canonical = json.dumps(
        {"operation": operation, "params": params},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyOutcomeKind(str, Enum):
    FRESH = "fresh"
    REPLAY = "replay"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class IdempotencyOutcome:
    kind: IdempotencyOutcomeKind
    status_code: Optional[int] = None
    body: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class LedgerEntry:
    """A response record waiting to be written alongside the state change it describes."""

    key: str
    operation: str
    fingerprint: str
    status_code: int
    created_at: float
    expires_at: float

    def row(self, body: dict[str, Any]) -> IdempotencyRecordRow:
        return IdempotencyRecordRow(
            idempotency_key=self.key,
            operation=self.operation,
            fingerprint=self.fingerprint,
            status_code=self.status_code,
            response_body=body,
            created_at=self.created_at,
            expires_at=self.expires_at,
        )


FRESH = IdempotencyOutcome(IdempotencyOutcomeKind.FRESH)
CONFLICT = IdempotencyOutcome(IdempotencyOutcomeKind.CONFLICT)


class IdempotencyLedger:
    def __init__(
        self,
        database: Database,
        ttl_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.database = database
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks = KeyedLock()

    async def begin(self, key: str, operation: str, request_fingerprint: str) -> IdempotencyOutcome:
        """
        Look up ``(key, operation)``.

        On ``FRESH`` the caller owns the key and must call ``commit`` or
        ``abandon`` exactly once. ``REPLAY`` and ``CONFLICT`` release it
        before returning.
        """
        lock_key = (key, operation)
        await self._locks.acquire(lock_key)
        try:
            record = await self._lookup(key, operation)
        except BaseException:
            self._locks.release(lock_key)
            raise

        if record is None:
            return FRESH

        self._locks.release(lock_key)
        if record.fingerprint != request_fingerprint:
            logger.warning("Idempotency key %s reused for %s with a different request", key, operation)
            return CONFLICT
        logger.info("Replaying %s for idempotency key %s", operation, key)
        return IdempotencyOutcome(
            IdempotencyOutcomeKind.REPLAY,
            status_code=record.status_code,
            body=record.response_body,
        )

    async def commit(
        self,
        key: str,
        operation: str,
        request_fingerprint: str,
        status_code: int,
        body: dict[str, Any],
    ) -> None:
        """
        Store the final response for a ``FRESH`` key in its own transaction
        and release it. Used when the request changed no state, e.g. a
        rejected request; otherwise write ``entry(...)`` with the state.
        """
        record = self.entry(key, operation, request_fingerprint, status_code)
        try:
            async with self.database.session() as db:
                db.add(record.row(body))
                try:
                    await db.commit()
                except IntegrityError:
                    # Another process stored this key first; its record wins.
                    await db.rollback()
                    logger.warning("Idempotency key %s for %s was already recorded", key, operation)
        finally:
            self._locks.release((key, operation))

    def entry(
        self, key: str, operation: str, request_fingerprint: str, status_code: int
    ) -> LedgerEntry:
        now = self._clock()
        return LedgerEntry(
            key=key,
            operation=operation,
            fingerprint=request_fingerprint,
            status_code=status_code,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )

    def release(self, key: str, operation: str) -> None:
        """Release a ``FRESH`` key whose entry was written with the session change."""
        self._locks.release((key, operation))

    def abandon(self, key: str, operation: str) -> None:
        """Release a ``FRESH`` key without recording anything."""
        self._locks.release((key, operation))

    async def purge_expired(self) -> int:
        async with self.database.session() as db:
            result = await db.execute(
                delete(IdempotencyRecordRow).where(IdempotencyRecordRow.expires_at <= self._clock())
            )
            await db.commit()
        if result.rowcount:
            logger.info("Purged %s expired idempotency records", result.rowcount)
        return result.rowcount or 0

    async def _lookup(self, key: str, operation: str) -> Optional[IdempotencyRecordRow]:
        async with self.database.session() as db:
            record = await db.get(IdempotencyRecordRow, (key, operation))
            if record is not None and record.expires_at <= self._clock():
                await db.delete(record)
                await db.commit()
                return None
            return record
