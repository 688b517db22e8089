"""
Session Lifecycle: create/update/retrieve/complete/cancel with idempotent
replay, independent of the HTTP framework.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from acp_checkout.errors import ACPSellerError, IdempotencyConflictError, ValidationError
from acp_checkout.idempotency import (
    IdempotencyLedger,
    IdempotencyOutcomeKind,
    LedgerEntry,
    fingerprint,
)
from acp_checkout.models import (
    CheckoutSession,
    CheckoutSessionCancelRequest,
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionUpdateRequest,
)
from acp_checkout.sessions import SessionStore


logger = logging.getLogger(__name__)

CREATE = "create"
UPDATE = "update"
COMPLETE = "complete"
CANCEL = "cancel"


@dataclass(frozen=True)
class LifecycleResponse:
    status_code: int
    body: dict[str, Any]
    replayed: bool = False


class CheckoutLifecycle:
    def __init__(
        self,
        sessions: SessionStore,
        ledger: IdempotencyLedger,
        require_idempotency_key: bool = True,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.require_idempotency_key = require_idempotency_key

    async def create(
        self,
        request: CheckoutSessionCreateRequest,
        idempotency_key: Optional[str] = None,
    ) -> LifecycleResponse:
        self._require_key(idempotency_key)
        return await self._run(
            CREATE,
            idempotency_key,
            {"body": request.model_dump(mode="json", exclude_unset=True)},
            lambda receipt: self.sessions.create(request, receipt=receipt),
            success_status=201,
        )

    async def update(
        self,
        session_id: str,
        request: CheckoutSessionUpdateRequest,
        idempotency_key: Optional[str] = None,
    ) -> LifecycleResponse:
        return await self._run(
            UPDATE,
            idempotency_key,
            {
                "session_id": session_id,
                "body": request.model_dump(mode="json", exclude_unset=True),
            },
            lambda receipt: self.sessions.update(session_id, request, receipt=receipt),
        )

    async def retrieve(self, session_id: str) -> LifecycleResponse:
        session = await self.sessions.retrieve(session_id)
        return LifecycleResponse(200, session.to_json())

    async def complete(
        self,
        session_id: str,
        request: CheckoutSessionCompleteRequest,
        idempotency_key: Optional[str] = None,
    ) -> LifecycleResponse:
        self._require_key(idempotency_key)
        return await self._run(
            COMPLETE,
            idempotency_key,
            {
                "session_id": session_id,
                "body": request.model_dump(mode="json", exclude_unset=True),
            },
            lambda receipt: self.sessions.complete(session_id, request, receipt=receipt),
        )

    async def cancel(
        self,
        session_id: str,
        request: Optional[CheckoutSessionCancelRequest] = None,
        idempotency_key: Optional[str] = None,
    ) -> LifecycleResponse:
        request = request or CheckoutSessionCancelRequest()
        return await self._run(
            CANCEL,
            idempotency_key,
            {
                "session_id": session_id,
                "body": request.model_dump(mode="json", exclude_unset=True),
            },
            lambda receipt: self.sessions.cancel(
                session_id, request.intent_trace, receipt=receipt
            ),
        )

    def _require_key(self, idempotency_key: Optional[str]) -> None:
        if self.require_idempotency_key and not idempotency_key:
            raise ValidationError(
                "Idempotency-Key header is required",
                code="missing",
                param="$.headers.Idempotency-Key",
            )

    async def _run(
        self,
        operation: str,
        idempotency_key: Optional[str],
        params: dict[str, Any],
        action: Callable[[Optional[LedgerEntry]], Awaitable[CheckoutSession]],
        success_status: int = 200,
    ) -> LifecycleResponse:
        if not idempotency_key:
            session = await action(None)
            return LifecycleResponse(success_status, session.to_json())

        request_fingerprint = fingerprint(operation, params)
        outcome = await self.ledger.begin(idempotency_key, operation, request_fingerprint)
        if outcome.kind == IdempotencyOutcomeKind.CONFLICT:
            raise IdempotencyConflictError()
        if outcome.kind == IdempotencyOutcomeKind.REPLAY:
            if outcome.status_code >= 400:
                logger.warning(
                    "Replaying %s error %s for idempotency key %s",
                    operation,
                    outcome.status_code,
                    idempotency_key,
                )
                raise ACPSellerError.from_body(outcome.status_code, outcome.body)
            return LifecycleResponse(outcome.status_code, outcome.body, replayed=True)

        # FRESH: this request owns the key until it is recorded or abandoned.
        # A successful response is recorded in the same transaction as the
        # session change.
        receipt = self.ledger.entry(
            idempotency_key, operation, request_fingerprint, success_status
        )
        try:
            session = await action(receipt)
        except ACPSellerError as exc:
            if exc.retryable:
                self.ledger.abandon(idempotency_key, operation)
            else:
                await self.ledger.commit(
                    idempotency_key,
                    operation,
                    request_fingerprint,
                    exc.status_code,
                    exc.to_body(),
                )
            raise
        except BaseException:
            self.ledger.abandon(idempotency_key, operation)
            raise

        self.ledger.release(idempotency_key, operation)
        return LifecycleResponse(success_status, session.to_json())
