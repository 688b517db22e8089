"""
Payment Provider Abstraction.

The checkout engine only needs a PSP collaborator that can authorize a
delegated payment token for a session total. ``MockPaymentProvider`` is an
in-memory implementation for development, demos and tests; its behaviour is
driven by the token value.
"""

from __future__ import annotations

import abc
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from acp_checkout.errors import ProcessingError, ServiceUnavailableError
from acp_checkout.models import AuthenticationResult, CheckoutSession, PaymentData


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentAuthorization:
    approved: bool
    authorization_id: Optional[str] = None
    decline_code: Optional[str] = None
    message: str = ""


class PaymentProvider(abc.ABC):
    """Abstract base for the merchant's PSP."""

    @abc.abstractmethod
    async def authorize(
        self,
        *,
        session: CheckoutSession,
        payment_data: PaymentData,
        authentication_result: Optional[AuthenticationResult] = None,
    ) -> PaymentAuthorization:
        """
        Authorize the session total against the delegated token.

        Return a non-approved authorization for issuer declines. Raise
        ``ProcessingError`` or ``ServiceUnavailableError`` for transient
        failures that a retry may fix.
        """
        ...

    def requires_challenge(self, payment_data: PaymentData) -> bool:
        """Payment-method risk signal; True forces a 3DS challenge."""
        return False


class MockPaymentProvider(PaymentProvider):
    """
    In-memory PSP for development.

    Tokens: ``decline_token`` is declined, ``error_token`` fails with a
    processing error, ``unavailable_token`` fails as unavailable, and any
    token starting with ``tok_3ds_`` requires a challenge. Everything else
    is approved.
    """

    DECLINE_TOKEN = "decline_token"
    ERROR_TOKEN = "error_token"
    UNAVAILABLE_TOKEN = "unavailable_token"
    CHALLENGE_PREFIX = "tok_3ds_"

    def __init__(self):
        self._authorizations: dict[str, dict] = {}

    async def authorize(
        self,
        *,
        session: CheckoutSession,
        payment_data: PaymentData,
        authentication_result: Optional[AuthenticationResult] = None,
    ) -> PaymentAuthorization:
        token = payment_data.token
        if token == self.ERROR_TOKEN:
            raise ProcessingError("Payment processor returned an unexpected error")
        if token == self.UNAVAILABLE_TOKEN:
            raise ServiceUnavailableError("Payment processor is unavailable")
        if token == self.DECLINE_TOKEN:
            logger.info("Mock PSP declined session %s", session.id)
            return PaymentAuthorization(
                approved=False,
                decline_code="card_declined",
                message="Payment was declined by issuer",
            )

        authorization_id = f"auth_mock_{uuid.uuid4().hex[:16]}"
        self._authorizations[authorization_id] = {
            "checkout_session_id": session.id,
            "amount": session.total_amount(),
            "currency": session.currency,
            "token": token,
            "authenticated": authentication_result is not None,
            "created": datetime.now(timezone.utc).isoformat(),
        }
        return PaymentAuthorization(approved=True, authorization_id=authorization_id)

    def requires_challenge(self, payment_data: PaymentData) -> bool:
        return payment_data.token.startswith(self.CHALLENGE_PREFIX)

    def get_authorization(self, authorization_id: str) -> Optional[dict]:
        return self._authorizations.get(authorization_id)

    @property
    def authorization_count(self) -> int:
        return len(self._authorizations)
