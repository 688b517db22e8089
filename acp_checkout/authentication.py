"""
Authentication Gate: decides when completion needs a 3-D Secure challenge
and validates the result the client reports after running it.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from acp_checkout.config import Settings
from acp_checkout.errors import AuthenticationRequiredError, ValidationError, json_path
from acp_checkout.models import (
    AuthenticationMetadata,
    AuthenticationResult,
    CheckoutSession,
    CheckoutSessionCompleteRequest,
    CheckoutStatus,
    PaymentData,
)
from acp_checkout.payment import PaymentProvider


logger = logging.getLogger(__name__)

RESULT_PARAM = "$.authentication_result"


class AuthenticationMode(str, Enum):
    NEVER = "never"
    ALWAYS = "always"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class AuthenticationPolicy:
    mode: AuthenticationMode = AuthenticationMode.THRESHOLD
    threshold_amount: int = 100_000
    three_ds_version: str = "2.2.0"
    acquirer_country: str = "US"
    challenge_base_url: str = "https://merchant.example.com/3ds"

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthenticationPolicy:
        return cls(
            mode=AuthenticationMode(settings.three_ds_mode),
            threshold_amount=settings.three_ds_threshold,
            three_ds_version=settings.three_ds_version,
            acquirer_country=settings.merchant_country,
            challenge_base_url=settings.challenge_base_url,
        )


class GateAction(str, Enum):
    PROCEED = "proceed"
    CHALLENGE = "challenge"


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    result: Optional[AuthenticationResult] = None
    metadata: Optional[AuthenticationMetadata] = None

    @property
    def permits_completion(self) -> bool:
        if self.action != GateAction.PROCEED:
            return False
        return self.result is None or self.result.permits_completion


class AuthenticationGate:
    def __init__(
        self,
        policy: AuthenticationPolicy,
        payments: PaymentProvider,
        merchant_id: Optional[str] = None,
    ) -> None:
        self.policy = policy
        self.payments = payments
        self.merchant_id = merchant_id

    def requires_challenge(self, amount: int, payment_data: PaymentData) -> bool:
        mode = self.policy.mode
        if mode == AuthenticationMode.NEVER:
            return False
        if mode == AuthenticationMode.ALWAYS:
            return True
        if amount >= self.policy.threshold_amount:
            return True
        return self.payments.requires_challenge(payment_data)

    def evaluate(
        self,
        session: CheckoutSession,
        request: CheckoutSessionCompleteRequest,
    ) -> GateDecision:
        """
        Decide how a completion attempt proceeds.

        A session already waiting on a challenge must report its result.
        Otherwise a supplied result is used as-is (frictionless flow), and
        without one a challenge is issued when the policy asks for it.
        """
        result = None
        if request.authentication_result is not None:
            result = self.validate_result(request.authentication_result)

        if session.status == CheckoutStatus.AUTHENTICATION_REQUIRED:
            if result is None:
                raise AuthenticationRequiredError()
            return GateDecision(GateAction.PROCEED, result=result)

        if result is not None:
            return GateDecision(GateAction.PROCEED, result=result)

        if self.requires_challenge(session.total_amount(), request.payment_data):
            metadata = self.issue_metadata(session)
            logger.info(
                "Session %s requires authentication (%s)", session.id, metadata.authentication_id
            )
            return GateDecision(GateAction.CHALLENGE, metadata=metadata)

        return GateDecision(GateAction.PROCEED)

    def validate_result(self, raw: dict[str, Any]) -> AuthenticationResult:
        try:
            result = AuthenticationResult.model_validate(raw)
        except PydanticValidationError as exc:
            error = exc.errors()[0]
            code = "missing" if error["type"] == "missing" else "invalid"
            raise ValidationError(
                f"Invalid authentication_result: {error['msg']}",
                code=code,
                param=json_path(RESULT_PARAM, error["loc"]),
            ) from exc

        if result.permits_completion and result.outcome_details is None:
            raise ValidationError(
                f"outcome_details is required when outcome is '{result.outcome.value}'",
                code="missing",
                param=f"{RESULT_PARAM}.outcome_details",
            )
        return result

    def issue_metadata(self, session: CheckoutSession) -> AuthenticationMetadata:
        authentication_id = f"auth_{uuid.uuid4().hex[:16]}"
        return AuthenticationMetadata(
            authentication_id=authentication_id,
            three_ds_version=self.policy.three_ds_version,
            acquirer_country=self.policy.acquirer_country,
            merchant_id=self.merchant_id,
            challenge_url=f"{self.policy.challenge_base_url.rstrip('/')}/{authentication_id}",
            amount=session.total_amount(),
            currency=session.currency,
        )
