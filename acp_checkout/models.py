"""
ACP Pydantic Models: the Agentic Checkout wire types (API version 2026-01-16).

All monetary amounts are integers in the smallest currency unit (e.g. cents
for USD). Optional fields default to ``None`` and are omitted from responses,
so an explicitly empty string (``line_two: ""``) stays distinct from an
omitted field.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CheckoutStatus(str, Enum):
    NOT_READY_FOR_PAYMENT = "not_ready_for_payment"
    READY_FOR_PAYMENT = "ready_for_payment"
    IN_PROGRESS = "in_progress"
    AUTHENTICATION_REQUIRED = "authentication_required"
    COMPLETED = "completed"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({CheckoutStatus.COMPLETED, CheckoutStatus.CANCELED})


class FulfillmentType(str, Enum):
    SHIPPING = "shipping"
    DIGITAL = "digital"


class TotalType(str, Enum):
    ITEMS_BASE_AMOUNT = "items_base_amount"
    ITEMS_DISCOUNT = "items_discount"
    SUBTOTAL = "subtotal"
    DISCOUNT = "discount"
    FULFILLMENT = "fulfillment"
    TAX = "tax"
    FEE = "fee"
    TOTAL = "total"


class LinkType(str, Enum):
    TERMS_OF_USE = "terms_of_use"
    PRIVACY_POLICY = "privacy_policy"
    RETURN_POLICY = "return_policy"


class MessageLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class MessageCode(str, Enum):
    MISSING = "missing"
    INVALID = "invalid"
    OUT_OF_STOCK = "out_of_stock"
    PAYMENT_DECLINED = "payment_declined"
    REQUIRES_SIGN_IN = "requires_sign_in"
    REQUIRES_3DS = "requires_3ds"


class AuthenticationOutcome(str, Enum):
    AUTHENTICATED = "authenticated"
    ATTEMPTED = "attempted"
    FAILED = "failed"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


# Outcomes that let the payment go ahead; anything else is a decline.
PERMITTING_OUTCOMES = frozenset(
    {AuthenticationOutcome.AUTHENTICATED, AuthenticationOutcome.ATTEMPTED}
)


class IntentReasonCode(str, Enum):
    PRICE_SENSITIVITY = "price_sensitivity"
    SHIPPING_COST = "shipping_cost"
    SHIPPING_SPEED = "shipping_speed"
    PRODUCT_FIT = "product_fit"
    TRUST_SECURITY = "trust_security"
    RETURNS_POLICY = "returns_policy"
    PAYMENT_OPTIONS = "payment_options"
    COMPARISON = "comparison"
    TIMING_DEFERRED = "timing_deferred"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Shared / Common
# ---------------------------------------------------------------------------

class Address(BaseModel):
    name: str = Field(min_length=1)
    line_one: str = Field(min_length=1)
    line_two: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    country: str = Field(min_length=2, max_length=2)
    postal_code: str = Field(min_length=1)

    @field_validator("country")
    @classmethod
    def _country_code(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("country must be an ISO-3166-1 alpha-2 code")
        return value.upper()


class Buyer(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone_number: Optional[str] = None


class Item(BaseModel):
    id: str = Field(min_length=1)
    quantity: int = Field(ge=1, strict=True)


# ---------------------------------------------------------------------------
# Checkout: Line Items & Totals
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    id: str
    item: Item
    title: Optional[str] = None
    base_amount: int
    discount: int = 0
    subtotal: int
    tax: int = 0
    total: int


class Total(BaseModel):
    type: TotalType
    display_text: str
    amount: int


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------

class FulfillmentDetails(BaseModel):
    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    address: Optional[Address] = None


class FulfillmentOption(BaseModel):
    type: FulfillmentType = FulfillmentType.SHIPPING
    id: str
    title: str
    subtitle: Optional[str] = None
    carrier: Optional[str] = None
    subtotal: int = 0
    tax: int = 0
    total: int = 0


class SelectedFulfillmentOption(BaseModel):
    type: FulfillmentType = FulfillmentType.SHIPPING
    option_id: str = Field(min_length=1)
    item_ids: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Messages, Links & Payment Provider
# ---------------------------------------------------------------------------

class MessageInfo(BaseModel):
    type: MessageLevel = MessageLevel.INFO
    code: Optional[MessageCode] = None
    param: Optional[str] = None
    content_type: str = "plain"
    content: str


class Link(BaseModel):
    type: LinkType
    url: str


class PaymentProvider(BaseModel):
    provider: str
    supported_payment_methods: list[str] = ["card"]


# ---------------------------------------------------------------------------
# Payment Data & 3-D Secure Authentication
# ---------------------------------------------------------------------------

class PaymentData(BaseModel):
    token: str = Field(min_length=1)
    provider: str = "stripe"
    billing_address: Optional[Address] = None


class AuthenticationMetadata(BaseModel):
    """Issued by the merchant when completion needs an issuer challenge."""
    authentication_id: str
    channel: str = "browser"
    three_ds_version: str
    acquirer_country: str
    merchant_id: Optional[str] = None
    challenge_url: str
    amount: int
    currency: str


class AuthenticationOutcomeDetails(BaseModel):
    three_ds_cryptogram: str = Field(min_length=1)
    electronic_commerce_indicator: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    version: str = Field(min_length=1)


class AuthenticationResult(BaseModel):
    """Reported by the client after running the challenge; never persisted."""
    outcome: AuthenticationOutcome
    outcome_details: Optional[AuthenticationOutcomeDetails] = None

    @property
    def permits_completion(self) -> bool:
        return self.outcome in PERMITTING_OUTCOMES


# ---------------------------------------------------------------------------
# Order (returned after successful checkout completion)
# ---------------------------------------------------------------------------

class Order(BaseModel):
    id: str
    checkout_session_id: str
    permalink_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Intent Trace Extension (cancellation reason, write-only)
# ---------------------------------------------------------------------------

_KNOWN_REASON_CODES = frozenset(code.value for code in IntentReasonCode)


class IntentTrace(BaseModel):
    reason_code: IntentReasonCode
    trace_summary: Optional[str] = None
    metadata: Optional[dict[str, Union[bool, int, float, str, None]]] = None

    @field_validator("reason_code", mode="before")
    @classmethod
    def _fallback_reason_code(cls, value: Any) -> Any:
        # Newer protocol versions may add reason codes; keep them as "other".
        if isinstance(value, str) and value not in _KNOWN_REASON_CODES:
            return IntentReasonCode.OTHER
        return value


# ---------------------------------------------------------------------------
# Checkout Session (the core response object)
# ---------------------------------------------------------------------------

class CheckoutSession(BaseModel):
    id: str
    status: CheckoutStatus = CheckoutStatus.NOT_READY_FOR_PAYMENT
    currency: str
    buyer: Optional[Buyer] = None
    payment_provider: Optional[PaymentProvider] = None
    line_items: list[LineItem] = []
    fulfillment_details: Optional[FulfillmentDetails] = None
    fulfillment_options: list[FulfillmentOption] = []
    selected_fulfillment_options: list[SelectedFulfillmentOption] = []
    totals: list[Total] = []
    authentication_metadata: Optional[AuthenticationMetadata] = None
    order: Optional[Order] = None
    messages: list[MessageInfo] = []
    links: list[Link] = []

    def to_json(self) -> dict[str, Any]:
        """Wire representation; absent optional fields are left out."""
        return self.model_dump(mode="json", exclude_none=True)

    def total_amount(self) -> int:
        for total in self.totals:
            if total.type == TotalType.TOTAL:
                return total.amount
        return 0


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------

class CheckoutSessionCreateRequest(BaseModel):
    items: list[Item] = Field(min_length=1)
    currency: Optional[str] = None
    buyer: Optional[Buyer] = None
    fulfillment_details: Optional[FulfillmentDetails] = None
    selected_fulfillment_options: Optional[list[SelectedFulfillmentOption]] = None

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        if len(value) != 3 or not value.isalpha():
            raise ValueError("currency must be an ISO-4217 code")
        return value.lower()


class CheckoutSessionUpdateRequest(BaseModel):
    items: Optional[list[Item]] = Field(default=None, min_length=1)
    buyer: Optional[Buyer] = None
    fulfillment_details: Optional[FulfillmentDetails] = None
    selected_fulfillment_options: Optional[list[SelectedFulfillmentOption]] = None


class CheckoutSessionCompleteRequest(BaseModel):
    buyer: Optional[Buyer] = None
    payment_data: PaymentData
    # Shape is checked by the authentication gate so errors carry a precise param.
    authentication_result: Optional[dict[str, Any]] = None


class CheckoutSessionCancelRequest(BaseModel):
    intent_trace: Optional[IntentTrace] = None


# ---------------------------------------------------------------------------
# Error
# ---------------------------------------------------------------------------

class ACPError(BaseModel):
    type: str
    code: str
    message: str
    param: Optional[str] = None
