import pytest
from pydantic import ValidationError

from acp_checkout.errors import (
    ACPSellerError,
    IdempotencyConflictError,
    ProcessingError,
    TerminalStateError,
    json_path,
)
from acp_checkout.models import (
    Address,
    CheckoutSession,
    CheckoutSessionCreateRequest,
    IntentReasonCode,
    IntentTrace,
    Item,
)


def test_create_request_requires_at_least_one_item():
    with pytest.raises(ValidationError):
        CheckoutSessionCreateRequest(items=[])


def test_item_quantity_must_be_a_positive_integer():
    for quantity in (0, -1, 1.5, "2"):
        with pytest.raises(ValidationError):
            Item(id="item_123", quantity=quantity)


def test_currency_is_normalized_to_lowercase():
    request = CheckoutSessionCreateRequest(items=[Item(id="a", quantity=1)], currency="USD")
    assert request.currency == "usd"
    with pytest.raises(ValidationError):
        CheckoutSessionCreateRequest(items=[Item(id="a", quantity=1)], currency="dollars")


def test_address_country_is_alpha_2():
    address = Address(
        name="Ada", line_one="1 Main St", city="SF", state="CA", country="us", postal_code="94107"
    )
    assert address.country == "US"
    with pytest.raises(ValidationError):
        Address(name="Ada", line_one="1 Main St", city="SF", state="CA", country="USA", postal_code="1")


def test_unknown_intent_reason_code_becomes_other():
    trace = IntentTrace(reason_code="saw_a_better_deal")
    assert trace.reason_code == IntentReasonCode.OTHER
    assert IntentTrace(reason_code="shipping_cost").reason_code == IntentReasonCode.SHIPPING_COST


def test_intent_trace_metadata_is_flat():
    with pytest.raises(ValidationError):
        IntentTrace(reason_code="other", metadata={"nested": {"a": 1}})


def test_session_json_omits_absent_fields():
    dumped = CheckoutSession(id="cs_1", currency="usd").to_json()
    assert dumped["status"] == "not_ready_for_payment"
    assert "buyer" not in dumped
    assert "order" not in dumped
    assert "authentication_metadata" not in dumped


def test_error_body_is_flat_and_round_trips():
    error = TerminalStateError("Checkout session is already completed")
    body = error.to_body()
    assert body == {
        "type": "invalid_request",
        "code": "invalid_state",
        "message": "Checkout session is already completed",
        "param": "$.status",
    }

    rebuilt = ACPSellerError.from_body(405, body)
    assert rebuilt.status_code == 405
    assert rebuilt.to_body() == body


def test_error_retryability():
    assert ProcessingError("boom").retryable
    assert not IdempotencyConflictError().retryable
    assert IdempotencyConflictError().status_code == 409


def test_json_path_rendering():
    assert json_path("$", ["items", 0, "quantity"]) == "$.items[0].quantity"
    assert json_path("$.authentication_result", ["outcome"]) == "$.authentication_result.outcome"
