"""
ACP Checkout: merchant-side Agentic Commerce Protocol checkout engine.

Checkout sessions move from creation through payment (with an optional
3-D Secure challenge) to an order, with idempotent replay of every keyed
mutating request.

Example usage for merchants:
    from acp_checkout import Product, Settings, create_app

    app = create_app(
        Settings.from_env(),
        products=[Product(id="item_123", title="Mug", unit_amount=300)],
    )

Example usage for agents:
    from acp_checkout import ACPCheckoutClient

    async with ACPCheckoutClient("https://merchant.com", auth_token="...") as acp:
        session = await acp.create_session(...)
"""

__version__ = "0.2.0"

# Export main models
from acp_checkout.models import (
    Address,
    AuthenticationMetadata,
    AuthenticationResult,
    Buyer,
    CheckoutSession,
    CheckoutSessionCancelRequest,
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionUpdateRequest,
    CheckoutStatus,
    FulfillmentDetails,
    IntentTrace,
    Item,
    LineItem,
    Order,
    PaymentData,
    SelectedFulfillmentOption,
    Total,
    TotalType,
)

# Export engine components
from acp_checkout.errors import ACPSellerError
from acp_checkout.config import Settings
from acp_checkout.catalog import Product
from acp_checkout.totals import TaxPolicy, calculate_totals
from acp_checkout.payment import MockPaymentProvider, PaymentProvider
from acp_checkout.lifecycle import CheckoutLifecycle
from acp_checkout.seller import create_seller_router, register_exception_handlers
from acp_checkout.app import create_app

# Export agent client
from acp_checkout.client import ACPCheckoutClient

__all__ = [
    "__version__",
    # Core Models
    "Address",
    "AuthenticationMetadata",
    "AuthenticationResult",
    "Buyer",
    "CheckoutSession",
    "CheckoutSessionCancelRequest",
    "CheckoutSessionCompleteRequest",
    "CheckoutSessionCreateRequest",
    "CheckoutSessionUpdateRequest",
    "CheckoutStatus",
    "FulfillmentDetails",
    "IntentTrace",
    "Item",
    "LineItem",
    "Order",
    "PaymentData",
    "SelectedFulfillmentOption",
    "Total",
    "TotalType",
    # Engine Components
    "ACPSellerError",
    "Settings",
    "Product",
    "TaxPolicy",
    "calculate_totals",
    "PaymentProvider",
    "MockPaymentProvider",
    "CheckoutLifecycle",
    "create_seller_router",
    "register_exception_handlers",
    "create_app",
    # Agent Components
    "ACPCheckoutClient",
]
