"""
Simple example showing how to plug your own PSP into acp-checkout.

This minimal example shows the core pattern:
1. Implement: subclass PaymentProvider with your authorization call
2. Describe: list the products you sell (prices in minor units)
3. Deploy: build the app with create_app() and serve it
"""

from typing import Optional

from acp_checkout import (
    AuthenticationResult,
    CheckoutSession,
    PaymentData,
    PaymentProvider,
    Product,
    Settings,
    create_app,
)
from acp_checkout.payment import PaymentAuthorization


class SimpleShopPayments(PaymentProvider):
    """
    Approves every token except ones your risk rules reject.
    In production, call your PSP's authorization API here.
    """

    async def authorize(
        self,
        *,
        session: CheckoutSession,
        payment_data: PaymentData,
        authentication_result: Optional[AuthenticationResult] = None,
    ) -> PaymentAuthorization:
        if payment_data.token.startswith("blocked_"):
            return PaymentAuthorization(
                approved=False, decline_code="risk_rejected", message="Payment was declined"
            )
        return PaymentAuthorization(approved=True, authorization_id=f"auth_{session.id}")

    def requires_challenge(self, payment_data: PaymentData) -> bool:
        # Ask issuers to step up first-time cards.
        return payment_data.token.startswith("new_card_")


settings = Settings(
    database_url="sqlite+aiosqlite:///./simple_shop.db",
    require_idempotency_key=False,
    three_ds_mode="threshold",
    three_ds_threshold=50_000,
)

# create_app mounts the 5 ACP endpoints:
# POST   /checkout_sessions
# GET    /checkout_sessions/{id}
# POST   /checkout_sessions/{id}
# POST   /checkout_sessions/{id}/complete
# POST   /checkout_sessions/{id}/cancel
app = create_app(
    settings,
    payments=SimpleShopPayments(),
    products=[
        Product(id="tee_black", title="Black T-Shirt", unit_amount=2000),
        Product(id="tee_white", title="White T-Shirt", unit_amount=2000, unit_discount=250),
    ],
    title="Simple ACP Merchant",
)


@app.get("/")
async def root():
    return {
        "message": "Simple ACP Merchant",
        "endpoints": [
            "POST /checkout_sessions - Create checkout",
            "GET /checkout_sessions/{id} - Get checkout",
            "POST /checkout_sessions/{id} - Update checkout",
            "POST /checkout_sessions/{id}/complete - Complete order",
            "POST /checkout_sessions/{id}/cancel - Cancel checkout",
        ],
    }


if __name__ == "__main__":
    import uvicorn

    print("Starting Simple ACP Merchant on http://localhost:8000")
    print("API docs at http://localhost:8000/docs")
    uvicorn.run(app, host="0.0.0.0", port=8000)
