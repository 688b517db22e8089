"""
Merchant Service: a runnable ACP checkout merchant with a demo catalog.

Configuration comes from ACP_* environment variables (see
``acp_checkout.config``); payments go through the in-memory mock PSP.

    uvicorn services.merchant.main:app --port 8001
"""

from __future__ import annotations

import logging
import os

from acp_checkout import Product, Settings, create_app


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

DEMO_CATALOG = [
    Product(id="item_123", title="Stoneware Coffee Mug", unit_amount=300),
    Product(id="item_456", title="Linen Throw Pillow", unit_amount=2499, unit_discount=500),
    Product(id="item_789", title="Walnut Side Table", unit_amount=18900),
    Product(id="item_999", title="Velvet Accent Chair", unit_amount=129900),
    Product(id="item_000", title="Discontinued Lamp", unit_amount=4500, in_stock=False),
]

settings = Settings.from_env()
app = create_app(settings, products=DEMO_CATALOG, title="ACP Merchant Service")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8001")))
