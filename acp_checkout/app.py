"""
Application factory: wires settings, database, catalog, payment provider,
authentication gate, session store and idempotency ledger into a FastAPI app.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI

from acp_checkout import __version__
from acp_checkout.authentication import AuthenticationGate, AuthenticationPolicy
from acp_checkout.catalog import Catalog, Product
from acp_checkout.config import Settings
from acp_checkout.database import Database
from acp_checkout.idempotency import IdempotencyLedger
from acp_checkout.lifecycle import CheckoutLifecycle
from acp_checkout.payment import MockPaymentProvider, PaymentProvider
from acp_checkout.seller import create_seller_router, register_exception_handlers
from acp_checkout.sessions import SessionStore


logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    payments: Optional[PaymentProvider] = None,
    products: Iterable[Product] = (),
    title: str = "ACP Checkout Service",
) -> FastAPI:
    settings = settings or Settings.from_env()
    payments = payments or MockPaymentProvider()
    seed = list(products)

    database = Database(settings.database_url)
    catalog = Catalog(database)
    gate = AuthenticationGate(
        AuthenticationPolicy.from_settings(settings),
        payments,
        merchant_id=settings.merchant_id,
    )
    sessions = SessionStore(database, catalog, gate, payments, settings)
    ledger = IdempotencyLedger(database, ttl_seconds=settings.idempotency_ttl_seconds)
    lifecycle = CheckoutLifecycle(
        sessions, ledger, require_idempotency_key=settings.require_idempotency_key
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await database.init()
        if seed:
            count = await catalog.upsert(seed)
            logger.info("Seeded %s catalog products", count)
        await ledger.purge_expired()
        try:
            yield
        finally:
            await database.close()

    app = FastAPI(
        title=title,
        description="Merchant-side Agentic Commerce Protocol checkout sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database
    app.state.catalog = catalog
    app.state.payments = payments
    app.state.sessions = sessions
    app.state.ledger = ledger
    app.state.lifecycle = lifecycle

    app.include_router(create_seller_router(lifecycle, settings))
    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "acp-checkout", "version": __version__}

    return app
