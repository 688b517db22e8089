"""
Database tables and connection lifecycle for the checkout engine.

Uses async SQLAlchemy; ``aiosqlite`` for local runs and tests, ``asyncpg``
for PostgreSQL. Columns use the generic ``JSON`` type so both work.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# ── Product catalog ──────────────────────────────────────────────────────

class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    unit_amount = Column(Integer, nullable=False)  # minor units
    unit_discount = Column(Integer, default=0)
    currency = Column(String, default="usd")
    in_stock = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ── Checkout sessions ────────────────────────────────────────────────────

class CheckoutSessionRow(Base):
    __tablename__ = "checkout_sessions"

    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default="not_ready_for_payment")
    # Bumped on every write; guards against writers in other processes.
    version = Column(Integer, nullable=False, default=1)
    session_data = Column(JSON, nullable=False)  # full CheckoutSession JSON
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ── Orders ───────────────────────────────────────────────────────────────

class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True)
    checkout_session_id = Column(String, nullable=False, unique=True)
    total_amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    payment_provider = Column(String, default="")
    authorization_id = Column(String, default="")
    order_data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ── Idempotency records ──────────────────────────────────────────────────

class IdempotencyRecordRow(Base):
    __tablename__ = "idempotency_records"

    idempotency_key = Column(String, primary_key=True)
    operation = Column(String, primary_key=True)
    fingerprint = Column(String, nullable=False)
    status_code = Column(Integer, nullable=False)
    response_body = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)  # epoch seconds
    expires_at = Column(Float, nullable=False, index=True)


# ── Intent traces (cancel reasons, write-only) ───────────────────────────

class IntentTraceRow(Base):
    __tablename__ = "intent_traces"

    id = Column(String, primary_key=True)
    checkout_session_id = Column(String, nullable=False, index=True)
    reason_code = Column(String, nullable=False)
    trace_summary = Column(Text, nullable=True)
    trace_data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Database:
    """Owns the engine and session factory; no module-level connection."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def init(self) -> None:
        """Create the engine and any missing tables."""
        if self.engine is not None:
            return
        self.engine = create_async_engine(self.url, echo=self.echo)
        self._session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database ready at %s", self.engine.url.render_as_string(hide_password=True))

    def session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("Database.init() must be awaited before use")
        return self._session_factory()

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self._session_factory = None
