"""
Session Store: the authoritative owner of checkout session state.

Every mutation rebuilds line items, fulfillment options and totals from the
catalog and the client's inputs, re-derives the status, and writes the
session (plus any order or intent-trace row) in one transaction. Mutations
of one session are serialized in-process with a per-session lock; the
``version`` column catches writers in other processes.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, update

from acp_checkout.authentication import AuthenticationGate, GateAction
from acp_checkout.catalog import Catalog
from acp_checkout.config import Settings
from acp_checkout.database import CheckoutSessionRow, Database, IntentTraceRow, OrderRow
from acp_checkout.errors import (
    NotFoundError,
    ProcessingError,
    TerminalStateError,
    ValidationError,
)
from acp_checkout.idempotency import LedgerEntry
from acp_checkout.locks import KeyedLock
from acp_checkout.models import (
    TERMINAL_STATUSES,
    Buyer,
    CheckoutSession,
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionUpdateRequest,
    CheckoutStatus,
    FulfillmentDetails,
    FulfillmentOption,
    IntentTrace,
    Item,
    Link,
    LinkType,
    MessageCode,
    MessageInfo,
    MessageLevel,
    Order,
    PaymentProvider as PaymentProviderInfo,
    SelectedFulfillmentOption,
)
from acp_checkout.payment import PaymentProvider
from acp_checkout.totals import PricedItem, TaxPolicy, calculate_totals


logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(
        self,
        database: Database,
        catalog: Catalog,
        gate: AuthenticationGate,
        payments: PaymentProvider,
        settings: Settings,
    ) -> None:
        self.database = database
        self.catalog = catalog
        self.gate = gate
        self.payments = payments
        self.settings = settings
        self.tax_policy = TaxPolicy(settings.tax_rate_bps)
        self.fulfillment_tax_policy = TaxPolicy(settings.fulfillment_tax_rate_bps)
        self._locks = KeyedLock()

    # ── Operations ───────────────────────────────────────────────────────

    async def create(
        self,
        request: CheckoutSessionCreateRequest,
        *,
        receipt: Optional[LedgerEntry] = None,
    ) -> CheckoutSession:
        session = await self._build(
            session_id=f"cs_{uuid.uuid4().hex}",
            currency=request.currency or self.settings.currency,
            items=request.items,
            buyer=request.buyer,
            fulfillment_details=request.fulfillment_details,
            selected=request.selected_fulfillment_options or [],
            explicit_selection=True,
        )
        async with self.database.session() as db:
            db.add(
                CheckoutSessionRow(
                    id=session.id,
                    status=session.status.value,
                    version=1,
                    session_data=session.to_json(),
                )
            )
            if receipt is not None:
                db.add(receipt.row(session.to_json()))
            await db.commit()
        logger.info("Created checkout session %s (%s)", session.id, session.status.value)
        return session

    async def retrieve(self, session_id: str) -> CheckoutSession:
        _, session = await self._load(session_id)
        return session

    async def update(
        self,
        session_id: str,
        patch: CheckoutSessionUpdateRequest,
        *,
        receipt: Optional[LedgerEntry] = None,
    ) -> CheckoutSession:
        async with self._locks.hold(session_id):
            version, session = await self._load(session_id)
            self._ensure_mutable(session)

            provided = patch.model_fields_set
            items = (
                patch.items
                if patch.items is not None
                else [line_item.item for line_item in session.line_items]
            )
            explicit_selection = "selected_fulfillment_options" in provided
            updated = await self._build(
                session_id=session.id,
                currency=session.currency,
                items=items,
                # Explicit null clears; omission keeps the current value.
                buyer=patch.buyer if "buyer" in provided else session.buyer,
                fulfillment_details=(
                    patch.fulfillment_details
                    if "fulfillment_details" in provided
                    else session.fulfillment_details
                ),
                selected=(
                    patch.selected_fulfillment_options or []
                    if explicit_selection
                    else session.selected_fulfillment_options
                ),
                explicit_selection=explicit_selection,
            )
            await self._save(session_id, version, updated, receipt=receipt)
        logger.info(
            "Updated checkout session %s: %s -> %s",
            session_id,
            session.status.value,
            updated.status.value,
        )
        return updated

    async def complete(
        self,
        session_id: str,
        request: CheckoutSessionCompleteRequest,
        *,
        receipt: Optional[LedgerEntry] = None,
    ) -> CheckoutSession:
        async with self._locks.hold(session_id):
            version, original = await self._load(session_id)
            self._ensure_mutable(original)
            if original.status == CheckoutStatus.NOT_READY_FOR_PAYMENT:
                raise ValidationError(
                    "Checkout session is not ready for payment",
                    param="$.status",
                )

            session = original
            if request.buyer is not None:
                session = session.model_copy(update={"buyer": request.buyer})

            decision = self.gate.evaluate(session, request)

            if decision.action == GateAction.CHALLENGE:
                challenged = session.model_copy(
                    update={
                        "status": CheckoutStatus.AUTHENTICATION_REQUIRED,
                        "authentication_metadata": decision.metadata,
                        "messages": [
                            *session.messages,
                            MessageInfo(
                                type=MessageLevel.INFO,
                                code=MessageCode.REQUIRES_3DS,
                                param="$.authentication_metadata",
                                content="Complete the issuer authentication challenge to continue",
                            )
                        ],
                    }
                )
                await self._save(session_id, version, challenged, receipt=receipt)
                return challenged

            if not decision.permits_completion:
                declined = self._declined(session, "Payment authentication was not successful")
                await self._save(session_id, version, declined, receipt=receipt)
                logger.info(
                    "Checkout session %s declined after authentication outcome %s",
                    session_id,
                    decision.result.outcome.value if decision.result else "none",
                )
                return declined

            in_progress = session.model_copy(
                update={"status": CheckoutStatus.IN_PROGRESS, "authentication_metadata": None}
            )
            version = await self._save(session_id, version, in_progress)
            try:
                authorization = await self.payments.authorize(
                    session=in_progress,
                    payment_data=request.payment_data,
                    authentication_result=decision.result,
                )
            except Exception:
                logger.warning(
                    "Payment authorization failed for %s; restoring %s",
                    session_id,
                    original.status.value,
                )
                await self._save(session_id, version, original)
                raise

            if not authorization.approved:
                declined = self._declined(
                    session, authorization.message or "Payment was declined"
                )
                await self._save(session_id, version, declined, receipt=receipt)
                logger.info(
                    "Payment declined for checkout session %s: %s",
                    session_id,
                    authorization.decline_code,
                )
                return declined

            order_id = f"order_{uuid.uuid4().hex[:16]}"
            completed = session.model_copy(
                update={
                    "status": CheckoutStatus.COMPLETED,
                    "authentication_metadata": None,
                    "messages": [],
                    "order": Order(
                        id=order_id,
                        checkout_session_id=session_id,
                        permalink_url=f"{self.settings.order_base_url.rstrip('/')}/{order_id}",
                    ),
                }
            )
            await self._save(
                session_id,
                version,
                completed,
                [
                    OrderRow(
                        id=order_id,
                        checkout_session_id=session_id,
                        total_amount=completed.total_amount(),
                        currency=completed.currency,
                        payment_provider=request.payment_data.provider,
                        authorization_id=authorization.authorization_id or "",
                        order_data=completed.order.model_dump(mode="json"),
                    )
                ],
                receipt=receipt,
            )
        logger.info("Created order %s for checkout session %s", order_id, session_id)
        return completed

    async def cancel(
        self,
        session_id: str,
        intent_trace: Optional[IntentTrace] = None,
        *,
        receipt: Optional[LedgerEntry] = None,
    ) -> CheckoutSession:
        async with self._locks.hold(session_id):
            version, session = await self._load(session_id)
            self._ensure_mutable(session)

            canceled = session.model_copy(
                update={
                    "status": CheckoutStatus.CANCELED,
                    "authentication_metadata": None,
                    "messages": [
                        *session.messages,
                        MessageInfo(type=MessageLevel.INFO, content="Checkout session canceled"),
                    ],
                }
            )
            rows = []
            if intent_trace is not None:
                rows.append(
                    IntentTraceRow(
                        id=f"it_{uuid.uuid4().hex[:16]}",
                        checkout_session_id=session_id,
                        reason_code=intent_trace.reason_code.value,
                        trace_summary=intent_trace.trace_summary,
                        trace_data=intent_trace.metadata,
                    )
                )
            await self._save(session_id, version, canceled, rows, receipt=receipt)
        logger.info(
            "Canceled checkout session %s (reason: %s)",
            session_id,
            intent_trace.reason_code.value if intent_trace else "none",
        )
        return canceled

    # ── Building ─────────────────────────────────────────────────────────

    async def _build(
        self,
        *,
        session_id: str,
        currency: str,
        items: Sequence[Item],
        buyer: Optional[Buyer],
        fulfillment_details: Optional[FulfillmentDetails],
        selected: Sequence[SelectedFulfillmentOption],
        explicit_selection: bool,
    ) -> CheckoutSession:
        priced = await self._price_items(items, currency)
        options = self._fulfillment_options(fulfillment_details)
        messages: list[MessageInfo] = []
        kept = self._check_selection(
            selected, options, {p.product_id for p in priced}, explicit_selection, messages
        )
        offered = {option.id: option for option in options}
        result = calculate_totals(
            priced, [offered[s.option_id] for s in kept], self.tax_policy
        )

        missing = []
        if not result.line_items:
            missing.append(("$.items", "Add at least one item"))
        if fulfillment_details is None or fulfillment_details.address is None:
            missing.append(("$.fulfillment_details.address", "Provide a fulfillment address"))
        if not kept:
            missing.append(("$.selected_fulfillment_options", "Select a fulfillment option"))
        for param, content in missing:
            messages.append(
                MessageInfo(
                    type=MessageLevel.ERROR,
                    code=MessageCode.MISSING,
                    param=param,
                    content=content,
                )
            )

        return CheckoutSession(
            id=session_id,
            status=(
                CheckoutStatus.NOT_READY_FOR_PAYMENT if missing else CheckoutStatus.READY_FOR_PAYMENT
            ),
            currency=currency,
            buyer=buyer,
            payment_provider=PaymentProviderInfo(provider=self.settings.payment_provider),
            line_items=result.line_items,
            fulfillment_details=fulfillment_details,
            fulfillment_options=options,
            selected_fulfillment_options=kept,
            totals=result.totals,
            messages=messages,
            links=self._links(),
        )

    async def _price_items(self, items: Sequence[Item], currency: str) -> list[PricedItem]:
        products = await self.catalog.get_many(item.id for item in items)
        seen: set[str] = set()
        priced = []
        for index, item in enumerate(items):
            param = f"$.items[{index}]"
            if item.id in seen:
                raise ValidationError(f"Duplicate item '{item.id}'", param=f"{param}.id")
            seen.add(item.id)
            product = products.get(item.id)
            if product is None:
                raise ValidationError(f"Unknown item '{item.id}'", param=f"{param}.id")
            if not product.in_stock:
                raise ValidationError(
                    f"Item '{item.id}' is out of stock", code="out_of_stock", param=f"{param}.id"
                )
            if product.currency.lower() != currency:
                raise ValidationError(
                    f"Item '{item.id}' is priced in {product.currency}, not {currency}",
                    param=f"{param}.id",
                )
            priced.append(
                PricedItem(
                    product_id=product.id,
                    quantity=item.quantity,
                    unit_amount=product.unit_amount,
                    unit_discount=product.unit_discount,
                    title=product.title,
                )
            )
        return priced

    def _fulfillment_options(
        self, details: Optional[FulfillmentDetails]
    ) -> list[FulfillmentOption]:
        if details is None or details.address is None:
            return []
        scope = (
            "domestic"
            if details.address.country == self.settings.merchant_country
            else "international"
        )
        options = []
        for rate in self.settings.shipping_rates:
            if rate.scope != scope:
                continue
            tax = self.fulfillment_tax_policy.tax_on(rate.amount)
            options.append(
                FulfillmentOption(
                    id=rate.id,
                    title=rate.title,
                    subtitle=rate.subtitle or None,
                    carrier=rate.carrier or None,
                    subtotal=rate.amount,
                    tax=tax,
                    total=rate.amount + tax,
                )
            )
        return options

    @staticmethod
    def _check_selection(
        selected: Sequence[SelectedFulfillmentOption],
        options: Sequence[FulfillmentOption],
        product_ids: set[str],
        explicit: bool,
        messages: list[MessageInfo],
    ) -> list[SelectedFulfillmentOption]:
        """
        Keep selections that reference an offered option. An invalid selection
        the client just sent is an error; one carried over from an earlier
        state (e.g. before the address changed) is dropped with a notice.
        """
        offered = {option.id: option for option in options}
        kept = []
        chosen: set[str] = set()
        for index, selection in enumerate(selected):
            param = f"$.selected_fulfillment_options[{index}]"
            option = offered.get(selection.option_id)
            problem = None
            if option is None:
                problem = (f"{param}.option_id", f"Fulfillment option '{selection.option_id}' is not available")
            elif option.type != selection.type:
                problem = (f"{param}.type", f"Fulfillment option '{selection.option_id}' is not {selection.type.value}")
            elif selection.option_id in chosen:
                problem = (f"{param}.option_id", f"Fulfillment option '{selection.option_id}' is selected twice")
            elif selection.item_ids and not set(selection.item_ids) <= product_ids:
                problem = (f"{param}.item_ids", "Selection references items not in this checkout")

            if problem is not None:
                if explicit:
                    raise ValidationError(problem[1], param=problem[0])
                messages.append(
                    MessageInfo(
                        type=MessageLevel.INFO,
                        code=MessageCode.INVALID,
                        param="$.selected_fulfillment_options",
                        content=f"{problem[1]}; the selection was removed",
                    )
                )
                continue
            chosen.add(selection.option_id)
            kept.append(selection)
        return kept

    def _links(self) -> list[Link]:
        links = []
        for link_type, url in (
            (LinkType.TERMS_OF_USE, self.settings.terms_of_use_url),
            (LinkType.PRIVACY_POLICY, self.settings.privacy_policy_url),
            (LinkType.RETURN_POLICY, self.settings.return_policy_url),
        ):
            if url:
                links.append(Link(type=link_type, url=url))
        return links

    @staticmethod
    def _declined(session: CheckoutSession, content: str) -> CheckoutSession:
        messages = [m for m in session.messages if m.code != MessageCode.PAYMENT_DECLINED]
        messages.append(
            MessageInfo(
                type=MessageLevel.ERROR,
                code=MessageCode.PAYMENT_DECLINED,
                param="$.payment_data",
                content=content,
            )
        )
        return session.model_copy(
            update={
                "status": CheckoutStatus.READY_FOR_PAYMENT,
                "authentication_metadata": None,
                "messages": messages,
            }
        )

    # ── Persistence ──────────────────────────────────────────────────────

    @staticmethod
    def _ensure_mutable(session: CheckoutSession) -> None:
        if session.status in TERMINAL_STATUSES:
            raise TerminalStateError(f"Checkout session is already {session.status.value}")

    async def _load(self, session_id: str) -> tuple[int, CheckoutSession]:
        async with self.database.session() as db:
            row = await db.get(CheckoutSessionRow, session_id)
            if row is None:
                raise NotFoundError(f"Checkout session {session_id} not found")
            return row.version, CheckoutSession.model_validate(row.session_data)

    async def _save(
        self,
        session_id: str,
        expected_version: int,
        session: CheckoutSession,
        extra_rows: Iterable[object] = (),
        receipt: Optional[LedgerEntry] = None,
    ) -> int:
        """
        Write ``session`` if nobody else has since ``expected_version``.

        ``extra_rows`` and the ``receipt`` ledger record commit in the same
        transaction.
        """
        async with self.database.session() as db:
            result = await db.execute(
                update(CheckoutSessionRow)
                .where(CheckoutSessionRow.id == session_id)
                .where(CheckoutSessionRow.version == expected_version)
                .values(
                    status=session.status.value,
                    version=expected_version + 1,
                    session_data=session.to_json(),
                    updated_at=func.now(),
                )
            )
            if result.rowcount != 1:
                await db.rollback()
                logger.warning("Version conflict writing checkout session %s", session_id)
                raise ProcessingError("Checkout session was modified concurrently; retry")
            for row in extra_rows:
                db.add(row)
            if receipt is not None:
                db.add(receipt.row(session.to_json()))
            await db.commit()
        return expected_version + 1
