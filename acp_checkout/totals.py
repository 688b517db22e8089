"""
Totals Calculator: line-item amounts and the ``totals`` rollup.

Pure integer arithmetic in minor units. Tax is charged on each line's
``subtotal - discount`` and rounded up per line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from acp_checkout.errors import ValidationError
from acp_checkout.models import FulfillmentOption, Item, LineItem, Total, TotalType


@dataclass(frozen=True)
class PricedItem:
    """A requested item joined with its authoritative catalog price."""
    product_id: str
    quantity: int
    unit_amount: int
    unit_discount: int = 0
    title: Optional[str] = None


@dataclass(frozen=True)
class TaxPolicy:
    rate_bps: int = 0  # 825 == 8.25%

    def tax_on(self, amount: int) -> int:
        return -(-amount * self.rate_bps // 10_000)


@dataclass(frozen=True)
class TotalsResult:
    line_items: list[LineItem]
    totals: list[Total]

    @property
    def total(self) -> int:
        return self.totals[-1].amount


def _amount(value: Any, param: str) -> int:
    # bool is an int subclass but never a valid amount.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Amount must be an integer in minor units, got {value!r}", param=param)
    if value < 0:
        raise ValidationError(f"Amount must not be negative, got {value}", param=param)
    return value


def calculate_totals(
    items: Sequence[PricedItem],
    selected_options: Sequence[FulfillmentOption] = (),
    tax_policy: TaxPolicy = TaxPolicy(),
) -> TotalsResult:
    line_items: list[LineItem] = []
    for index, priced in enumerate(items):
        param = f"$.items[{index}]"
        quantity = _amount(priced.quantity, f"{param}.quantity")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", param=f"{param}.quantity")
        base_amount = _amount(priced.unit_amount, param) * quantity
        discount = _amount(priced.unit_discount, param) * quantity
        if discount > base_amount:
            raise ValidationError(
                f"Discount {discount} exceeds base amount {base_amount}", param=param
            )
        tax = tax_policy.tax_on(base_amount - discount)
        line_items.append(
            LineItem(
                id=f"li_{priced.product_id}",
                item=Item(id=priced.product_id, quantity=quantity),
                title=priced.title,
                base_amount=base_amount,
                discount=discount,
                subtotal=base_amount,
                tax=tax,
                total=base_amount + tax - discount,
            )
        )

    items_base_amount = sum(li.base_amount for li in line_items)
    items_discount = sum(li.discount for li in line_items)
    tax_total = sum(li.tax for li in line_items)

    totals = [
        Total(type=TotalType.ITEMS_BASE_AMOUNT, display_text="Item(s) total", amount=items_base_amount)
    ]
    if items_discount:
        totals.append(
            Total(type=TotalType.ITEMS_DISCOUNT, display_text="Discounts", amount=items_discount)
        )
    totals.append(
        Total(
            type=TotalType.SUBTOTAL,
            display_text="Subtotal",
            amount=items_base_amount - items_discount,
        )
    )

    fulfillment_total = 0
    if selected_options:
        for index, option in enumerate(selected_options):
            fulfillment_total += _amount(option.total, f"$.selected_fulfillment_options[{index}]")
        totals.append(
            Total(type=TotalType.FULFILLMENT, display_text="Shipping", amount=fulfillment_total)
        )

    totals.append(Total(type=TotalType.TAX, display_text="Tax", amount=tax_total))
    totals.append(
        Total(
            type=TotalType.TOTAL,
            display_text="Total",
            amount=sum(li.total for li in line_items) + fulfillment_total,
        )
    )
    return TotalsResult(line_items=line_items, totals=totals)
