import pytest

from acp_checkout.errors import ValidationError
from acp_checkout.models import FulfillmentOption, TotalType
from acp_checkout.totals import PricedItem, TaxPolicy, calculate_totals


def _amounts(result):
    return {total.type: total.amount for total in result.totals}


def test_single_item_with_ten_percent_tax():
    result = calculate_totals(
        [PricedItem(product_id="item_123", quantity=1, unit_amount=300)],
        tax_policy=TaxPolicy(1000),
    )

    line = result.line_items[0]
    assert line.id == "li_item_123"
    assert (line.base_amount, line.discount, line.subtotal, line.tax, line.total) == (300, 0, 300, 30, 330)
    assert [t.type for t in result.totals] == [
        TotalType.ITEMS_BASE_AMOUNT,
        TotalType.SUBTOTAL,
        TotalType.TAX,
        TotalType.TOTAL,
    ]
    assert result.total == 330


def test_discount_reduces_taxable_amount_and_is_reported():
    result = calculate_totals(
        [PricedItem(product_id="p", quantity=2, unit_amount=1000, unit_discount=100)],
        tax_policy=TaxPolicy(1000),
    )

    line = result.line_items[0]
    assert line.base_amount == 2000
    assert line.discount == 200
    assert line.subtotal == 2000
    assert line.tax == 180
    assert line.total == 1980
    amounts = _amounts(result)
    assert amounts[TotalType.ITEMS_DISCOUNT] == 200
    assert amounts[TotalType.SUBTOTAL] == 1800


def test_fulfillment_is_added_after_subtotal():
    option = FulfillmentOption(id="ship_std", title="Standard", subtotal=799, tax=64, total=863)
    result = calculate_totals(
        [PricedItem(product_id="p", quantity=1, unit_amount=300)],
        [option],
        TaxPolicy(1000),
    )

    assert [t.type for t in result.totals] == [
        TotalType.ITEMS_BASE_AMOUNT,
        TotalType.SUBTOTAL,
        TotalType.FULFILLMENT,
        TotalType.TAX,
        TotalType.TOTAL,
    ]
    assert _amounts(result)[TotalType.FULFILLMENT] == 863
    assert result.total == 330 + 863


def test_totals_are_consistent_with_line_items():
    items = [
        PricedItem(product_id="a", quantity=3, unit_amount=333),
        PricedItem(product_id="b", quantity=1, unit_amount=1999, unit_discount=499),
    ]
    result = calculate_totals(items, tax_policy=TaxPolicy(825))

    amounts = _amounts(result)
    assert amounts[TotalType.ITEMS_BASE_AMOUNT] == sum(li.base_amount for li in result.line_items)
    assert amounts[TotalType.TAX] == sum(li.tax for li in result.line_items)
    assert amounts[TotalType.TOTAL] == sum(li.total for li in result.line_items)
    assert all(li.total == li.subtotal + li.tax - li.discount for li in result.line_items)


def test_tax_rounds_up_per_line():
    assert TaxPolicy(825).tax_on(999) == 83  # 82.4175
    assert TaxPolicy(1000).tax_on(300) == 30
    assert TaxPolicy(0).tax_on(12345) == 0


def test_same_inputs_give_same_outputs():
    items = [PricedItem(product_id="a", quantity=2, unit_amount=1234, unit_discount=34)]
    first = calculate_totals(items, tax_policy=TaxPolicy(725))
    second = calculate_totals(items, tax_policy=TaxPolicy(725))
    assert first == second


@pytest.mark.parametrize("amount", [3.0, True, "300", None])
def test_non_integer_amounts_are_rejected(amount):
    with pytest.raises(ValidationError) as exc_info:
        calculate_totals([PricedItem(product_id="a", quantity=1, unit_amount=amount)])
    assert exc_info.value.param == "$.items[0]"


def test_negative_amount_is_rejected():
    with pytest.raises(ValidationError):
        calculate_totals([PricedItem(product_id="a", quantity=1, unit_amount=-1)])


def test_discount_above_base_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        calculate_totals([PricedItem(product_id="a", quantity=1, unit_amount=100, unit_discount=101)])
    assert "exceeds" in str(exc_info.value)


def test_zero_quantity_is_rejected():
    with pytest.raises(ValidationError) as exc_info:
        calculate_totals([PricedItem(product_id="a", quantity=0, unit_amount=100)])
    assert exc_info.value.param == "$.items[0].quantity"
