from decimal import Decimal

import pytest

from txsigner.amounts import MAX_AMOUNT_WEI, AmountOverflowError, wei_to_amount


@pytest.mark.parametrize(
    "wei, expected",
    [
        (0, Decimal("0")),
        (1, Decimal("0.000000000000000001")),
        (10**18, Decimal("1")),
        (1_234_567_890_123_456_789, Decimal("1.234567890123456789")),
    ],
)
def test_wei_converts_exactly(wei, expected):
    assert wei_to_amount(wei) == expected


def test_result_carries_full_scale():
    assert wei_to_amount(10**18).as_tuple().exponent == -18


def test_largest_value_fits_column():
    amount = wei_to_amount(MAX_AMOUNT_WEI)

    assert amount == Decimal("99999999999999999999.999999999999999999")
    assert len(amount.as_tuple().digits) == 38


@pytest.mark.parametrize("value", [MAX_AMOUNT_WEI + 1, -1, True, 1.5, "10"])
def test_unrepresentable_values_are_rejected(value):
    with pytest.raises(AmountOverflowError):
        wei_to_amount(value)
