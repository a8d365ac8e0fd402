"""Conversion of native wei values into the ledger's decimal amount column.

The ledger stores amounts in ether as ``NUMERIC(38, 18)``. A wei value is an
exact multiple of 10**-18 ether, so conversion never rounds: it either fits the
column exactly or is rejected.
"""
from __future__ import annotations

from decimal import Decimal, localcontext

WEI_PER_ETH = Decimal(10) ** 18

AMOUNT_PRECISION = 38
AMOUNT_SCALE = 18
MAX_AMOUNT_WEI = 10 ** AMOUNT_PRECISION - 1


class AmountOverflowError(ValueError):
    """Raised when a wei value cannot be represented in the ledger column."""


def wei_to_amount(value_wei: int) -> Decimal:
    if isinstance(value_wei, bool) or not isinstance(value_wei, int):
        raise AmountOverflowError(f"amount must be an integer wei value, got {value_wei!r}")
    if value_wei < 0:
        raise AmountOverflowError(f"amount must be non-negative, got {value_wei}")
    if value_wei > MAX_AMOUNT_WEI:
        raise AmountOverflowError(
            f"amount {value_wei} wei exceeds NUMERIC({AMOUNT_PRECISION},{AMOUNT_SCALE})"
        )
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION + 2
        return (Decimal(value_wei) / WEI_PER_ETH).quantize(Decimal(1).scaleb(-AMOUNT_SCALE))
