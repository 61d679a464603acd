"""Decimal helpers shared by the ledger, market state and simulator.

All balances and amounts are quantized to 6 fractional digits and prices to
8, using banker's rounding (ROUND_HALF_EVEN).
"""
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Union

AMOUNT_PLACES = 6
PRICE_PLACES = 8

AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)
PRICE_QUANTUM = Decimal(1).scaleb(-PRICE_PLACES)

ZERO = Decimal("0")

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric) -> Decimal:
    """Convert a number or numeric string to Decimal.

    Floats go through ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather
    than its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value).strip().lstrip("+"))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a valid numeric value: {value!r}") from e


def quantize_amount(value: Numeric, places: int = AMOUNT_PLACES) -> Decimal:
    """Round an amount half-even to ``places`` fractional digits."""
    quantum = AMOUNT_QUANTUM if places == AMOUNT_PLACES else Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_EVEN)


def quantize_price(value: Numeric) -> Decimal:
    """Round a price half-even to 8 fractional digits."""
    return to_decimal(value).quantize(PRICE_QUANTUM, rounding=ROUND_HALF_EVEN)


def clamp_non_negative(value: Decimal) -> Decimal:
    """Clamp at zero; the ledger never holds a negative balance."""
    return value if value > ZERO else ZERO
