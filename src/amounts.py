"""
Amount Arithmetic

Money is always Decimal. Floats are refused at the door: a float has
already lost precision by the time it reaches us.

Comparison is numeric, so "100" and "100.00" are equal amounts.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Iterable, Union

from src.errors import InvalidAmountError


AmountLike = Union[str, int, Decimal]

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def parse_amount(value: AmountLike, field: str = "amount") -> Decimal:
    """
    Parse a caller-supplied amount into a Decimal.

    Raises:
        InvalidAmountError: for floats, blanks, garbage and non-finite values
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(
            f"{field} must be a decimal string, not {type(value).__name__}",
            field=field,
            value=value,
        )

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidAmountError(f"{field} is required", field=field, value=value)
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise InvalidAmountError(
                f"{field} is not a valid amount: '{value}'",
                field=field,
                value=value,
            )
    else:
        raise InvalidAmountError(
            f"{field} has unsupported type {type(value).__name__}",
            field=field,
            value=value,
        )

    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be finite", field=field, value=value)

    return amount


def parse_positive_amount(value: AmountLike, field: str = "amount") -> Decimal:
    amount = parse_amount(value, field)
    if amount <= ZERO:
        raise InvalidAmountError(f"{field} must be greater than zero", field=field, value=value)
    return amount


def parse_non_negative_amount(value: AmountLike, field: str = "amount") -> Decimal:
    amount = parse_amount(value, field)
    if amount < ZERO:
        raise InvalidAmountError(f"{field} cannot be negative", field=field, value=value)
    return amount


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Exact sum; zero for an empty iterable."""
    return sum(amounts, ZERO)


def amounts_equal(a: Decimal, b: Decimal) -> bool:
    return a.compare(b) == 0


def format_amount(value: Decimal) -> str:
    """
    Render an amount for display and storage.

    Two fraction digits when the value fits in them, otherwise the full
    precision. Never rounds.
    """
    if value == value.quantize(CENT, rounding=ROUND_DOWN):
        return str(value.quantize(CENT))
    return format(value.normalize(), "f")


# =============================================================================
# ALLOCATION
# =============================================================================
# The ledger never derives split amounts itself. These helpers are for
# callers precomputing splits: every slice but the last is rounded down to
# cents, and the last slice takes the remainder so the slices sum exactly
# to the total.

def _allocate(total: Decimal, weights: list[Decimal]) -> list[Decimal]:
    weight_sum = sum_amounts(weights)
    slices = []
    for weight in weights[:-1]:
        slices.append((total * weight / weight_sum).quantize(CENT, rounding=ROUND_DOWN))
    slices.append(total - sum_amounts(slices))
    return slices


def allocate_equal(total: Decimal, count: int) -> list[Decimal]:
    if count < 1:
        raise ValueError("count must be at least 1")
    return _allocate(total, [Decimal(1)] * count)


def allocate_by_percentages(total: Decimal, percentages: list[AmountLike]) -> list[Decimal]:
    if not percentages:
        raise ValueError("percentages cannot be empty")
    parsed = [parse_non_negative_amount(p, field="percentage") for p in percentages]
    if not amounts_equal(sum_amounts(parsed), HUNDRED):
        raise InvalidAmountError(
            f"Percentages must sum to 100, got {sum_amounts(parsed)}",
            field="percentage",
        )
    return _allocate(total, parsed)


def allocate_by_shares(total: Decimal, shares: list[AmountLike]) -> list[Decimal]:
    if not shares:
        raise ValueError("shares cannot be empty")
    parsed = [parse_positive_amount(s, field="share") for s in shares]
    return _allocate(total, parsed)
