from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
# Largest amount whose cent value still fits a signed 64-bit column.
MAX_AMOUNT = Decimal("9999999999999.99")


def to_cents(value: Union[Decimal, int, float, str]) -> int:
    """Convert a decimal amount to integer cents.

    Rejects negative values, values above ``MAX_AMOUNT`` and anything finer
    than a cent instead of rounding it away.
    """
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount < 0:
        raise ValueError("Amount cannot be negative")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount cannot exceed {MAX_AMOUNT}")
    if amount != amount.quantize(CENT):
        raise ValueError("Amount cannot have more than two decimal places")
    return int((amount * 100).quantize(Decimal("1")))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def percent_of(part: int, total: int) -> int:
    if not total:
        return 0
    share = Decimal(part) * 100 / Decimal(total)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
