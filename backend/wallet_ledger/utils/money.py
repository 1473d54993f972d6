"""
Money helpers — every amount is a two-decimal ``Decimal`` inside the ledger.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce int/float/str/Decimal into a 2dp Decimal.

    Raises:
        ValueError: If the value is not numeric.
    """
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, AttributeError):
            raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def share_of(gross: Decimal, rate: Decimal) -> Decimal:
    """Partner share of a gross amount, rounded half-up to the cent."""
    return to_money(gross * rate)


def fmt(amount) -> str:
    """Human display, e.g. ``12,500.00``."""
    return f"{to_money(amount):,.2f}"
