"""
CORE App - Money helpers
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal('0.01')


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_amount(value, field: str = 'amount', allow_zero: bool = True) -> Decimal:
    """
    Coerce user input to a non-negative Decimal.

    Raises:
        InvalidAmountError: non-numeric, non-finite, negative, or zero
            when allow_zero is False
    """
    from core.exceptions import InvalidAmountError

    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"{field} must be a number", field, value)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountError(f"{field} must be a number", field, value)

    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be a finite number", field, value)
    if amount < 0:
        raise InvalidAmountError(f"{field} cannot be negative", field, value)

    # Zero check applies to the stored (cent) value, not the raw input
    amount = quantize_money(amount)
    if not allow_zero and amount == 0:
        raise InvalidAmountError(f"{field} must be greater than zero", field, value)
    return amount
