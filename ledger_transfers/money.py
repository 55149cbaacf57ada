"""
Monetary Value Module

Parsing and fixed-scale quantization for balances and transfer amounts.
NEVER uses float for monetary values.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from .errors import BalanceOverflow, InvalidAmount

# Decimal contexts are thread-local, so ledger arithmetic carries its own
LEDGER_CONTEXT = Context(prec=38, rounding=ROUND_HALF_UP)

DEFAULT_SCALE = 5  # sub-unit digits persisted for every balance


def quantum(scale: int = DEFAULT_SCALE) -> Decimal:
    """Smallest representable unit at the given scale"""
    return Decimal(1).scaleb(-scale)


def quantize(value: Union[Decimal, int, str], scale: int = DEFAULT_SCALE) -> Decimal:
    """Round a value to the persisted scale"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(quantum(scale), context=LEDGER_CONTEXT)


def max_magnitude(scale: int = DEFAULT_SCALE) -> Decimal:
    """
    Exclusive upper bound on parsed amounts and opening balances

    One integer digit of headroom is left below the context precision, so the
    sum of any two parsed values still fits at the given scale.
    """
    return Decimal(10) ** (LEDGER_CONTEXT.prec - scale - 1)


def debit(balance: Decimal, amount: Decimal, scale: int = DEFAULT_SCALE) -> Decimal:
    """Balance after removing amount, at the persisted scale"""
    try:
        return quantize(LEDGER_CONTEXT.subtract(balance, amount), scale)
    except InvalidOperation:
        raise BalanceOverflow("resulting balance exceeds the supported range")


def credit(balance: Decimal, amount: Decimal, scale: int = DEFAULT_SCALE) -> Decimal:
    """
    Balance after adding amount, at the persisted scale

    Raises:
        BalanceOverflow: If the sum needs more digits than LEDGER_CONTEXT holds
    """
    try:
        return quantize(LEDGER_CONTEXT.add(balance, amount), scale)
    except InvalidOperation:
        raise BalanceOverflow("resulting balance exceeds the supported range")


def parse_decimal(text: str, scale: int = DEFAULT_SCALE) -> Decimal:
    """
    Parse text into a finite Decimal at the given scale.

    Raises:
        InvalidAmount: If the text is not a number, is NaN/Infinity, is not
            below max_magnitude(scale), or carries more fractional digits than
            the scale can hold
    """
    if not isinstance(text, str):
        raise InvalidAmount(f"amount must be a decimal string, got {type(text).__name__}")

    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        raise InvalidAmount(f"amount must be a number: {text!r}")

    if not value.is_finite():
        raise InvalidAmount(f"amount must be a finite number: {text!r}")

    if value.copy_abs() >= max_magnitude(scale):
        raise InvalidAmount(f"amount is out of range: {text!r}")

    rounded = quantize(value, scale)

    if rounded != value:
        raise InvalidAmount(
            f"amount {text!r} exceeds the supported precision of {scale} decimal places"
        )

    return rounded


def parse_amount(text: str, scale: int = DEFAULT_SCALE) -> Decimal:
    """Parse a transfer amount, which must be strictly positive"""
    amount = parse_decimal(text, scale)
    if amount <= 0:
        raise InvalidAmount(f"amount must be a positive number: {text!r}")
    return amount


def parse_initial_balance(text: str, scale: int = DEFAULT_SCALE) -> Decimal:
    """Parse an opening balance, which may be zero but never negative"""
    balance = parse_decimal(text, scale)
    if balance < 0:
        raise InvalidAmount(f"initial_balance must not be negative: {text!r}")
    return balance


def format_balance(value: Decimal, scale: int = DEFAULT_SCALE) -> str:
    """Render a balance as a fixed-scale decimal string"""
    return str(quantize(value, scale))
