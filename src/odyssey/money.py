"""Decimal amount helpers keyed on each asset's decimal precision."""

from __future__ import annotations

from decimal import (
    Decimal,
    InvalidOperation,
    MAX_EMAX,
    MIN_EMIN,
    ROUND_CEILING,
    ROUND_FLOOR,
    localcontext,
)


NATIVE_MINT = "native"
NATIVE_DECIMALS = 9
ZERO = Decimal("0")

# uint256 holds at most 78 decimal digits; no token balance needs more.
MAX_BASE_UNIT_DIGITS = 78


def to_decimal(value: Decimal | float | int | str) -> Decimal:
    """Convert user/wire input to Decimal without float artefacts."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not dec.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return dec


def _check_decimals(decimals: int) -> None:
    if decimals < 0:
        raise ValueError(f"Invalid decimals: {decimals}")


def _integer_digits(dec: Decimal, decimals: int) -> int:
    """Digits left of the point once ``dec`` is expressed in base units."""
    if not dec:
        return 0
    return max(0, dec.adjusted() + decimals + 1)


def is_representable(value: Decimal | float | int | str, decimals: int) -> bool:
    """True iff ``value`` fits in base units at ``decimals`` precision."""
    _check_decimals(decimals)
    return _integer_digits(to_decimal(value), decimals) <= MAX_BASE_UNIT_DIGITS


def _to_base_units(value: Decimal | float | int | str, decimals: int, rounding: str) -> int:
    _check_decimals(decimals)
    dec = to_decimal(value)
    digits = _integer_digits(dec, decimals)
    if digits > MAX_BASE_UNIT_DIGITS:
        raise ValueError(f"Amount {dec} does not fit in base units at {decimals} decimals")
    with localcontext() as ctx:
        # Rounding the coefficient in the same direction as the final
        # integral rounding keeps the result exact.
        ctx.prec = digits + 2
        ctx.rounding = rounding
        ctx.Emax = MAX_EMAX
        ctx.Emin = MIN_EMIN
        return int(dec.scaleb(decimals).to_integral_value(rounding=rounding))


def spend_to_base_units(value: Decimal | float | int | str, decimals: int) -> int:
    """Convert a spend amount to base units, rounding up (conservative)."""
    return _to_base_units(value, decimals, ROUND_CEILING)


def limit_to_base_units(value: Decimal | float | int | str, decimals: int) -> int:
    """Convert an allowance to base units, rounding down (conservative)."""
    return _to_base_units(value, decimals, ROUND_FLOOR)


def base_units_to_decimal(value: int, decimals: int) -> Decimal:
    """Convert integer base units back to decimal units."""
    _check_decimals(decimals)
    with localcontext() as ctx:
        ctx.prec = len(str(abs(value))) + decimals + 2
        dec = Decimal(value).scaleb(-decimals).normalize()
        # normalize() turns 100 into 1E+2
        return dec.quantize(Decimal(1)) if dec.as_tuple().exponent > 0 else dec


def format_amount(value: Decimal, symbol: str | None = None, places: int = 4) -> str:
    """Format a decimal amount for display."""
    text = f"{value:.{places}f}"
    return f"{text} {symbol}" if symbol else text
