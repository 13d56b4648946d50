"""Money helpers.

Amounts are stored and summed as integer minor units (cents). Major units
(e.g. 12.50 Leones) only exist at the HTTP boundary.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP

MINOR_PER_MAJOR = 100


def to_minor_units(amount):
    """Convert a major-unit amount (str, int, float or Decimal) to integer minor units.

    Goes through str() so binary float artefacts (0.1 + 0.2) never leak in.
    Raises ValueError for anything that is not a finite number.
    """
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    minor = (value * MINOR_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


def to_major_units(minor):
    """Integer minor units -> Decimal major units with two places."""
    return (Decimal(int(minor)) / MINOR_PER_MAJOR).quantize(Decimal("0.01"))


def to_major_float(minor):
    """Major units as a float, for JSON responses."""
    return float(to_major_units(minor))


def apply_ratio(minor, ratio):
    """Scale a minor-unit amount by a ratio, rounding down to a whole unit.

    Rounding down means a seller's share can never exceed what was actually
    collected.
    """
    scaled = Decimal(int(minor)) * Decimal(str(ratio))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_DOWN))


def format_leones(minor, show_decimals=True):
    """Format minor units for display, e.g. 123456 -> 'Le 1,234.56'."""
    major = to_major_units(minor)
    if show_decimals:
        return f"Le {major:,.2f}"
    return f"Le {major.quantize(Decimal('1'), rounding=ROUND_HALF_UP):,}"
