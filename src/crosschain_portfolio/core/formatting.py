"""Number formatting helpers for token amounts and USD values."""

from decimal import Decimal


def format_units(value: int, decimals: int) -> str:
    """
    Convert a base-unit integer into a decimal string.

    Parameters
    ----------
    value : int
        Amount in base units (e.g., wei)
    decimals : int
        Token decimals

    Returns
    -------
    str
        Exact decimal representation without trailing zeros

    Examples
    --------
    >>> format_units(100000000, 6)
    '100'
    >>> format_units(1500000000000000000, 18)
    '1.5'

    """
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if decimals <= 0:
        return f"{sign}{digits}"

    digits = digits.rjust(decimals + 1, "0")
    integer, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    if fraction:
        return f"{sign}{integer}.{fraction}"
    return f"{sign}{integer}"


def add_decimal_strings(left: str, right: str) -> str:
    """Add two decimal strings exactly."""
    return decimal_to_str(Decimal(left) + Decimal(right))


def decimal_to_str(value: Decimal) -> str:
    """Render a Decimal in plain notation without trailing zeros."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def format_currency(value: float) -> str:
    """
    Format a USD value with two decimal places.

    Parameters
    ----------
    value : float
        USD amount

    Returns
    -------
    str
        Value such as ``$1,234.50``

    """
    if value < 0:
        return f"-${-value:,.2f}"
    return f"${value:,.2f}"


def format_amount(value: str) -> str:
    """Format a token amount: 4 decimals below 1, 2 decimals otherwise."""
    num = float(value)
    if num == 0:
        return "0"
    if num < 0.0001:
        return "<0.0001"
    return f"{num:.4f}" if num < 1 else f"{num:,.2f}"


def abbreviate_address(address: str | None) -> str:
    """Shorten a wallet address to its first 6 and last 4 characters."""
    if not address:
        return ""
    return f"{address[:6]}...{address[-4:]}"
