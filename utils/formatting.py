"""
Formatting utilities.
"""

from typing import Optional


def format_currency(
    amount: float,
    currency: str = "USD",
    decimals: int = 0,
    signed: bool = False,
) -> str:
    """
    Format an amount as currency.

    Args:
        amount: The amount in whole units (e.g., dollars, not cents).
        currency: Currency code (default USD).
        decimals: Number of decimal places.
        signed: Prefix positive amounts with '+'.

    Returns:
        Formatted currency string, e.g. '-$12,500'.
    """
    symbols = {
        "USD": "$",
        "GBP": "£",
        "EUR": "€",
    }
    symbol = symbols.get(currency, currency + " ")
    rounded = round(amount, decimals)
    if rounded < 0:
        sign = "-"
    elif signed and rounded > 0:
        sign = "+"
    else:
        sign = ""
    return f"{sign}{symbol}{abs(rounded):,.{decimals}f}"


def format_percent(value: float, decimals: int = 1, signed: bool = False) -> str:
    """
    Format a number as a percentage.

    Args:
        value: The percentage value.
        decimals: Number of decimal places.
        signed: Prefix positive values with '+'.

    Returns:
        Formatted percentage string.
    """
    if signed:
        return f"{value:+.{decimals}f}%"
    return f"{value:.{decimals}f}%"


def format_delta(value: float, unit: Optional[str] = None) -> str:
    """Signed attribute difference with an optional unit, e.g. '+200 sf'."""
    text = f"{value:+,g}"
    return f"{text} {unit}" if unit else text
