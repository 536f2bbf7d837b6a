"""pt-BR number, currency and date formatting shared by the UI and exports."""

from datetime import date, datetime

_SWAP = str.maketrans({",": ".", ".": ","})


def format_number(value: float, decimals: int = 2) -> str:
    """``1234.5`` -> ``"1.234,50"``."""
    return f"{value:,.{decimals}f}".translate(_SWAP)


def format_brl(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}R$ {format_number(abs(value))}"


def format_currency(value: float, currency: str = "USD", max_decimals: int = 2) -> str:
    """
    Format ``value`` the way the pt-BR locale renders a currency amount.

    At least two decimals are kept; up to ``max_decimals`` are shown when the
    value needs them (sub-cent crypto prices).
    """
    prefix = {"USD": "US$", "BRL": "R$"}.get(currency, currency)
    body = f"{abs(value):,.{max_decimals}f}"
    if max_decimals > 2:
        whole, _, frac = body.partition(".")
        frac = frac.rstrip("0").ljust(2, "0")
        body = f"{whole}.{frac}"
    sign = "-" if value < 0 else ""
    return f"{sign}{prefix} {body.translate(_SWAP)}"


def format_percentage(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def format_large_number(value: float) -> str:
    if value >= 1e12:
        return f"${value / 1e12:.2f}T"
    if value >= 1e9:
        return f"${value / 1e9:.2f}B"
    if value >= 1e6:
        return f"${value / 1e6:.2f}M"
    if value >= 1e3:
        return f"${value / 1e3:.2f}K"
    return f"${value:.2f}"


def format_date(value) -> str:
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    return str(value or "")
