from decimal import Decimal

from rich.console import Console


def get_rich_console() -> Console: return Console(stderr=True)


def format_money(value: Decimal) -> str:
    """1234.5 -> 'R$ 1.234,50'."""
    text = f"{Decimal(value):,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")
