"""Display formatting for dollar amounts."""

from decimal import Decimal
from typing import Union


def format_cost(cost: Union[Decimal, float, int]) -> str:
    """Format a cost for display, keeping sub-cent amounts readable.

    Only used when rendering; accumulated costs are never rounded.
    """
    value = float(cost)
    if value == 0:
        return "$0.000000"
    if abs(value) < 0.000001:
        return f"${value:.2e}"
    if abs(value) < 0.01:
        return f"${value:.6f}"
    if abs(value) < 1:
        return f"${value:.4f}"
    return f"${value:,.2f}"
