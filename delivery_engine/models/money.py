"""Currency amount type shared by task and earnings models."""

from decimal import Decimal
from typing import Annotated

from pydantic import PlainSerializer


def money_to_json(amount: Decimal) -> int | float:
    """Render an amount as a JSON number, integral when whole."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


# Persisted layouts store plain numbers (rupees), never strings.
Money = Annotated[
    Decimal,
    PlainSerializer(money_to_json, return_type=int | float, when_used="json"),
]
