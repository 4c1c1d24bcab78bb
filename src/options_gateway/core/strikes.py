"""
Suggested strike ladders around a spot price.

Strikes are listed on a grid whose step depends on the order of magnitude of
the price: prices from 1 to 5 x 10^k step by 10^(k-1), prices from 5 to
10 x 10^k step by 5 x 10^(k-1).
"""

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Union

from ..errors import ValidationError

MAX_PROPORTION = 2


def strike_interval(price: Decimal) -> Decimal:
    magnitude = Decimal(1).scaleb(price.adjusted())
    if price / magnitude < 5:
        return magnitude / 10
    return magnitude / 2


def _round_to(value: Decimal, step: Decimal, rounding: str) -> Decimal:
    return (value / step).to_integral_value(rounding=rounding) * step


def surrounding_strikes(spot: Union[Decimal, str, float],
                        max_proportion: int = MAX_PROPORTION) -> List[Decimal]:
    """Strikes from spot / max_proportion up to spot * max_proportion"""
    try:
        spot = Decimal(str(spot))
    except InvalidOperation:
        raise ValidationError("spotPrice must be a number")
    if not spot.is_finite():
        raise ValidationError("spotPrice must be a number")
    if spot <= 0:
        raise ValidationError("spotPrice must be > 0")

    lowest = spot / max_proportion
    highest = spot * max_proportion
    strike = _round_to(lowest, strike_interval(lowest), ROUND_CEILING)
    upper = _round_to(highest, strike_interval(highest), ROUND_CEILING)

    strikes: List[Decimal] = []
    while strike <= upper:
        step = strike_interval(strike)
        strikes.append(_round_to(strike, step, ROUND_HALF_UP))
        strike += step
    return strikes
