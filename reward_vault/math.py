"""Integer fixed-point helpers.

- All vault amounts are raw integers, like ERC-20 raw amounts

- The rounding direction is always given explicitly, so the protocol favouring
  direction of each conversion can be audited in one place
"""

import enum


#: Largest amount representable in an EVM ``uint256``
MAX_UINT256 = 2**256 - 1


class Rounding(enum.Enum):
    """Rounding direction for :py:func:`mul_div`."""

    #: Towards zero, user receives no more than the exact entitlement
    down = "down"

    #: Away from zero, user pays no less than required
    up = "up"


def mul_div(x: int, numerator: int, denominator: int, rounding: Rounding) -> int:
    """Calculate ``x * numerator / denominator`` with the given rounding.

    :param x:
        Non-negative raw amount

    :param numerator:
        Non-negative multiplier

    :param denominator:
        Positive divisor

    :return:
        Rounded result
    """
    assert type(x) == int, f"Expected int, got {type(x)}: {x}"
    assert type(numerator) == int, f"Expected int, got {type(numerator)}: {numerator}"
    assert type(denominator) == int, f"Expected int, got {type(denominator)}: {denominator}"
    if x < 0 or numerator < 0:
        raise ValueError(f"mul_div() does not handle negative values: {x} * {numerator}")
    if denominator <= 0:
        raise ZeroDivisionError(f"mul_div() denominator must be positive, got {denominator}")

    product = x * numerator
    result, remainder = divmod(product, denominator)
    if rounding == Rounding.up and remainder:
        result += 1
    return result
