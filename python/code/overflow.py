"""
Overflow classification of (x, y) points against a rectangular domain.

The plane is cut into a 3x3 compass table by the domain bounds. Each cell has
a named region carrying the legacy negative code used to address overflow
bins:

            left  inside  right
    above    -1     -2     -3
    inside   -4     -5     -6
    below    -7     -8     -9

``NONE`` (0) marks an unconfigured profile and never names a region.
"""
from __future__ import annotations

from enum import IntEnum

N_OVERFLOW = 9


class OverflowRegion(IntEnum):
    NONE = 0
    ABOVE_LEFT = -1
    ABOVE = -2
    ABOVE_RIGHT = -3
    LEFT = -4
    INSIDE = -5
    RIGHT = -6
    BELOW_LEFT = -7
    BELOW = -8
    BELOW_RIGHT = -9

    @property
    def slot(self) -> int:
        """Position (0..8) in the overflow bin array."""
        if self is OverflowRegion.NONE:
            raise ValueError("OverflowRegion.NONE has no overflow slot")
        return -int(self) - 1

    @property
    def row(self) -> int:
        """Row in the compass table (0 = above, 2 = below)."""
        return self.slot // 3

    @property
    def column(self) -> int:
        """Column in the compass table (0 = left, 2 = right)."""
        return self.slot % 3

    @classmethod
    def from_slot(cls, slot: int) -> "OverflowRegion":
        if not 0 <= slot < N_OVERFLOW:
            raise ValueError(f"overflow slot must be in [0, {N_OVERFLOW - 1}], got {slot}")
        return cls(-slot - 1)


def classify_overflow(
    x: float,
    y: float,
    x_low: float,
    x_up: float,
    y_low: float,
    y_up: float,
) -> OverflowRegion:
    """
    Return the compass region of (x, y). Domain intervals are closed, so a
    point lying on a boundary is classified as inside along that axis.
    """
    if y > y_up:
        code = -1
    elif y >= y_low:
        code = -4
    else:
        code = -7

    if x > x_up:
        code -= 2
    elif x >= x_low:
        code -= 1

    return OverflowRegion(code)
