"""
Proportional distribution of a byte budget with carry-forward rounding.

Every share is rounded to a whole number of its unit (a word for memory
sections, a block for heap pools). The rounding error of each share is
carried into the next one, so a group adds up to its budget exactly once
all of its shares are taken.
"""
import math
from typing import Iterable, Optional

from layout_types import ALIGN


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero"""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def align_up(value: int, align: int = ALIGN) -> int:
    remainder = value % align
    if remainder > 0:
        value += align - remainder
    return value


def align_down(value: int, align: int = ALIGN) -> int:
    return value - value % align


class ProportionalShare:
    """Running state of one carry-forward distribution.

    ``budget`` bytes are split between ``fractions``; shares must be taken
    in order with :meth:`take`, once per fraction.
    """

    def __init__(self, budget: int, fractions: Iterable[float]):
        fractions = list(fractions)
        self.budget = budget
        self.fraction_sum = sum(fractions)
        self.term = budget / self.fraction_sum if self.fraction_sum > 0 else 0.0
        self.pending = len(fractions)
        self.correction = 0.0

    def take(self, fraction: float, unit: int = ALIGN, limit: Optional[int] = None) -> int:
        """Returns the number of ``unit``-sized pieces for the next share.

        ``limit`` caps the result (in units), e.g. to the bytes still free.
        """
        if self.pending <= 0:
            raise ValueError("all proportional shares have already been taken")
        decimal = (fraction + self.correction) * self.term
        self.pending -= 1
        if self.pending > 0:
            units = max(round_half_away(decimal / unit), 0)
            if limit is not None:
                units = min(units, limit)
            if self.term > 0:
                self.correction = (decimal - units * unit) / self.term
            return units
        # Last share: the carried corrections leave it only float noise away
        # from a whole number of bytes
        units = max(round_half_away(decimal), 0) // unit
        if limit is not None:
            units = min(units, limit)
        return units
