"""
Per-polygon running statistics.

A StatBin keeps four weighted sums of a sampled value and derives the
average and its error from them. Sums merge by addition, derived fields do
not: after any merge the owner must call ``update()``.
"""
from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional


class ErrorMode(str, Enum):
    """Error estimator reported by ``StatBin.error``."""
    SPREAD = "spread"  # standard deviation of the values
    MEAN = "mean"      # standard error of the mean


class StatBin:
    """
    Running weighted statistics of one polygon bin.

    Parameters
    ----------
    index : int
        Bin number. 1-based for polygon bins, negative for overflow slots.
    geometry : object, optional
        Anything exposing ``contains(x, y)``. Overflow bins have none.
    error_mode : ErrorMode
        Estimator used by ``update_error``.
    """

    __slots__ = (
        "index", "geometry", "error_mode",
        "sumw", "sumvw", "sumw2", "sumwv2",
        "average", "error", "content",
    )

    def __init__(
        self,
        index: int,
        geometry: Optional[Any] = None,
        error_mode: ErrorMode = ErrorMode.SPREAD,
    ) -> None:
        self.index = index
        self.geometry = geometry
        self.error_mode = ErrorMode(error_mode)
        self.sumw = 0.0
        self.sumvw = 0.0
        self.sumw2 = 0.0
        self.sumwv2 = 0.0
        self.average = 0.0
        self.error = 0.0
        self.content = 0.0

    def __repr__(self) -> str:
        return (
            f"StatBin(index={self.index}, sumw={self.sumw:g}, "
            f"average={self.average:g}, error={self.error:g})"
        )

    # -------------------------------------------------------------------------
    # Accumulation
    # -------------------------------------------------------------------------

    def fill(self, value: float, weight: float = 1.0) -> None:
        """Add one weighted sample and refresh the derived fields."""
        self.sumw += weight
        self.sumvw += weight * value
        self.sumw2 += weight * weight
        self.sumwv2 += weight * value * value
        self.update()

    def merge(self, other: "StatBin") -> None:
        """
        Add the running sums of ``other``. Derived fields stay stale until
        ``update()`` is called.
        """
        self.sumw += other.sumw
        self.sumvw += other.sumvw
        self.sumw2 += other.sumw2
        self.sumwv2 += other.sumwv2

    def clear_stats(self) -> None:
        self.sumw = 0.0
        self.sumvw = 0.0
        self.sumw2 = 0.0
        self.sumwv2 = 0.0
        self.average = 0.0
        self.error = 0.0

    def clear_content(self) -> None:
        self.content = 0.0

    # -------------------------------------------------------------------------
    # Derived statistics
    # -------------------------------------------------------------------------

    def update(self) -> None:
        self.update_average()
        self.update_error()

    def update_average(self) -> None:
        # Keeps the last average when the weight sum vanishes
        if self.sumw != 0:
            self.average = self.sumvw / self.sumw

    def update_error(self) -> None:
        spread = 0.0
        if self.sumw != 0:
            # max(0, ...) absorbs rounding that makes the variance slightly negative
            variance = self.sumwv2 / self.sumw - self.average * self.average
            spread = math.sqrt(max(0.0, variance))

        if self.error_mode is ErrorMode.SPREAD:
            self.error = spread
        else:
            neff = self.effective_entries
            self.error = spread / math.sqrt(neff) if neff > 0 else 0.0

    @property
    def effective_entries(self) -> float:
        """Kish effective sample size sumw^2 / sumw2 (0 when undefined)."""
        if self.sumw2 == 0:
            return 0.0
        return self.sumw * self.sumw / self.sumw2

    @property
    def entries(self) -> float:
        return self.sumw

    @property
    def entries_w2(self) -> float:
        return self.sumw2

    @property
    def entries_vw(self) -> float:
        return self.sumvw

    @property
    def entries_wv2(self) -> float:
        return self.sumwv2

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    def is_inside(self, x: float, y: float) -> bool:
        if self.geometry is None:
            return False
        return bool(self.geometry.contains(x, y))
