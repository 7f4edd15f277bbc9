"""
Polygon-binned profile: a 2-D histogram whose bins are arbitrary polygons,
each keeping running weighted statistics of a sampled value.

Bin lookup goes through a regular super-grid over the domain. Every grid cell
lists the positions of the bins whose bounding box overlaps it, so a fill only
tests the few candidates registered in the cell containing the point.

Profiles filled independently (one per worker) are combined with ``merge``,
which adds running sums and never replays samples.
"""
from __future__ import annotations

import logging
import math
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from bin_geometry import BinGeometry, PolygonGeometry, as_geometry, rectangle
from overflow import N_OVERFLOW, OverflowRegion, classify_overflow
from statbin import ErrorMode, StatBin

ArrayLike = np.ndarray
logger = logging.getLogger(__name__)

DEFAULT_CELLS = 25

# Order of the global accumulators returned by PolyProfile.stats()
STAT_NAMES = ("sumw", "sumw2", "sumwx", "sumwx2", "sumwy", "sumwy2", "sumwxy", "sumwz", "sumwz2")


# =============================================================================
# Custom Exceptions
# =============================================================================

class ProfileError(Exception):
    """Base exception for profile errors."""
    pass


class EmptyMergeError(ProfileError):
    """Raised when merge is called without any profile to merge."""
    def __init__(self) -> None:
        super().__init__("No profiles to merge")


class TopologyMismatchError(ProfileError):
    """Raised when profiles to merge do not have the same number of bins."""
    def __init__(self, bin_counts: Sequence[int]):
        self.bin_counts = sorted(set(bin_counts))
        super().__init__(
            f"Bin numbers of profiles to merge differ: {', '.join(map(str, self.bin_counts))}"
        )


def _clamp_cell(offset: float, cells: int) -> int:
    """Floor of ``offset`` clamped to [0, cells - 1]. NaN maps to 0."""
    if math.isnan(offset):
        return 0
    return int(min(max(offset, 0.0), cells - 1))


# =============================================================================
# Profile
# =============================================================================

class PolyProfile:
    """
    Profile of a value over polygon bins.

    Parameters
    ----------
    x_low, x_up, y_low, y_up : float
        Domain bounds. Points outside them are counted in overflow regions.
    cells_x, cells_y : int
        Partition of the domain used to accelerate bin lookup (default 25x25).
    error_mode : ErrorMode
        Error estimator given to the bins.
    """

    def __init__(
        self,
        x_low: float,
        x_up: float,
        y_low: float,
        y_up: float,
        cells_x: int = DEFAULT_CELLS,
        cells_y: int = DEFAULT_CELLS,
        error_mode: ErrorMode = ErrorMode.SPREAD,
    ) -> None:
        if x_up <= x_low or y_up <= y_low:
            raise ValueError(
                f"domain must have positive extent, got x=[{x_low}, {x_up}], y=[{y_low}, {y_up}]"
            )
        self.x_low = float(x_low)
        self.x_up = float(x_up)
        self.y_low = float(y_low)
        self.y_up = float(y_up)
        self.error_mode = ErrorMode(error_mode)

        self._bins: List[StatBin] = []
        self._overflow = [
            StatBin(int(OverflowRegion.from_slot(i)), error_mode=self.error_mode)
            for i in range(N_OVERFLOW)
        ]
        self._stats = np.zeros(len(STAT_NAMES), dtype=float)
        self.entries = 0

        self._set_partition(cells_x, cells_y)

    def __repr__(self) -> str:
        return (
            f"PolyProfile(x=[{self.x_low}, {self.x_up}], y=[{self.y_low}, {self.y_up}], "
            f"bins={self.number_of_bins}, entries={self.entries})"
        )

    # -------------------------------------------------------------------------
    # Partition / grid index
    # -------------------------------------------------------------------------

    def _set_partition(self, cells_x: int, cells_y: int) -> None:
        if cells_x < 1 or cells_y < 1:
            raise ValueError(f"cell counts must be positive, got ({cells_x}, {cells_y})")
        self.cells_x = int(cells_x)
        self.cells_y = int(cells_y)
        self.step_x = (self.x_up - self.x_low) / self.cells_x
        self.step_y = (self.y_up - self.y_low) / self.cells_y
        self._cells: List[List[int]] = [[] for _ in range(self.cells_x * self.cells_y)]

    def _cell_coords(self, x: float, y: float) -> Tuple[int, int]:
        """Grid cell of (x, y), clamped to the nearest edge cell."""
        n = _clamp_cell((x - self.x_low) / self.step_x, self.cells_x)
        m = _clamp_cell((y - self.y_low) / self.step_y, self.cells_y)
        return n, m

    def _register(self, position: int) -> None:
        x_min, y_min, x_max, y_max = self._bins[position].geometry.bounds
        n_lo, m_lo = self._cell_coords(x_min, y_min)
        n_hi, m_hi = self._cell_coords(x_max, y_max)
        for m in range(m_lo, m_hi + 1):
            for n in range(n_lo, n_hi + 1):
                self._cells[n + self.cells_x * m].append(position)

    def candidates(self, x: float, y: float) -> List[int]:
        """Positions (0-based) of the bins registered in the cell of (x, y)."""
        n, m = self._cell_coords(x, y)
        return self._cells[n + self.cells_x * m]

    def change_partition(self, cells_x: int, cells_y: int) -> None:
        """Rebuild the lookup grid with a new number of cells."""
        self._set_partition(cells_x, cells_y)
        for position in range(len(self._bins)):
            self._register(position)
        logger.debug(
            "Partition changed to %dx%d for %d bins", self.cells_x, self.cells_y, len(self._bins)
        )

    # -------------------------------------------------------------------------
    # Bins
    # -------------------------------------------------------------------------

    @property
    def number_of_bins(self) -> int:
        return len(self._bins)

    @property
    def bins(self) -> Tuple[StatBin, ...]:
        return tuple(self._bins)

    def add_bin(self, geometry: BinGeometry) -> StatBin:
        """
        Register a bin shape. Returns the new bin, numbered from 1 in insertion
        order. The bin inherits the profile's current error mode.
        """
        geometry = as_geometry(geometry)
        bin_ = StatBin(len(self._bins) + 1, geometry, self.error_mode)
        self._bins.append(bin_)
        self._register(len(self._bins) - 1)
        logger.debug("Added bin %d with bounds %s", bin_.index, geometry.bounds)
        return bin_

    def add_polygon(self, vertices: ArrayLike) -> StatBin:
        return self.add_bin(PolygonGeometry(vertices))

    def add_rectangle(self, x1: float, y1: float, x2: float, y2: float) -> StatBin:
        return self.add_bin(rectangle(x1, y1, x2, y2))

    def overflow_bin(self, region: OverflowRegion) -> StatBin:
        return self._overflow[OverflowRegion(region).slot]

    def _lookup(self, bin_number: int) -> Optional[StatBin]:
        # 1..N polygon bins, -1..-9 overflow slots, anything else has no data
        if 1 <= bin_number <= len(self._bins):
            return self._bins[bin_number - 1]
        if -N_OVERFLOW <= bin_number <= -1:
            return self._overflow[-bin_number - 1]
        return None

    # -------------------------------------------------------------------------
    # Filling
    # -------------------------------------------------------------------------

    def classify_overflow(self, x: float, y: float) -> OverflowRegion:
        """Compass region of (x, y); ``NONE`` while the profile has no bins."""
        if not self._bins:
            return OverflowRegion.NONE
        return classify_overflow(x, y, self.x_low, self.x_up, self.y_low, self.y_up)

    def fill(self, x: float, y: float, value: float, weight: float = 1.0) -> OverflowRegion:
        """
        Add a weighted sample of ``value`` at (x, y).

        The overflow region is always accumulated, the global sums always
        updated, and every bin containing the point receives the sample.
        Returns the overflow region of the point.
        """
        region = self.classify_overflow(x, y)
        if region is not OverflowRegion.NONE:
            self._overflow[region.slot].fill(value, weight)

        self._stats += (
            weight,
            weight * weight,
            weight * x,
            weight * x * x,
            weight * y,
            weight * y * y,
            weight * x * y,
            weight * value,
            weight * value * value,
        )

        for position in self.candidates(x, y):
            bin_ = self._bins[position]
            if bin_.is_inside(x, y):
                self.entries += 1
                bin_.fill(value, weight)
                bin_.content = bin_.average

        return region

    def fill_many(
        self,
        x: ArrayLike,
        y: ArrayLike,
        values: ArrayLike,
        weights: Optional[ArrayLike] = None,
    ) -> ArrayLike:
        """
        Fill arrays of samples of any common shape, in row-major order.
        Returns the overflow region code of each sample, shaped like ``x``.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        values = np.asarray(values, dtype=float)
        weights = np.ones_like(values) if weights is None else np.asarray(weights, dtype=float)
        if not (x.shape == y.shape == values.shape == weights.shape):
            raise ValueError("x, y, values, and weights must have the same shape")

        samples = zip(x.ravel().tolist(), y.ravel().tolist(), values.ravel().tolist(), weights.ravel().tolist())
        regions = np.array([int(self.fill(*sample)) for sample in samples], dtype=int)
        return regions.reshape(x.shape)

    def find_bin(self, x: float, y: float) -> int:
        """
        Number of the first bin containing (x, y). Falls back to the overflow
        region code, which is ``INSIDE`` for in-domain points outside every bin.
        """
        for position in self.candidates(x, y):
            if self._bins[position].is_inside(x, y):
                return position + 1
        return int(self.classify_overflow(x, y))

    # -------------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------------

    def merge(self, profiles: Sequence["PolyProfile"]) -> int:
        """
        Add the statistics of ``profiles`` into this profile.

        Bins are matched by position, so all profiles must share the same bin
        layout. Nothing is modified when the list is empty or the bin counts
        differ. Returns the number of profiles merged.
        """
        profiles = list(profiles)
        if not profiles:
            raise EmptyMergeError()

        counts = [p.number_of_bins for p in profiles] + [self.number_of_bins]
        if len(set(counts)) != 1:
            raise TopologyMismatchError(counts)

        for other in profiles:
            self.entries += other.entries
            self._stats += other._stats
            for dst, src in zip(self._overflow, other._overflow):
                dst.merge(src)

        for position, dst in enumerate(self._bins):
            for other in profiles:
                dst.merge(other._bins[position])

        for bin_ in self._overflow:
            bin_.update()
        self.set_content_to_average()

        logger.info("Merged %d profiles over %d bins", len(profiles), self.number_of_bins)
        return len(profiles)

    def empty_copy(self) -> "PolyProfile":
        """Profile with the same domain, partition, error mode and bins, without statistics."""
        copy = PolyProfile(
            self.x_low, self.x_up, self.y_low, self.y_up,
            cells_x=self.cells_x, cells_y=self.cells_y, error_mode=self.error_mode,
        )
        for bin_ in self._bins:
            copy.add_bin(bin_.geometry).error_mode = bin_.error_mode
        return copy

    # -------------------------------------------------------------------------
    # Content / configuration
    # -------------------------------------------------------------------------

    def set_content_to_average(self) -> None:
        for bin_ in self._bins:
            bin_.update()
            bin_.content = bin_.average

    def set_content_to_error(self) -> None:
        for bin_ in self._bins:
            bin_.update()
            bin_.content = bin_.error

    def set_error_mode(self, mode: ErrorMode) -> None:
        """Apply ``mode`` to every bin and to bins added later."""
        self.error_mode = ErrorMode(mode)
        for bin_ in self._bins + self._overflow:
            bin_.error_mode = self.error_mode
            bin_.update_error()

    def reset(self) -> None:
        """Clear all statistics and contents. Bins and grid are kept."""
        for bin_ in self._bins + self._overflow:
            bin_.clear_content()
            bin_.clear_stats()
        self._stats[:] = 0.0
        self.entries = 0

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def bin_entries(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.entries if bin_ is not None else 0.0

    def bin_effective_entries(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.effective_entries if bin_ is not None else 0.0

    def bin_entries_w2(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.entries_w2 if bin_ is not None else 0.0

    def bin_entries_vw(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.entries_vw if bin_ is not None else 0.0

    def bin_entries_wv2(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.entries_wv2 if bin_ is not None else 0.0

    def bin_error(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.error if bin_ is not None else 0.0

    def bin_average(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.average if bin_ is not None else 0.0

    def bin_content(self, bin_number: int) -> float:
        bin_ = self._lookup(bin_number)
        return bin_.content if bin_ is not None else 0.0

    def bin_records(self) -> Iterator[Tuple[int, float, float, float]]:
        """(index, average, error, entries) for every polygon bin."""
        for bin_ in self._bins:
            yield bin_.index, bin_.average, bin_.error, bin_.entries

    # -------------------------------------------------------------------------
    # Global statistics
    # -------------------------------------------------------------------------

    def stats(self) -> ArrayLike:
        """
        Copy of the global accumulators:
        [sumw, sumw2, sumwx, sumwx2, sumwy, sumwy2, sumwxy, sumwz, sumwz2].
        """
        return self._stats.copy()

    def mean(self, axis: str = "x") -> float:
        """Weighted mean over all fills along ``"x"``, ``"y"`` or ``"z"`` (the value)."""
        first, _ = self._axis_moments(axis)
        sumw = self._stats[0]
        return float(first / sumw) if sumw != 0 else 0.0

    def std(self, axis: str = "x") -> float:
        """Weighted standard deviation along ``"x"``, ``"y"`` or ``"z"``."""
        first, second = self._axis_moments(axis)
        sumw = self._stats[0]
        if sumw == 0:
            return 0.0
        mean = first / sumw
        return float(math.sqrt(max(0.0, second / sumw - mean * mean)))

    def _axis_moments(self, axis: str) -> Tuple[float, float]:
        offsets = {"x": 2, "y": 4, "z": 7}
        if axis not in offsets:
            raise ValueError(f"axis must be one of 'x', 'y', 'z', got {axis!r}")
        i = offsets[axis]
        return self._stats[i], self._stats[i + 1]

    # -------------------------------------------------------------------------
    # Overflow summary
    # -------------------------------------------------------------------------

    def overflow_contents(self) -> ArrayLike:
        """Overflow entries (sum of weights) as a 3x3 compass table, above row first."""
        table = np.zeros((3, 3), dtype=float)
        for slot, bin_ in enumerate(self._overflow):
            region = OverflowRegion.from_slot(slot)
            table[region.row, region.column] = bin_.entries
        return table

    def log_overflow_regions(self, level: int = logging.INFO) -> float:
        """Log the overflow table and return the total."""
        table = self.overflow_contents()
        for row in table:
            logger.log(level, "\t".join(f"{v:g}" for v in row))
        total = float(table.sum())
        logger.log(level, "Total: %g", total)
        return total
