"""
Bin geometry adapters.

The profile only needs two things from a bin shape: a point-in-shape test
and a bounding box used to register the shape in the lookup grid. Polygons
delegate the containment test to matplotlib's C-level ``Path`` routines.

Containment is half-open: a shape owns its lower and left boundaries but not
its upper and right ones, so a point on an edge shared by two bins that tile
the plane belongs to exactly one of them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Tuple, runtime_checkable

import numpy as np
from matplotlib.path import Path

ArrayLike = np.ndarray
Bounds = Tuple[float, float, float, float]  # (x_min, y_min, x_max, y_max)

DEFAULT_EDGE_EPS = 1e-9


@runtime_checkable
class BinGeometry(Protocol):
    @property
    def bounds(self) -> Bounds: ...

    def contains(self, x: float, y: float) -> bool: ...


def _crossing_parity(edges: ArrayLike, x: float, y: float) -> bool:
    """
    Half-open crossing-number test.

    Parameters
    ----------
    edges : array (N, 4)
        Edges as (x_a, y_a, x_b, y_b) with y_a <= y_b, so a shared edge gives
        the same crossing abscissa whichever polygon it comes from.
    x, y : float
        Query point.

    Returns
    -------
    bool
        True when a ray towards +x crosses an odd number of edges.
    """
    xa, ya, xb, yb = edges.T
    straddle = (ya <= y) & (y < yb)
    if not straddle.any():
        return False
    xa, ya, xb, yb = xa[straddle], ya[straddle], xb[straddle], yb[straddle]
    x_cross = xa + (y - ya) * (xb - xa) / (yb - ya)
    return bool(np.count_nonzero(x < x_cross) % 2)


class PolygonGeometry:
    """
    Simple polygon given by its vertices (N, 2), closed or open.

    Points further than ``eps`` from the outline are decided by
    ``Path.contains_point``. Points in the ``eps`` band around the outline
    fall back to an exact half-open crossing test. ``contains_point`` grows or
    shrinks the shape depending on vertex orientation and the sign of the
    radius, so both signs are evaluated.
    """

    def __init__(self, vertices: ArrayLike, eps: float = DEFAULT_EDGE_EPS) -> None:
        vertices = np.asarray(vertices, dtype=float)
        if vertices.ndim != 2 or vertices.shape[1] != 2:
            raise ValueError("vertices must have shape (N, 2)")
        if len(vertices) > 1 and np.array_equal(vertices[0], vertices[-1]):
            vertices = vertices[:-1]
        if len(vertices) < 3:
            raise ValueError("polygon needs at least 3 distinct vertices")

        self.vertices = vertices
        self.eps = eps
        self._path = Path(np.vstack([vertices, vertices[:1]]), closed=True)
        x_min, y_min = vertices.min(axis=0)
        x_max, y_max = vertices.max(axis=0)
        self._bounds = (float(x_min), float(y_min), float(x_max), float(y_max))

        start, end = vertices, np.roll(vertices, -1, axis=0)
        flip = start[:, 1] > end[:, 1]
        lower = np.where(flip[:, None], end, start)
        upper = np.where(flip[:, None], start, end)
        self._edges = np.hstack([lower, upper])

    def __repr__(self) -> str:
        return f"PolygonGeometry({len(self.vertices)} vertices, bounds={self._bounds})"

    @property
    def bounds(self) -> Bounds:
        return self._bounds

    def contains(self, x: float, y: float) -> bool:
        x_min, y_min, x_max, y_max = self._bounds
        if not (x_min <= x < x_max and y_min <= y < y_max):
            return False
        point = (x, y)
        grown = self._path.contains_point(point, radius=self.eps)
        shrunk = self._path.contains_point(point, radius=-self.eps)
        if grown == shrunk:
            return bool(grown)
        return _crossing_parity(self._edges, x, y)


@dataclass(frozen=True)
class RectangleGeometry:
    """Axis-aligned rectangle [x_min, x_max) x [y_min, y_max)."""
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    def __post_init__(self) -> None:
        if self.x_max <= self.x_min or self.y_max <= self.y_min:
            raise ValueError(
                f"rectangle must have positive extent, got "
                f"({self.x_min}, {self.y_min}, {self.x_max}, {self.y_max})"
            )

    @property
    def bounds(self) -> Bounds:
        return (self.x_min, self.y_min, self.x_max, self.y_max)

    def contains(self, x: float, y: float) -> bool:
        return self.x_min <= x < self.x_max and self.y_min <= y < self.y_max


def rectangle(x1: float, y1: float, x2: float, y2: float) -> RectangleGeometry:
    """Rectangle from two opposite corners in any order."""
    return RectangleGeometry(min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))


def as_geometry(shape) -> BinGeometry:
    """Accept a BinGeometry as-is, or wrap an (N, 2) vertex array."""
    if isinstance(shape, BinGeometry):
        return shape
    if hasattr(shape, "contains") or hasattr(shape, "bounds"):
        raise TypeError(
            f"{type(shape).__name__} must provide both contains(x, y) and bounds"
        )
    return PolygonGeometry(shape)
