"""
Profile configuration: domain, lookup partition, error mode and bin shapes.
Loaded from JSON and coerced to strong types before any profile is built.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

import numpy as np

from bin_geometry import PolygonGeometry, rectangle
from polyprofile import DEFAULT_CELLS, PolyProfile
from statbin import ErrorMode

ArrayLike = np.ndarray


@dataclass(frozen=True)
class ProfileConfig:
    x_range: Tuple[float, float]
    y_range: Tuple[float, float]
    bins: Tuple[Any, ...]  # PolygonGeometry or RectangleGeometry, in bin order
    cells: Tuple[int, int] = (DEFAULT_CELLS, DEFAULT_CELLS)
    error_mode: ErrorMode = ErrorMode.SPREAD


def parse_config(raw: Dict[str, Any]) -> ProfileConfig:
    """
    Validate a decoded JSON mapping.
    Required keys: xRange, yRange, bins. Optional: cells, errorMode.
    """
    required = ["xRange", "yRange", "bins"]
    missing = [k for k in required if k not in raw]
    if missing:
        raise ValueError(f"Config missing keys: {', '.join(missing)}")

    x_range = _parse_range(raw["xRange"], "xRange")
    y_range = _parse_range(raw["yRange"], "yRange")

    cells = np.asarray(raw.get("cells", [DEFAULT_CELLS, DEFAULT_CELLS]))
    if cells.shape != (2,) or np.any(cells < 1) or np.any(cells != np.round(cells)):
        raise ValueError(f"cells must be two positive integers, got {raw.get('cells')}")

    try:
        error_mode = ErrorMode(raw.get("errorMode", ErrorMode.SPREAD.value))
    except ValueError:
        choices = ", ".join(m.value for m in ErrorMode)
        raise ValueError(f"errorMode must be one of {choices}, got {raw.get('errorMode')!r}") from None

    if not isinstance(raw["bins"], list) or not raw["bins"]:
        raise ValueError("bins must be a non-empty list")
    bins = tuple(_parse_bin(entry, i) for i, entry in enumerate(raw["bins"], start=1))

    return ProfileConfig(
        x_range=x_range,
        y_range=y_range,
        bins=bins,
        cells=(int(cells[0]), int(cells[1])),
        error_mode=error_mode,
    )


def load_config(path: Path) -> ProfileConfig:
    """Load a profile configuration from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return parse_config(raw)


def build_profile(config: ProfileConfig) -> PolyProfile:
    """Empty profile with the configured domain, partition and bins."""
    profile = PolyProfile(
        *config.x_range,
        *config.y_range,
        cells_x=config.cells[0],
        cells_y=config.cells[1],
        error_mode=config.error_mode,
    )
    for geometry in config.bins:
        profile.add_bin(geometry)
    return profile


def _parse_range(value: Any, name: str) -> Tuple[float, float]:
    arr = np.asarray(value, dtype=float)
    if arr.shape != (2,):
        raise ValueError(f"{name} must be [low, up], got {value}")
    if not arr[1] > arr[0]:
        raise ValueError(f"{name} upper bound must exceed lower bound, got {value}")
    return float(arr[0]), float(arr[1])


def _parse_bin(entry: Dict[str, Any], number: int):
    if "rectangle" in entry:
        corners = np.asarray(entry["rectangle"], dtype=float)
        if corners.shape != (4,):
            raise ValueError(f"bin {number}: rectangle must be [x1, y1, x2, y2]")
        return rectangle(*corners.tolist())
    if "vertices" in entry:
        vertices = np.asarray(entry["vertices"], dtype=float)
        if vertices.ndim != 2 or vertices.shape[1] != 2 or vertices.shape[0] < 3:
            raise ValueError(f"bin {number}: vertices must be Nx2 with at least 3 vertices")
        return PolygonGeometry(vertices)
    raise ValueError(f"bin {number}: expected 'rectangle' or 'vertices'")
