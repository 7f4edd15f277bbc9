"""
Numeric export of profile results for rendering and serialization layers.
Per-bin statistics go to a pandas table or an xarray Dataset; nothing here
draws or writes files.
"""
from __future__ import annotations

import pandas as pd
import xarray as xr

from overflow import N_OVERFLOW, OverflowRegion
from polyprofile import STAT_NAMES, PolyProfile

BIN_COLUMNS = ["index", "average", "error", "entries", "effective_entries", "content"]


def bin_table(profile: PolyProfile) -> pd.DataFrame:
    """One row per polygon bin, in bin order."""
    rows = [
        (b.index, b.average, b.error, b.entries, b.effective_entries, b.content)
        for b in profile.bins
    ]
    df = pd.DataFrame(rows, columns=BIN_COLUMNS)
    return df.astype({"index": int})


def overflow_table(profile: PolyProfile) -> pd.DataFrame:
    """One row per overflow region, indexed by region name."""
    regions = [OverflowRegion.from_slot(i) for i in range(N_OVERFLOW)]
    bins = [profile.overflow_bin(r) for r in regions]
    return pd.DataFrame(
        {
            "code": [int(r) for r in regions],
            "average": [b.average for b in bins],
            "error": [b.error for b in bins],
            "entries": [b.entries for b in bins],
        },
        index=pd.Index([r.name.lower() for r in regions], name="region"),
    )


def to_dataset(profile: PolyProfile) -> xr.Dataset:
    """
    Build an xarray Dataset with per-bin variables on a ``bin`` dimension,
    overflow variables on a ``region`` dimension, and the global accumulators
    stored as attributes.
    """
    table = bin_table(profile)
    overflow = overflow_table(profile)

    error_attrs = {"long_name": "error of value", "error_mode": profile.error_mode.value}

    ds = xr.Dataset(
        data_vars={
            "average": (
                "bin", table["average"].to_numpy(dtype=float), {"long_name": "weighted mean of value"}
            ),
            "error": ("bin", table["error"].to_numpy(dtype=float), error_attrs),
            "entries": ("bin", table["entries"].to_numpy(dtype=float), {"long_name": "sum of weights"}),
            "effective_entries": ("bin", table["effective_entries"].to_numpy(dtype=float)),
            "overflow_average": ("region", overflow["average"].to_numpy(dtype=float)),
            "overflow_error": ("region", overflow["error"].to_numpy(dtype=float)),
            "overflow_entries": ("region", overflow["entries"].to_numpy(dtype=float)),
        },
        coords={
            "bin": table["index"].to_numpy(dtype=int),
            "region": overflow.index.to_numpy(),
            "region_code": ("region", overflow["code"].to_numpy(dtype=int)),
        },
    )

    stats = profile.stats()
    ds.attrs = {name: float(v) for name, v in zip(STAT_NAMES, stats)}
    ds.attrs.update(
        {
            "x_range": [profile.x_low, profile.x_up],
            "y_range": [profile.y_low, profile.y_up],
            "entries": int(profile.entries),
        }
    )
    return ds
