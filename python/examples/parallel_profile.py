#!/usr/bin/env python3
"""
Example: Parallel Profile Accumulation

Builds a profile from a JSON layout, fills it with synthetic samples using one
partial profile per worker, and prints the per-bin statistics.

Usage:
    python parallel_profile.py /path/to/profile_config.json
"""

import logging
import sys
from pathlib import Path

import numpy as np

# Add code directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "code"))

from accumulate import configure_logging, fill_parallel
from bin_export import bin_table
from profile_config import load_config


def main():
    configure_logging(logging.INFO)

    if len(sys.argv) < 2:
        print("Usage: python parallel_profile.py /path/to/profile_config.json")
        sys.exit(1)

    config = load_config(Path(sys.argv[1]))
    (x_low, x_up), (y_low, y_up) = config.x_range, config.y_range

    # Synthetic samples: value grows with distance from the domain centre
    rng = np.random.default_rng(0)
    n = 100_000
    x = rng.uniform(x_low, x_up, n)
    y = rng.uniform(y_low, y_up, n)
    r = np.hypot(x - 0.5 * (x_low + x_up), y - 0.5 * (y_low + y_up))
    values = r + rng.normal(0.0, 0.1, n)

    profile = fill_parallel(config, x, y, values, n_workers=4, show_progress=True)

    print(bin_table(profile).to_string(index=False))
    print(f"\nGlobal mean value: {profile.mean('z'):.3f} +/- {profile.std('z'):.3f}")
    profile.log_overflow_regions()


if __name__ == "__main__":
    main()
