"""
Parallel accumulation driver.

Each worker fills its own profile from a chunk of the samples; the partial
profiles are then merged sequentially into a fresh profile. Profiles are never
shared between workers, so no locking is involved.

Features:
- Process or thread pools (concurrent.futures)
- Progress bars
- Configurable logging
"""
from __future__ import annotations

import logging
import sys
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from contextlib import nullcontext
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from polyprofile import EmptyMergeError, PolyProfile
from profile_config import ProfileConfig, build_profile

logger = logging.getLogger(__name__)

ArrayLike = np.ndarray
Chunk = Tuple[ArrayLike, ArrayLike, ArrayLike, ArrayLike]


# =============================================================================
# Logging Configuration
# =============================================================================

# Loggers of the profile modules; configure_logging leaves all others alone
PROFILE_LOGGERS = ("accumulate", "polyprofile", "profile_config")


def configure_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Send the profile modules' log records to the console and optionally a file.

    The handlers replace any previously attached to those loggers, and records
    stop propagating to the root logger so they are not printed twice.

    Parameters
    ----------
    level : int
        Threshold for the profile loggers (e.g. ``logging.DEBUG`` to see each
        bin added)
    log_file : Path, optional
        Also append records, with the module name, to this file
    """
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S"))
    handlers: List[logging.Handler] = [console]

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        to_file = logging.FileHandler(log_file)
        to_file.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        handlers.append(to_file)

    for name in PROFILE_LOGGERS:
        profile_logger = logging.getLogger(name)
        profile_logger.setLevel(level)
        profile_logger.propagate = False
        for handler in profile_logger.handlers[:]:
            profile_logger.removeHandler(handler)
        for handler in handlers:
            profile_logger.addHandler(handler)


# =============================================================================
# Accumulation
# =============================================================================

def split_samples(
    x: ArrayLike,
    y: ArrayLike,
    values: ArrayLike,
    weights: Optional[ArrayLike],
    n_chunks: int,
) -> List[Chunk]:
    """Split sample arrays into at most ``n_chunks`` contiguous non-empty chunks."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    values = np.asarray(values, dtype=float)
    weights = np.ones_like(values) if weights is None else np.asarray(weights, dtype=float)
    if not (x.shape == y.shape == values.shape == weights.shape) or x.ndim != 1:
        raise ValueError("x, y, values, and weights must be 1-D arrays of the same length")
    if n_chunks < 1:
        raise ValueError(f"n_chunks must be positive, got {n_chunks}")

    bounds = np.array_split(np.arange(len(x)), min(n_chunks, max(len(x), 1)))
    return [(x[idx], y[idx], values[idx], weights[idx]) for idx in bounds if len(idx) > 0]


def _fill_chunk(config: ProfileConfig, chunk: Chunk) -> PolyProfile:
    """Worker: build a profile and fill one chunk of samples into it."""
    profile = build_profile(config)
    profile.fill_many(*chunk)
    return profile


def merge_profiles(profiles: Sequence[PolyProfile]) -> PolyProfile:
    """Merge filled profiles into a fresh empty copy of the first one."""
    if not profiles:
        raise EmptyMergeError()
    merged = profiles[0].empty_copy()
    merged.merge(profiles)
    return merged


def fill_parallel(
    config: ProfileConfig,
    x: ArrayLike,
    y: ArrayLike,
    values: ArrayLike,
    weights: Optional[ArrayLike] = None,
    n_workers: int = 4,
    use_processes: bool = True,
    show_progress: bool = False,
) -> PolyProfile:
    """
    Fill a profile using one partial profile per worker.

    Parameters
    ----------
    config : ProfileConfig
        Layout shared by every partial profile
    x, y, values : array (N,)
        Sample coordinates and values
    weights : array (N,), optional
        Sample weights (default 1)
    n_workers : int
        Number of workers and of chunks
    use_processes : bool
        ProcessPoolExecutor if True, ThreadPoolExecutor otherwise
    show_progress : bool
        Show a progress bar while partial profiles complete

    Returns
    -------
    PolyProfile
        Merged profile
    """
    chunks = split_samples(x, y, values, weights, n_workers)
    if not chunks:
        logger.warning("No samples to accumulate")
        return build_profile(config)

    logger.info(
        "Accumulating %d samples in %d chunks (%s)",
        sum(len(c[0]) for c in chunks), len(chunks), "processes" if use_processes else "threads",
    )

    executor_cls = ProcessPoolExecutor if use_processes else ThreadPoolExecutor
    partials: List[Optional[PolyProfile]] = [None] * len(chunks)
    with executor_cls(max_workers=n_workers) as executor:
        futures = {executor.submit(_fill_chunk, config, chunk): i for i, chunk in enumerate(chunks)}
        iterator = as_completed(futures)
        redirect = nullcontext()
        if show_progress:
            iterator = tqdm(iterator, total=len(futures), desc="Filling", unit="chunk")
            # Log lines are written above the bar while it is shown
            redirect = logging_redirect_tqdm(loggers=[logging.getLogger(n) for n in PROFILE_LOGGERS])
        with redirect:
            for future in iterator:
                partials[futures[future]] = future.result()

    # Chunk order, not completion order
    merged = build_profile(config)
    merged.merge(partials)
    return merged
