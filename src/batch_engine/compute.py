"""
Pooling ratio computation for Batch Engine.

This module handles:
- Equal-ratio split of a pool across its libraries
- Required volume per library
- Dilution factor (library concentration ÷ target concentration)
- Flags for libraries the caller should review

Every call builds a fresh ratio list; previous results are never merged.
"""

import math
from collections.abc import Sequence
from typing import Any

from batch_engine.config import (
    FLAG_BELOW_TARGET,
    FLAG_INSUFFICIENT_VOLUME,
    PERCENT_TOTAL,
)
from batch_engine.exceptions import InvalidTarget, NoLibrariesSelected
from batch_engine.models import Library, PoolingRatio


def is_positive_finite(value: float) -> bool:
    """True for a finite number above zero; NaN and infinity are rejected."""
    return value > 0 and math.isfinite(value)


def compute_dilution_factor(concentration: float, target_concentration: float) -> float:
    """
    How many-fold a library must be diluted to reach the target concentration.

    Formula: D = C_library / C_target

    A value below 1 means the library is already more dilute than the target.

    Raises:
        ValueError: If inputs are invalid
    """
    if not concentration > 0:
        raise ValueError(f"Concentration must be > 0, got {concentration}")
    if not is_positive_finite(target_concentration):
        raise InvalidTarget("target_concentration", target_concentration)

    return concentration / target_concentration


def flag_ratio(library: Library, required_volume: float, dilution_factor: float, target_concentration: float) -> list[str]:
    """Collect warnings for one library of a pool."""
    flags = []

    if dilution_factor < 1:
        flags.append(
            FLAG_BELOW_TARGET.format(concentration=library.concentration, target=target_concentration)
        )

    if required_volume > library.volume:
        flags.append(FLAG_INSUFFICIENT_VOLUME.format(needed=required_volume, available=library.volume))

    return flags


def calculate_ratios(
    target_concentration: float,
    target_volume: float,
    libraries: Sequence[Library],
) -> list[PoolingRatio]:
    """
    Calculate per-library pooling ratios using the equal-ratio strategy.

    Algorithm:
    1. target_ratio[i] = 100 / N
    2. required_volume[i] = V_target × target_ratio[i] / 100
    3. dilution_factor[i] = C[i] / C_target

    Volumes add up to the target volume and ratios add up to 100.

    Args:
        target_concentration: Target pooled concentration in nM
        target_volume: Target total pool volume in µl
        libraries: Libraries to pool, in pool order

    Returns:
        One PoolingRatio per library, in input order

    Raises:
        NoLibrariesSelected: If libraries is empty
        InvalidTarget: If target concentration or volume is not > 0
    """
    if len(libraries) == 0:
        raise NoLibrariesSelected()
    if not is_positive_finite(target_concentration):
        raise InvalidTarget("target_concentration", target_concentration)
    if not is_positive_finite(target_volume):
        raise InvalidTarget("target_volume", target_volume)

    equal_ratio = PERCENT_TOTAL / len(libraries)
    required_volume = target_volume * equal_ratio / PERCENT_TOTAL

    ratios = []
    for library in libraries:
        dilution_factor = compute_dilution_factor(library.concentration, target_concentration)
        ratios.append(
            PoolingRatio(
                library_id=library.library_id,
                library_number=library.library_number,
                original_concentration=library.concentration,
                target_ratio=equal_ratio,
                required_volume=required_volume,
                dilution_factor=dilution_factor,
                flags=flag_ratio(library, required_volume, dilution_factor, target_concentration),
            )
        )

    return ratios


def summarize_ratios(ratios: Sequence[PoolingRatio]) -> dict[str, Any]:
    """
    Aggregate a ratio list for display.

    Returns:
        Dict with library count, ratio and volume totals, and flagged count
    """
    return {
        "num_libraries": len(ratios),
        "total_ratio": sum(ratio.target_ratio for ratio in ratios),
        "total_volume_ul": sum(ratio.required_volume for ratio in ratios),
        "below_target": sum(1 for ratio in ratios if ratio.below_target),
        "flagged": sum(1 for ratio in ratios if ratio.flags),
    }
