"""Reusable alert trigger conditions."""

import math
from typing import Optional

from watcher.models import WindowStats


def has_signal(stats: Optional[WindowStats]) -> bool:
    """A warm window with a finite change percentage."""
    return stats is not None and math.isfinite(stats.change_percent)


def in_threshold_range(change_percent: float, threshold_min: float, threshold_max: float) -> bool:
    """Inclusive membership in the detection band."""
    return threshold_min <= change_percent <= threshold_max


def exceeds_hysteresis(change_percent: float, baseline: float, delta: float) -> bool:
    """True when the move from the last broadcast value is worth re-broadcasting."""
    return abs(change_percent - baseline) > delta
