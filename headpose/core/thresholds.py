from __future__ import annotations

from headpose.core.types import EulerAngles, Range, Thresholds


def _within(value: float, bounds: Range) -> bool:
    lo, hi = bounds
    return lo <= value <= hi


def is_in_position(angles: EulerAngles, thresholds: Thresholds) -> bool:
    """True when pitch, yaw and roll all sit inside their closed ranges."""
    return (
        _within(angles.pitch, thresholds.pitch_range)
        and _within(angles.yaw, thresholds.yaw_range)
        and _within(angles.roll, thresholds.roll_range)
    )
