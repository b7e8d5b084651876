"""Clock and time-window helpers.

All timestamps are integer milliseconds since the epoch.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

DEFAULT_WINDOW_MS = 60_000


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class TimeWindow:
    anchor_ts_ms: int
    window_ms: int
    window_start_ms: int
    window_end_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def unify_time_window(anchor_ts_ms: Optional[int] = None, window_ms: Optional[int] = None) -> TimeWindow:
    """Align ``anchor_ts_ms`` to the start of its ``window_ms``-sized bucket.

    Alignment always uses the requested window size, so a 5 minute window is
    aligned on 5 minute boundaries.
    """
    size = DEFAULT_WINDOW_MS if window_ms is None else int(window_ms)
    if size <= 0:
        raise ValueError("window_ms must be positive")
    anchor = now_ms() if anchor_ts_ms is None else int(anchor_ts_ms)
    start = (anchor // size) * size
    return TimeWindow(
        anchor_ts_ms=anchor,
        window_ms=size,
        window_start_ms=start,
        window_end_ms=start + size,
    )


def calculate_data_age_ms(observed_ts_ms: int, source_ts_ms: int) -> int:
    # source clocks may run ahead of ours
    return max(0, int(observed_ts_ms) - int(source_ts_ms))


def clamp_window_start(window: TimeWindow, earliest_ts_ms: int) -> TimeWindow:
    if window.window_start_ms < earliest_ts_ms:
        return replace(window, window_start_ms=earliest_ts_ms)
    return window
