"""
Gaze Filter
Denoises the gaze stream before it reaches the kinematics engine:
- Median over a short FIFO buffer rejects single-frame outliers
- Adaptive exponential smoothing: responsive on large jumps (saccades),
  steady during fixation
"""

import math
from collections import deque
from dataclasses import dataclass, fields
from typing import Any, Deque, Dict, Optional, Sequence, Tuple

import numpy as np

from vor_rehab import constants as const


@dataclass
class GazeFilterConfig:
    """Tunables for the gaze filter"""
    buffer_size: int = const.FILTER_BUFFER_SIZE
    jump_threshold_px: float = const.SMOOTHING_JUMP_THRESHOLD_PX
    alpha_fast: float = const.SMOOTHING_ALPHA_FAST
    alpha_slow: float = const.SMOOTHING_ALPHA_SLOW

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GazeFilterConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


def median(values: Sequence[float]) -> float:
    """Middle value for odd counts, mean of the two middle values for even counts."""
    if len(values) == 0:
        raise ValueError("median of empty sequence")
    return float(np.median(np.asarray(values, dtype=float)))


class GazeFilter:
    """
    Stateful gaze smoother.

    `filter()` returns None until the first valid sample has been seen;
    the origin is never used as an "uninitialized" marker.
    """

    def __init__(self, config: Optional[GazeFilterConfig] = None):
        self.config = config or GazeFilterConfig()
        if self.config.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        self._buffer: Deque[Tuple[float, float]] = deque(maxlen=self.config.buffer_size)
        self._smoothed: Optional[Tuple[float, float]] = None
        self._last_timestamp: Optional[float] = None
        self.last_alpha: Optional[float] = None

    @property
    def is_initialized(self) -> bool:
        return self._smoothed is not None

    @property
    def current(self) -> Optional[Tuple[float, float]]:
        return self._smoothed

    @property
    def last_timestamp(self) -> Optional[float]:
        return self._last_timestamp

    def filter(self, point: Tuple[float, float], timestamp: float) -> Optional[Tuple[float, float]]:
        """
        Push a raw gaze point and return the smoothed point.

        Args:
            point: Raw (x, y) in screen pixels
            timestamp: Sample time in milliseconds

        Returns:
            Smoothed (x, y), or None if no valid sample has been seen yet
        """
        x, y = float(point[0]), float(point[1])
        if not (math.isfinite(x) and math.isfinite(y)):
            return self._smoothed

        self._buffer.append((x, y))
        self._last_timestamp = timestamp

        med_x = median([p[0] for p in self._buffer])
        med_y = median([p[1] for p in self._buffer])

        if self._smoothed is None:
            self._smoothed = (med_x, med_y)
            self.last_alpha = 1.0
            return self._smoothed

        prev_x, prev_y = self._smoothed
        jump = math.hypot(med_x - prev_x, med_y - prev_y)
        alpha = self.config.alpha_fast if jump > self.config.jump_threshold_px else self.config.alpha_slow

        self._smoothed = (
            alpha * med_x + (1.0 - alpha) * prev_x,
            alpha * med_y + (1.0 - alpha) * prev_y,
        )
        self.last_alpha = alpha
        return self._smoothed

    def set_smoothing(self, alpha_fast: float = None, alpha_slow: float = None,
                      jump_threshold_px: float = None):
        """Adjust smoothing parameters"""
        if alpha_fast is not None:
            self.config.alpha_fast = max(0.0, min(1.0, alpha_fast))
        if alpha_slow is not None:
            self.config.alpha_slow = max(0.0, min(1.0, alpha_slow))
        if jump_threshold_px is not None:
            self.config.jump_threshold_px = max(0.0, jump_threshold_px)

    def reset(self):
        """Forget all samples"""
        self._buffer.clear()
        self._smoothed = None
        self._last_timestamp = None
        self.last_alpha = None
