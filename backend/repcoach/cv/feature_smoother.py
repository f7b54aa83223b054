"""
Fixed-window moving average per derived feature.

Every exercise screen smooths its joint angles over the last few frames
before comparing them to thresholds. Short windows (4-6 frames) keep
movement detection responsive; longer ones (8-10) steady isometric holds.
"""

from collections import deque
from typing import Deque, Dict, Optional
import logging
import math

logger = logging.getLogger(__name__)


class MovingAverage:
    """Bounded queue of the last ``window`` samples with a running sum."""

    def __init__(self, window: int):
        if window < 1:
            raise ValueError(f"Smoothing window must be >= 1, got {window}")
        self.window = window
        self._samples: Deque[float] = deque(maxlen=window)
        self._total = 0.0
        self._pushes = 0

    def push(self, value: float) -> float:
        """Append a sample (evicting the oldest when full) and return the mean."""
        if len(self._samples) == self.window:
            self._total -= self._samples[0]
        self._samples.append(value)
        self._total += value
        self._pushes += 1
        # Re-sum once per window to bound float drift
        if self._pushes % self.window == 0:
            self._total = math.fsum(self._samples)
        return self.mean

    @property
    def mean(self) -> Optional[float]:
        if not self._samples:
            return None
        return self._total / len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def clear(self):
        self._samples.clear()
        self._total = 0.0
        self._pushes = 0


class FeatureSmoother:
    """
    Per-feature moving averages for one session.

    Windows are fixed per feature at construction; feature ids not
    registered up-front get ``default_window``.
    """

    def __init__(self, windows: Optional[Dict[str, int]] = None, default_window: int = 5):
        self.default_window = default_window
        self._averages: Dict[str, MovingAverage] = {
            feature_id: MovingAverage(window)
            for feature_id, window in (windows or {}).items()
        }

    def push(self, feature_id: str, raw: float) -> float:
        """
        Add a raw sample for ``feature_id`` and return the smoothed value.

        Args:
            feature_id: Feature name from the exercise definition
            raw: Finite raw sample for this frame
        """
        average = self._averages.get(feature_id)
        if average is None:
            average = MovingAverage(self.default_window)
            self._averages[feature_id] = average
            logger.debug(f"Smoother created for '{feature_id}' with default window {self.default_window}")
        return average.push(raw)

    def value(self, feature_id: str) -> Optional[float]:
        """Current smoothed value, or None before the first sample."""
        average = self._averages.get(feature_id)
        return average.mean if average is not None else None

    def sample_count(self, feature_id: str) -> int:
        average = self._averages.get(feature_id)
        return len(average) if average is not None else 0

    def reset(self):
        """Drop all smoothing history."""
        for average in self._averages.values():
            average.clear()
