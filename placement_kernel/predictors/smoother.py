"""Smoother — exponentially weighted moving average with variance tracking."""

import logging
import math
from collections import deque
from typing import Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_ALPHA = 0.167
ALPHA_CANDIDATES = (0.1, 0.167, 0.2, 0.25, 0.3, 0.4, 0.5)
TREND_THRESHOLD = 0.01


class Smoother:
    def __init__(self, alpha: float = DEFAULT_ALPHA, trend_window: int = 20):
        if not 0.0 < alpha <= 1.0:
            logger.warning("Invalid smoothing alpha %s, using %s", alpha, DEFAULT_ALPHA)
            alpha = DEFAULT_ALPHA
        self.alpha = alpha
        self._value: Optional[float] = None
        self._variance = 0.0
        self._count = 0
        self._recent: deque = deque(maxlen=trend_window)

    @property
    def value(self) -> Optional[float]:
        return self._value

    @property
    def variance(self) -> float:
        return self._variance

    @property
    def count(self) -> int:
        return self._count

    def update(self, x: float) -> float:
        x = float(x)
        if self._value is None:
            self._value = x
        else:
            delta = x - self._value
            self._value += self.alpha * delta
            self._variance = (1 - self.alpha) * (self._variance + self.alpha * delta * delta)
        self._count += 1
        self._recent.append(self._value)
        return self._value

    def confidence_interval(self, z: float = 1.96) -> Tuple[float, float]:
        if self._value is None:
            raise ValueError("no observations yet")
        half = z * math.sqrt(self._variance)
        return self._value - half, self._value + half

    def trend(self) -> str:
        """'increasing', 'decreasing' or 'stable' from the slope of recent smoothed values."""
        if len(self._recent) < 3:
            return "stable"
        ys = np.fromiter(self._recent, dtype=float)
        slope = float(np.polyfit(np.arange(len(ys)), ys, 1)[0])
        if slope > TREND_THRESHOLD:
            return "increasing"
        if slope < -TREND_THRESHOLD:
            return "decreasing"
        return "stable"

    def reset(self) -> None:
        self._value = None
        self._variance = 0.0
        self._count = 0
        self._recent.clear()


def optimal_alpha(series: Sequence[float], candidates: Sequence[float] = ALPHA_CANDIDATES) -> float:
    """Pick the candidate alpha with the lowest one-step-ahead squared error."""
    if len(series) < 2:
        return DEFAULT_ALPHA
    best_alpha, best_error = DEFAULT_ALPHA, math.inf
    for alpha in candidates:
        level = float(series[0])
        error = 0.0
        for x in series[1:]:
            error += (float(x) - level) ** 2
            level += alpha * (float(x) - level)
        if error < best_error:
            best_alpha, best_error = alpha, error
    return best_alpha
