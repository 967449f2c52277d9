"""
Change Detector — two-sided CUSUM chart.

Behavioral Contract:
- drift k = drift_sigmas * sigma, threshold h = threshold_sigmas * sigma,
  both relative to a reference mean mu0
- C+ = max(0, C+ + (x - mu0) - k), C- = max(0, C- - (x - mu0) - k)
- An anomaly fires when either sum exceeds h; both sums are reset to 0
  immediately, so `cumulative` reads 0 after a detection
- mu0 and sigma may be given up front or learned from the first `warmup`
  observations, during which no anomaly can fire
"""

import logging
from typing import Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ADAPTIVE_RATE = 0.1


class ChangeResult(BaseModel):
    cumulative: float                       # max(C+, C-) at detection time
    upper: float
    lower: float
    is_anomaly: bool = False
    direction: Optional[str] = None         # "upward" | "downward"
    severity: float = 0.0                   # Exceeding sum / h


def estimate_parameters(samples: Sequence[float]) -> Tuple[float, float]:
    """Reference mean and standard deviation of a baseline sample."""
    if len(samples) == 0:
        raise ValueError("need at least one sample")
    arr = np.asarray(samples, dtype=float)
    mean = float(arr.mean())
    std = float(arr.std())
    if std == 0.0:
        std = max(abs(mean) * 0.01, 1e-6)
    return mean, std


class ChangeDetector:
    def __init__(
        self,
        reference_mean: Optional[float] = None,
        sigma: Optional[float] = None,
        drift_sigmas: float = 0.5,
        threshold_sigmas: float = 5.0,
        warmup: int = 10,
        adaptive: bool = False,
    ):
        if sigma is not None and sigma <= 0:
            raise ValueError("sigma must be positive")
        self.drift_sigmas = drift_sigmas
        self.threshold_sigmas = threshold_sigmas
        self.warmup = warmup
        self.adaptive = adaptive
        self.reference_mean = reference_mean
        self.sigma = sigma
        self._warmup_samples = []
        self._upper = 0.0
        self._lower = 0.0
        self._count = 0
        self._anomalies = 0
        # Running moments for adaptive mode
        self._running_var = 0.0

    @property
    def calibrated(self) -> bool:
        return self.reference_mean is not None and self.sigma is not None

    @property
    def cumulative(self) -> float:
        return max(self._upper, self._lower)

    @property
    def drift(self) -> float:
        return self.drift_sigmas * (self.sigma or 0.0)

    @property
    def threshold(self) -> float:
        return self.threshold_sigmas * (self.sigma or 0.0)

    @property
    def anomaly_count(self) -> int:
        return self._anomalies

    def update(self, x: float) -> ChangeResult:
        x = float(x)
        self._count += 1

        if not self.calibrated:
            self._warmup_samples.append(x)
            if len(self._warmup_samples) < self.warmup:
                return ChangeResult(cumulative=0.0, upper=0.0, lower=0.0)
            mean, std = estimate_parameters(self._warmup_samples)
            if self.reference_mean is None:
                self.reference_mean = mean
            if self.sigma is None:
                self.sigma = std
            self._running_var = self.sigma ** 2
            self._warmup_samples = []
            return ChangeResult(cumulative=0.0, upper=0.0, lower=0.0)

        deviation = x - self.reference_mean
        k = self.drift
        h = self.threshold
        self._upper = max(0.0, self._upper + deviation - k)
        self._lower = max(0.0, self._lower - deviation - k)

        if self.adaptive:
            self._adapt(x, deviation)

        if self._upper > h or self._lower > h:
            upward = self._upper >= self._lower
            peak = self._upper if upward else self._lower
            result = ChangeResult(
                cumulative=peak,
                upper=self._upper,
                lower=self._lower,
                is_anomaly=True,
                direction="upward" if upward else "downward",
                severity=peak / h if h > 0 else 0.0,
            )
            self._anomalies += 1
            self._upper = 0.0
            self._lower = 0.0
            logger.info(
                "CUSUM %s shift detected at x=%.4f (severity %.2f)",
                result.direction, x, result.severity,
            )
            return result

        return ChangeResult(
            cumulative=self.cumulative,
            upper=self._upper,
            lower=self._lower,
        )

    def _adapt(self, x: float, deviation: float) -> None:
        """Track the reference mean by EMA and re-derive sigma from it."""
        self.reference_mean += ADAPTIVE_RATE * deviation
        self._running_var = (1 - ADAPTIVE_RATE) * (
            self._running_var + ADAPTIVE_RATE * deviation * deviation
        )
        if self._count > self.warmup:
            self.sigma = max(float(np.sqrt(self._running_var)), 1e-6)

    def change_point_likelihood(self, window: Sequence[float]) -> float:
        """
        Log-likelihood ratio that `window` comes from a shifted mean rather
        than the reference, under a Gaussian model with the current sigma.
        """
        if not self.calibrated or len(window) == 0:
            return 0.0
        arr = np.asarray(window, dtype=float)
        shifted_mean = float(arr.mean())
        var = self.sigma ** 2
        ll_ref = -np.sum((arr - self.reference_mean) ** 2) / (2 * var)
        ll_shift = -np.sum((arr - shifted_mean) ** 2) / (2 * var)
        return float(ll_shift - ll_ref)

    def reset(self) -> None:
        self._upper = 0.0
        self._lower = 0.0
