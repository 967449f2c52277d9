"""
Forecaster — fixed-order ARIMA(p, d, q) over a bounded observation window.

Behavioral Contract:
- add_observation() is O(p + q) and keeps at most max_history observations
  and residuals
- predict() differences the series d times, applies the AR and MA terms and
  integrates back; raises InsufficientHistory below p + d observations
- fit() re-estimates coefficients from autocorrelations (damped) once
  p + d + q + 10 observations exist; it runs automatically every
  refit_interval observations
- predict_next(n) never mutates the model
"""

import math
from collections import deque
from typing import List, Sequence

import numpy as np
from pydantic import BaseModel

from placement_kernel.errors import InsufficientHistory

DEFAULT_AR = (0.5, 0.3, 0.2)
DEFAULT_MA = (0.4, 0.3)
AR_DAMPING = 0.8
MA_DAMPING = 0.6


class ForecastAccuracy(BaseModel):
    mae: float
    mse: float
    rmse: float
    mape: float                             # Percent; zero actuals are skipped


def _autocorrelation(series: np.ndarray, lag: int) -> float:
    if lag <= 0 or len(series) <= lag:
        return 0.0
    centered = series - series.mean()
    denom = float(np.dot(centered, centered))
    if denom == 0.0:
        return 0.0
    return float(np.dot(centered[lag:], centered[:-lag]) / denom)


class Forecaster:
    def __init__(
        self,
        p: int = 3,
        d: int = 1,
        q: int = 2,
        max_history: int = 100,
        refit_interval: int = 10,
    ):
        if p < 1 or d < 0 or q < 0:
            raise ValueError("orders must satisfy p >= 1, d >= 0, q >= 0")
        self.p = p
        self.d = d
        self.q = q
        self.refit_interval = refit_interval
        self.ar = np.array([DEFAULT_AR[i] if i < len(DEFAULT_AR) else 0.0 for i in range(p)])
        self.ma = np.array([DEFAULT_MA[i] if i < len(DEFAULT_MA) else 0.0 for i in range(q)])
        self._observations: deque = deque(maxlen=max_history)
        self._residuals: deque = deque(maxlen=max_history)
        self._fitted = False
        self._since_fit = 0

    @property
    def fitted(self) -> bool:
        return self._fitted

    @property
    def min_observations(self) -> int:
        return self.p + self.d

    @property
    def min_fit_observations(self) -> int:
        return self.p + self.d + self.q + 10

    def __len__(self) -> int:
        return len(self._observations)

    def add_observation(self, value: float) -> None:
        if self._fitted and len(self._observations) >= self.min_observations:
            self._residuals.append(value - self.predict())
        self._observations.append(float(value))
        self._since_fit += 1
        if len(self._observations) >= self.min_fit_observations and (
            not self._fitted or self._since_fit >= self.refit_interval
        ):
            self.fit()

    def predict(self) -> float:
        """One-step-ahead forecast."""
        if len(self._observations) < self.min_observations:
            raise InsufficientHistory(self.min_observations, len(self._observations))

        series = np.fromiter(self._observations, dtype=float)
        diffed = np.diff(series, n=self.d) if self.d else series

        recent = diffed[-self.p:][::-1]
        prediction = float(np.dot(self.ar[: len(recent)], recent))

        if self.q and len(self._residuals) >= self.q:
            residuals = np.fromiter(self._residuals, dtype=float)[-self.q:][::-1]
            prediction += float(np.dot(self.ma, residuals))

        # Undo differencing, innermost level first
        for level in range(self.d - 1, -1, -1):
            base = np.diff(series, n=level) if level else series
            prediction += float(base[-1])

        return prediction

    def fit(self) -> None:
        """Re-estimate AR and MA coefficients from sample autocorrelations."""
        n = len(self._observations)
        if n < self.min_fit_observations:
            raise InsufficientHistory(self.min_fit_observations, n)

        series = np.fromiter(self._observations, dtype=float)
        diffed = np.diff(series, n=self.d) if self.d else series
        self.ar = np.array(
            [_autocorrelation(diffed, lag) * AR_DAMPING for lag in range(1, self.p + 1)]
        )

        if self.q and len(self._residuals) > self.q:
            residuals = np.fromiter(self._residuals, dtype=float)
            self.ma = np.array(
                [_autocorrelation(residuals, lag) * MA_DAMPING for lag in range(1, self.q + 1)]
            )

        self._fitted = True
        self._since_fit = 0

    def predict_next(self, steps: int) -> List[float]:
        """Multi-step forecast. Model state is restored afterwards."""
        saved_obs = deque(self._observations, maxlen=self._observations.maxlen)
        saved_res = deque(self._residuals, maxlen=self._residuals.maxlen)
        try:
            predictions = []
            for _ in range(steps):
                value = self.predict()
                predictions.append(value)
                self._observations.append(value)
                if self.q:
                    self._residuals.append(0.0)
            return predictions
        finally:
            self._observations = saved_obs
            self._residuals = saved_res

    def reset(self) -> None:
        self._observations.clear()
        self._residuals.clear()
        self._fitted = False
        self._since_fit = 0


def forecast_accuracy(actual: Sequence[float], predicted: Sequence[float]) -> ForecastAccuracy:
    if len(actual) != len(predicted) or not actual:
        raise ValueError("actual and predicted must be non-empty and equal length")
    a = np.asarray(actual, dtype=float)
    p = np.asarray(predicted, dtype=float)
    errors = a - p
    mse = float(np.mean(errors ** 2))
    nonzero = a != 0
    mape = float(np.mean(np.abs(errors[nonzero] / a[nonzero])) * 100) if nonzero.any() else 0.0
    return ForecastAccuracy(
        mae=float(np.mean(np.abs(errors))),
        mse=mse,
        rmse=math.sqrt(mse),
        mape=mape,
    )
