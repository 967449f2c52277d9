"""
Gradient Optimizer — stochastic gradient descent with optional momentum,
L2 weight decay and an AdaGrad-style per-parameter rate.

The optimizer never clamps. Callers that need non-negative or bounded
parameters project the result themselves.
"""

from collections import deque
from typing import Optional, Sequence

import numpy as np

from placement_kernel.errors import ConfigurationInvalid

ADAGRAD_EPSILON = 1e-8


class GradientOptimizer:
    def __init__(
        self,
        learning_rate: float,
        momentum: float = 0.0,
        weight_decay: float = 0.0,
        adaptive: bool = False,
        tolerance: float = 1e-6,
        patience: int = 10,
        history_size: int = 100,
    ):
        if learning_rate is None or learning_rate <= 0:
            raise ConfigurationInvalid(
                f"learning_rate must be explicitly configured and positive, got {learning_rate!r}"
            )
        if not 0.0 <= momentum < 1.0:
            raise ConfigurationInvalid(f"momentum must lie in [0, 1), got {momentum}")
        self.learning_rate = learning_rate
        self.momentum = momentum
        self.weight_decay = weight_decay
        self.adaptive = adaptive
        self.tolerance = tolerance
        self.patience = patience

        self._velocity: Optional[np.ndarray] = None
        self._grad_sq: Optional[np.ndarray] = None
        self._loss_history: deque = deque(maxlen=history_size)
        self._best_loss = np.inf
        self._since_improvement = 0
        self._steps = 0
        self._grad_norm_total = 0.0

    def update(
        self,
        params: Sequence[float],
        gradient: Sequence[float],
        loss: float,
    ) -> np.ndarray:
        """One descent step. Returns a new array; inputs are not modified."""
        p = np.asarray(params, dtype=float).copy()
        g = np.asarray(gradient, dtype=float)
        if p.shape != g.shape:
            raise ValueError(f"shape mismatch: params {p.shape} vs gradient {g.shape}")

        if self.weight_decay:
            g = g + self.weight_decay * p

        rate = np.full_like(p, self.learning_rate)
        if self.adaptive:
            if self._grad_sq is None or self._grad_sq.shape != p.shape:
                self._grad_sq = np.zeros_like(p)
            self._grad_sq += g * g
            rate = self.learning_rate / (np.sqrt(self._grad_sq) + ADAGRAD_EPSILON)

        if self.momentum:
            if self._velocity is None or self._velocity.shape != p.shape:
                self._velocity = np.zeros_like(p)
            self._velocity = self.momentum * self._velocity - rate * g
            p += self._velocity
        else:
            p -= rate * g

        self._record(g, loss)
        return p

    def _record(self, gradient: np.ndarray, loss: float) -> None:
        self._steps += 1
        self._grad_norm_total += float(np.linalg.norm(gradient))
        self._loss_history.append(float(loss))
        if loss < self._best_loss - self.tolerance:
            self._best_loss = float(loss)
            self._since_improvement = 0
        else:
            self._since_improvement += 1

    @property
    def converged(self) -> bool:
        return self._steps >= self.patience and self._since_improvement >= self.patience

    @property
    def steps(self) -> int:
        return self._steps

    @property
    def best_loss(self) -> float:
        return float(self._best_loss)

    @property
    def average_gradient_norm(self) -> float:
        return self._grad_norm_total / self._steps if self._steps else 0.0

    @property
    def loss_history(self):
        return list(self._loss_history)

    def reset(self) -> None:
        self._velocity = None
        self._grad_sq = None
        self._loss_history.clear()
        self._best_loss = np.inf
        self._since_improvement = 0
        self._steps = 0
        self._grad_norm_total = 0.0
