"""
Bandit Selector — Thompson sampling over the placement strategies.

Each arm keeps a Beta(alpha, beta) posterior over its success probability.
All randomness comes from the injected numpy Generator, so a fixed seed gives
a reproducible sequence of selections.
"""

import math
from typing import Dict, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel

from placement_kernel.models.decision import Strategy


class ArmState(BaseModel):
    alpha: float = 1.0
    beta: float = 1.0
    pulls: int = 0
    successes: int = 0
    total_reward: float = 0.0

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)


class ArmStats(BaseModel):
    strategy: Strategy
    pulls: int
    success_rate: float
    mean: float
    ci_low: float
    ci_high: float
    average_reward: float


class BanditSelector:
    def __init__(
        self,
        strategies: Optional[Sequence[Strategy]] = None,
        exploration_rate: float = 0.1,
        rng: Optional[np.random.Generator] = None,
        prior_alpha: float = 1.0,
        prior_beta: float = 1.0,
    ):
        self.strategies: List[Strategy] = list(strategies or Strategy)
        if not self.strategies:
            raise ValueError("at least one strategy is required")
        self.exploration_rate = exploration_rate
        self.rng = rng if rng is not None else np.random.default_rng()
        self._arms: Dict[Strategy, ArmState] = {
            s: ArmState(alpha=prior_alpha, beta=prior_beta) for s in self.strategies
        }
        self._selections = 0
        self._explorations = 0

    def select_strategy(self) -> Strategy:
        self._selections += 1
        if self.rng.random() < self.exploration_rate:
            self._explorations += 1
            return self.strategies[int(self.rng.integers(len(self.strategies)))]
        samples = [
            self.rng.beta(self._arms[s].alpha, self._arms[s].beta) for s in self.strategies
        ]
        return self.strategies[int(np.argmax(samples))]

    def update_strategy(self, strategy: Strategy, success: bool, reward: float = 0.0) -> None:
        arm = self._arms.get(strategy)
        if arm is None:
            raise KeyError(f"unknown strategy {strategy!r}")
        arm.pulls += 1
        arm.total_reward += reward
        if success:
            arm.alpha += 1.0
            arm.successes += 1
        else:
            arm.beta += 1.0

    def arm(self, strategy: Strategy) -> ArmState:
        return self._arms[strategy]

    def stats(self) -> List[ArmStats]:
        result = []
        for s in self.strategies:
            arm = self._arms[s]
            a, b = arm.alpha, arm.beta
            var = a * b / ((a + b) ** 2 * (a + b + 1))
            half = 1.96 * math.sqrt(var)
            result.append(ArmStats(
                strategy=s,
                pulls=arm.pulls,
                success_rate=arm.successes / arm.pulls if arm.pulls else 0.0,
                mean=arm.mean,
                ci_low=max(0.0, arm.mean - half),
                ci_high=min(1.0, arm.mean + half),
                average_reward=arm.total_reward / arm.pulls if arm.pulls else 0.0,
            ))
        return result

    def best_strategy(self) -> Strategy:
        """Highest posterior mean; ties keep declaration order."""
        return max(self.strategies, key=lambda s: self._arms[s].mean)

    def convergence(self) -> Dict[str, float]:
        """Entropy of the normalised posterior means and the exploration ratio."""
        means = np.array([self._arms[s].mean for s in self.strategies])
        probs = means / means.sum()
        entropy = float(-np.sum(probs * np.log(probs)))
        return {
            "entropy": entropy,
            "max_entropy": math.log(len(self.strategies)),
            "exploration_ratio": (
                self._explorations / self._selections if self._selections else 0.0
            ),
        }


def reward_from_measurements(
    sla_met: bool,
    within_budget: bool,
    throughput_ratio: float,
    energy_efficiency: Optional[float] = None,
) -> float:
    """Weighted outcome score in [-1, 1]: SLA 0.4, budget 0.3, throughput 0.2, energy 0.1."""
    reward = 0.4 if sla_met else -0.4
    reward += 0.3 if within_budget else -0.3
    reward += 0.2 * max(-1.0, min(1.0, throughput_ratio - 1.0))
    if energy_efficiency is not None:
        reward += 0.1 * (2 * energy_efficiency - 1)
    return max(-1.0, min(1.0, reward))
