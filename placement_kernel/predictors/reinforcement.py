"""
Reinforcement Learner — tabular Q-learning over a discretised placement state.

State: (data location, data-size bucket, pipeline stage, load bucket).
Actions: stay, move to edge, move to cloud, move to HPC.
"""

import math
from typing import Any, Dict, NamedTuple, Optional

import numpy as np

from placement_kernel.models.decision import PlacementAction

ACTIONS = list(PlacementAction)
MAX_BUCKET = 9


class RLState(NamedTuple):
    location: str
    size_bucket: int
    stage: int
    load_bucket: int

    def key(self) -> str:
        return f"{self.location}|{self.size_bucket}|{self.stage}|{self.load_bucket}"


def discretize(location: str, data_size_mb: float, stage: int, load: float) -> RLState:
    """Bucket continuous features: size by log10(MB) + 2, load by tenths."""
    size_bucket = int(math.floor(math.log10(max(data_size_mb, 0.01)))) + 2
    return RLState(
        location=location,
        size_bucket=min(max(size_bucket, 0), MAX_BUCKET),
        stage=min(max(stage, 0), MAX_BUCKET),
        load_bucket=min(max(int(load * 10), 0), MAX_BUCKET),
    )


def compute_reward(cost: float, performance_bonus: float, sla_met: bool, sla_penalty: float = 1.0) -> float:
    return -cost + performance_bonus - (0.0 if sla_met else sla_penalty)


class ReinforcementLearner:
    def __init__(
        self,
        learning_rate: float = 0.1,
        discount: float = 0.9,
        epsilon: float = 0.1,
        epsilon_decay: float = 0.995,
        min_epsilon: float = 0.01,
        rng: Optional[np.random.Generator] = None,
    ):
        self.learning_rate = learning_rate
        self.discount = discount
        self.epsilon = epsilon
        self.epsilon_decay = epsilon_decay
        self.min_epsilon = min_epsilon
        self.rng = rng if rng is not None else np.random.default_rng()
        self._q: Dict[RLState, np.ndarray] = {}
        self._updates = 0

    def _row(self, state: RLState) -> np.ndarray:
        row = self._q.get(state)
        if row is None:
            row = np.zeros(len(ACTIONS))
            self._q[state] = row
        return row

    def q_value(self, state: RLState, action: PlacementAction) -> float:
        row = self._q.get(state)
        return 0.0 if row is None else float(row[ACTIONS.index(action)])

    def best_action(self, state: RLState) -> PlacementAction:
        """Greedy action; ties resolve to declaration order."""
        row = self._q.get(state)
        if row is None:
            return ACTIONS[0]
        return ACTIONS[int(np.argmax(row))]

    def select_action(self, state: RLState) -> PlacementAction:
        """Epsilon-greedy selection."""
        if self.rng.random() < self.epsilon:
            return ACTIONS[int(self.rng.integers(len(ACTIONS)))]
        return self.best_action(state)

    def update(
        self,
        state: RLState,
        action: PlacementAction,
        reward: float,
        next_state: Optional[RLState] = None,
    ) -> float:
        """Q(s,a) += alpha * (r + gamma * max Q(s',.) - Q(s,a)). Terminal when next_state is None."""
        row = self._row(state)
        idx = ACTIONS.index(action)
        future = 0.0
        if next_state is not None:
            next_row = self._q.get(next_state)
            future = float(next_row.max()) if next_row is not None else 0.0
        target = reward + self.discount * future
        row[idx] += self.learning_rate * (target - row[idx])
        self._updates += 1
        self.epsilon = max(self.min_epsilon, self.epsilon * self.epsilon_decay)
        return float(row[idx])

    def export_policy(self) -> Dict[str, Dict[str, Any]]:
        """Greedy action and its value for every visited state."""
        policy = {}
        for state in sorted(self._q, key=lambda s: s.key()):
            best = self.best_action(state)
            policy[state.key()] = {"action": best.value, "q": self.q_value(state, best)}
        return policy

    def stats(self) -> Dict[str, float]:
        return {
            "states": len(self._q),
            "updates": self._updates,
            "epsilon": self.epsilon,
        }
