"""
Decision Engine — multi-objective scoring of feasible targets.

Behavioral Contract:
- Scoring is one deterministic pass per target: identical inputs give an
  identical ranking
- score = -sum(w_k * signed cost_k), signed by each objective's minimize flag
- Data gravity multiplies a non-negative score and divides a negative one,
  so lower proximity never improves a score
- Soft-policy penalties are subtracted; pattern and RL recommendations add
  bonuses to targets of the recommended action class
- The best final score wins; ties go to the lowest target id
- The cost-model mapping must cover every configured objective kind
"""

import logging
import math
from typing import Dict, Iterable, List, Mapping, Optional

from placement_kernel.decision.cost_models import PLACEMENT_COST_MODELS, CostInputs, CostModel
from placement_kernel.decision.gravity import DataGravityModel
from placement_kernel.errors import ConfigurationInvalid
from placement_kernel.models.config import CostModelConfig
from placement_kernel.models.decision import (
    PlacementAction,
    PredictionSnapshot,
    Strategy,
    TargetScore,
    action_for_target_type,
)
from placement_kernel.models.learning import DiscoveredPattern
from placement_kernel.models.policy import PolicyEvaluation
from placement_kernel.models.process import Process
from placement_kernel.models.scaling import ExecutorSpec
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget, Location
from placement_kernel.models.weights import ObjectiveKind, ObjectiveSpec, project_to_bounds

logger = logging.getLogger(__name__)

NON_FINITE_SCORE = 1e12

# Multiplicative emphasis each bandit arm puts on the learned weights
STRATEGY_BIAS: Dict[Strategy, Dict[ObjectiveKind, float]] = {
    Strategy.DATA_LOCAL: {ObjectiveKind.NETWORK_COST: 1.6, ObjectiveKind.QUEUE_DEPTH: 0.8},
    Strategy.PERFORMANCE: {ObjectiveKind.LATENCY_COST: 1.4, ObjectiveKind.THROUGHPUT: 1.5},
    Strategy.COST_OPTIMAL: {
        ObjectiveKind.PROCESSOR_LOAD: 1.4,
        ObjectiveKind.NETWORK_COST: 1.3,
        ObjectiveKind.LATENCY_COST: 0.8,
    },
    Strategy.BALANCED: {},
    Strategy.LATENCY_FIRST: {ObjectiveKind.LATENCY_COST: 2.0},
    Strategy.GREEN_COMPUTE: {ObjectiveKind.ENERGY_COST: 2.0},
}


def apply_strategy(
    weights: Mapping[ObjectiveKind, float],
    bounds: Mapping[ObjectiveKind, tuple],
    strategy: Optional[Strategy],
) -> Dict[ObjectiveKind, float]:
    """Effective weights for one decision. The learned vector is untouched."""
    if strategy is None or not STRATEGY_BIAS.get(strategy):
        return dict(weights)
    bias = STRATEGY_BIAS[strategy]
    biased = {k: w * bias.get(k, 1.0) for k, w in weights.items()}
    total = sum(biased.values())
    if total <= 0:
        return dict(weights)
    normalized = {k: w / total for k, w in biased.items()}
    return project_to_bounds(normalized, dict(bounds))


class DecisionEngine:
    def __init__(
        self,
        objectives: List[ObjectiveSpec],
        cost_config: CostModelConfig,
        local_location: Location,
        cost_models: Optional[Mapping[ObjectiveKind, CostModel]] = None,
    ):
        self.cost_config = cost_config
        self.local_location = local_location
        self.cost_models: Dict[ObjectiveKind, CostModel] = dict(
            cost_models if cost_models is not None else PLACEMENT_COST_MODELS
        )
        missing = [o.kind.value for o in objectives if o.kind not in self.cost_models]
        if missing:
            raise ConfigurationInvalid(f"no cost model registered for objectives {missing}")
        self.minimize = {o.kind: o.minimize for o in objectives}
        self.gravity = DataGravityModel.from_config(cost_config)

    # --- Capacity ---

    def capacity_needed(
        self,
        process: Process,
        state: SystemState,
        prediction: PredictionSnapshot,
    ) -> float:
        """
        Base CPU need, widened by the remaining pipeline, then adjusted by the
        load forecast. Without a forecast the unsmoothed base is used.
        """
        remaining = len(process.pipeline.remaining_stages()) if process.pipeline else 0
        base = process.cpu_requirement * (
            1.0 + remaining * self.cost_config.downstream_stage_factor
        )
        need = base
        if prediction.smoothed is not None:
            need = base * prediction.smoothed
        elif prediction.forecast is not None:
            need = base * self.forecast_ratio(prediction.forecast, state.compute_usage)
        if prediction.anomaly:
            need *= self.cost_config.anomaly_capacity_multiplier
        return max(need, 0.0)

    def forecast_ratio(self, forecast: float, current_load: float) -> float:
        return max(0.0, 1.0 + (forecast - current_load) * self.cost_config.forecast_adjustment)

    # --- Scoring ---

    def score_target(
        self,
        process: Process,
        target: ExecutionTarget,
        state: SystemState,
        weights: Mapping[ObjectiveKind, float],
        capacity_needed: float,
        evaluation: Optional[PolicyEvaluation] = None,
        pattern: Optional[DiscoveredPattern] = None,
        rl_action: Optional[PlacementAction] = None,
        executor: Optional[ExecutorSpec] = None,
        demand: float = 0.0,
    ) -> TargetScore:
        data_location = process.data_location or self.local_location
        proximity = self.gravity.proximity(data_location, target.location)
        gravity = self.gravity.score(data_location, target.location)
        multiplier = self.gravity.multiplier(data_location, target.location)
        soft_penalty = evaluation.soft_penalty if evaluation is not None else 0.0

        inputs = CostInputs(
            process=process,
            target=target,
            state=state,
            capacity_needed=capacity_needed,
            proximity=proximity,
            gravity=gravity,
            soft_penalty=soft_penalty,
            config=self.cost_config,
            executor=executor,
            demand=demand,
            transfer_penalty=self.gravity.transfer_penalty(
                data_location, target.location, process.data_size_mb / 1024.0,
            ),
        )

        components: Dict[str, float] = {}
        weighted = 0.0
        for kind, weight in weights.items():
            cost = float(self.cost_models[kind](inputs))
            components[kind.value] = cost
            signed = cost if self.minimize.get(kind, True) else -cost
            weighted -= weight * signed

        adjusted = DataGravityModel.apply(weighted, multiplier)
        penalty = soft_penalty * self.cost_config.soft_penalty_scale

        action = action_for_target_type(target.type)
        pattern_bonus = 0.0
        if pattern is not None and pattern.recommended_action == action:
            pattern_bonus = self.cost_config.pattern_bonus * pattern.confidence
        rl_bonus = self.cost_config.rl_bonus if rl_action == action else 0.0

        final = adjusted - penalty + pattern_bonus + rl_bonus
        if not math.isfinite(final):
            final = -NON_FINITE_SCORE

        logger.debug(
            "Scored %s for %s: weighted=%.4f gravity=%.2f final=%.4f",
            target.id, process.id, weighted, gravity, final,
        )
        return TargetScore(
            target_id=target.id,
            components=components,
            weighted_score=weighted,
            gravity=gravity,
            gravity_multiplier=multiplier,
            soft_penalty=penalty,
            pattern_bonus=pattern_bonus,
            rl_bonus=rl_bonus,
            final_score=final,
        )

    def rank(
        self,
        process: Process,
        targets: Iterable[ExecutionTarget],
        state: SystemState,
        weights: Mapping[ObjectiveKind, float],
        capacity_needed: float,
        evaluations: Optional[Mapping[str, PolicyEvaluation]] = None,
        pattern: Optional[DiscoveredPattern] = None,
        rl_action: Optional[PlacementAction] = None,
    ) -> List[TargetScore]:
        """Best first; equal scores ordered by target id."""
        evaluations = evaluations or {}
        scores = [
            self.score_target(
                process, target, state, weights, capacity_needed,
                evaluation=evaluations.get(target.id),
                pattern=pattern,
                rl_action=rl_action,
            )
            for target in targets
        ]
        return sort_scores(scores)


def sort_scores(scores: List[TargetScore]) -> List[TargetScore]:
    return sorted(scores, key=lambda s: (-s.final_score, s.target_id))


def decision_confidence(
    ranked: List[TargetScore],
    pattern: Optional[DiscoveredPattern] = None,
    pattern_followed: bool = False,
) -> float:
    """Margin between the two best scores, blended with pattern confidence."""
    if not ranked:
        return 0.0
    if len(ranked) == 1:
        confidence = 1.0
    else:
        best, second = ranked[0].final_score, ranked[1].final_score
        spread = abs(best) + abs(second)
        margin = (best - second) / spread if spread > 1e-12 else 0.0
        confidence = 0.5 + 0.5 * min(max(margin, 0.0), 1.0)
    if pattern is not None and pattern_followed:
        confidence = 0.7 * confidence + 0.3 * pattern.confidence
    return min(max(confidence, 0.0), 1.0)


def explain(
    best: Optional[TargetScore],
    ranked: List[TargetScore],
    dropped: Mapping[str, str],
    strategy: Optional[Strategy] = None,
    pattern: Optional[DiscoveredPattern] = None,
) -> str:
    parts = []
    if best is None:
        parts.append("no feasible target")
    else:
        top = sorted(best.components.items(), key=lambda kv: kv[0])
        detail = ", ".join(f"{k}={v:.3f}" for k, v in top)
        parts.append(
            f"selected {best.target_id} with score {best.final_score:.4f} "
            f"of {len(ranked)} feasible ({detail}; gravity {best.gravity:.2f})"
        )
        if len(ranked) > 1:
            parts.append(f"runner-up {ranked[1].target_id} at {ranked[1].final_score:.4f}")
    if strategy is not None:
        parts.append(f"strategy {strategy.value}")
    if pattern is not None:
        parts.append(f"pattern {pattern.id} ({pattern.signature()})")
    for target_id in sorted(dropped):
        parts.append(f"{target_id} dropped: {dropped[target_id]}")
    return "; ".join(parts)
