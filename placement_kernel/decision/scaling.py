"""
Scaling — decide whether to deploy, remove or hold executor instances.

Queued work is turned into priority-weighted demand per executor type, a
per-type predictor toolkit projects it forward, and the decision engine
(with the scaling cost-model set) ranks the executor specs of that type.
"""

import logging
import math
from collections import deque
from datetime import datetime
from typing import Dict, List, Mapping, Optional
from uuid import uuid4

import numpy as np

from placement_kernel.decision.cost_models import SCALING_COST_MODELS
from placement_kernel.decision.engine import DecisionEngine, sort_scores
from placement_kernel.errors import InsufficientHistory
from placement_kernel.models.config import PlacementConfig, ScalingConfig
from placement_kernel.models.process import Process
from placement_kernel.models.scaling import (
    ExecutorSpec,
    PriorityWeightedDemand,
    QueuedProcess,
    ScalingAction,
    ScalingActionType,
)
from placement_kernel.models.state import SystemState
from placement_kernel.models.weights import ObjectiveKind
from placement_kernel.predictors.change_detector import ChangeDetector
from placement_kernel.predictors.forecaster import Forecaster
from placement_kernel.predictors.smoother import Smoother

logger = logging.getLogger(__name__)

MIN_CONFIDENCE_SAMPLES = 10
MAX_CONFIDENCE = 0.95
URGENT_EXTRA_MULTIPLIER = 1.5


class PriorityAnalyzer:
    """Weights each queued process by priority and by how long it has waited."""

    def __init__(self, config: ScalingConfig):
        self.config = config

    def priority_weight(self, priority: int) -> float:
        weight = 1.0
        if priority >= self.config.high_priority_threshold:
            weight *= self.config.priority_weight_multiplier
        if priority >= self.config.urgent_priority_threshold:
            weight *= URGENT_EXTRA_MULTIPLIER
        return weight

    def time_weight(self, waited_seconds: float) -> float:
        return 1.0 + max(waited_seconds, 0.0) / 60.0 * self.config.time_decay_factor

    def analyze(
        self,
        queued: List[QueuedProcess],
        now: Optional[datetime] = None,
    ) -> Dict[str, PriorityWeightedDemand]:
        now = now or datetime.utcnow()
        by_type: Dict[str, List[QueuedProcess]] = {}
        for item in queued:
            by_type.setdefault(item.executor_type, []).append(item)

        result = {}
        for executor_type, items in by_type.items():
            waits = [(now - item.submitted_at).total_seconds() for item in items]
            weighted = sum(
                self.priority_weight(item.priority) * self.time_weight(wait)
                for item, wait in zip(items, waits)
            )
            total = len(items)
            high = sum(1 for i in items if i.priority >= self.config.high_priority_threshold)
            urgent = sum(1 for i in items if i.priority >= self.config.urgent_priority_threshold)
            avg_wait = sum(waits) / total
            urgency = 0.4 * high / total + 0.4 * urgent / total
            urgency += 0.2 * min(avg_wait / 3600.0, 1.0)
            result[executor_type] = PriorityWeightedDemand(
                executor_type=executor_type,
                total_processes=total,
                weighted_demand=weighted,
                high_priority_count=high,
                urgent_count=urgent,
                average_wait_seconds=avg_wait,
                urgency_score=min(max(urgency, 0.0), 1.0),
                cpu_requirement=sum(i.cpu_requirement for i in items) / total,
                input_size_mb=sum(i.input_size_mb for i in items),
            )
        return result


class DemandPredictor:
    """Per-executor-type forecaster, smoother and change detector."""

    def __init__(self, config: PlacementConfig):
        predictors = config.predictors
        self.forecaster = Forecaster(max_history=predictors.forecaster_history)
        self.smoother = Smoother(alpha=predictors.smoothing_alpha)
        self.detector = ChangeDetector(
            drift_sigmas=predictors.cusum_drift_sigmas,
            threshold_sigmas=predictors.cusum_threshold_sigmas,
            warmup=predictors.cusum_warmup,
        )
        self.history: deque = deque(maxlen=predictors.forecaster_history)

    def observe(self, demand: float):
        """Record demand; return (predicted demand, anomaly flag)."""
        self.history.append(demand)
        self.forecaster.add_observation(demand)
        smoothed = self.smoother.update(demand)
        anomaly = self.detector.update(demand).is_anomaly
        try:
            predicted = max(self.forecaster.predict(), smoothed)
        except InsufficientHistory:
            predicted = smoothed
        return max(predicted, 0.0), anomaly

    def confidence(self) -> float:
        """Lower when demand is volatile relative to its mean."""
        if len(self.history) < MIN_CONFIDENCE_SAMPLES:
            return 0.5
        arr = np.fromiter(self.history, dtype=float)
        mean = float(arr.mean())
        if mean <= 0:
            return 0.5
        return min(1.0 / (1.0 + float(arr.var()) / mean), MAX_CONFIDENCE)


class ScalingPlanner:
    def __init__(self, config: PlacementConfig):
        self.config = config
        self.analyzer = PriorityAnalyzer(config.scaling)
        self.engine = DecisionEngine(
            config.objectives,
            config.cost_model,
            config.local_location,
            cost_models=SCALING_COST_MODELS,
        )
        self._predictors: Dict[str, DemandPredictor] = {}

    def predictor(self, executor_type: str) -> DemandPredictor:
        if executor_type not in self._predictors:
            self._predictors[executor_type] = DemandPredictor(self.config)
        return self._predictors[executor_type]

    def decide(
        self,
        executor_type: str,
        queued: List[QueuedProcess],
        executors: List[ExecutorSpec],
        running: Mapping[str, int],
        state: SystemState,
        weights: Mapping[ObjectiveKind, float],
        now: Optional[datetime] = None,
    ) -> ScalingAction:
        now = now or datetime.utcnow()
        demand = self.analyzer.analyze(
            [q for q in queued if q.executor_type == executor_type], now
        ).get(executor_type)
        weighted = demand.weighted_demand if demand else 0.0

        predictor = self.predictor(executor_type)
        predicted, anomaly = predictor.observe(weighted)
        if anomaly:
            predicted *= self.config.cost_model.anomaly_capacity_multiplier
        confidence = predictor.confidence()

        candidates = [e for e in executors if e.executor_type == executor_type]
        if not candidates:
            return self._action(
                executor_type, None, ScalingActionType.HOLD, 0, 0, predicted,
                anomaly, confidence, reason=f"no executor registered for {executor_type}",
            )

        representative = Process(
            id=f"demand_{executor_type}",
            type=executor_type,
            cpu_requirement=demand.cpu_requirement if demand else 1.0,
            input_size_mb=demand.input_size_mb if demand else 0.0,
        )
        specs = {e.id: e for e in candidates}
        ranked = sort_scores([
            self.engine.score_target(
                representative, spec.target, state, weights,
                capacity_needed=representative.cpu_requirement,
                executor=spec, demand=predicted,
            ).model_copy(update={"target_id": spec.id})
            for spec in candidates
        ])
        scores = {s.target_id: s.final_score for s in ranked}
        best = specs[ranked[0].target_id]

        total_running = sum(running.get(e.id, 0) for e in candidates)
        capacity = sum(running.get(e.id, 0) * e.tasks_per_minute for e in candidates)
        best_running = running.get(best.id, 0)

        deploy = 0
        if predicted > capacity:
            deploy = math.ceil((predicted - capacity) / best.tasks_per_minute)
        deploy = max(deploy, best.min_instances - best_running)
        deploy = min(deploy, best.max_instances - best_running)

        if deploy > 0:
            action = self._action(
                executor_type, best, ScalingActionType.DEPLOY, deploy, total_running,
                predicted, anomaly, confidence,
                reason=(
                    f"predicted demand {predicted:.2f}/min exceeds capacity "
                    f"{capacity:.2f}/min; deploying {deploy} x {best.id}"
                ),
                scores=scores,
            )
            action.estimated_cost = deploy * best.cost_per_hour
            action.ready_in_seconds = best.startup_seconds
            logger.info("Scaling %s: %s", executor_type, action.reason)
            return action

        # Shrink the lowest-ranked executor that is above its floor
        for score in reversed(ranked):
            spec = specs[score.target_id]
            count = running.get(spec.id, 0)
            if count <= spec.min_instances:
                continue
            remaining = capacity - spec.tasks_per_minute
            if predicted <= remaining * self.config.scaling.scale_down_headroom:
                action = self._action(
                    executor_type, spec, ScalingActionType.REMOVE, 1, total_running,
                    predicted, anomaly, confidence,
                    reason=(
                        f"predicted demand {predicted:.2f}/min fits in "
                        f"{remaining:.2f}/min without one {spec.id}"
                    ),
                    scores=scores,
                )
                action.estimated_cost = -spec.cost_per_hour
                logger.info("Scaling %s: %s", executor_type, action.reason)
                return action
            break

        return self._action(
            executor_type, best, ScalingActionType.HOLD, 0, total_running, predicted,
            anomaly, confidence,
            reason=f"capacity {capacity:.2f}/min matches predicted demand {predicted:.2f}/min",
            scores=scores,
        )

    @staticmethod
    def _action(
        executor_type: str,
        spec: Optional[ExecutorSpec],
        kind: ScalingActionType,
        count: int,
        current: int,
        predicted: float,
        anomaly: bool,
        confidence: float,
        reason: str,
        scores: Optional[Dict[str, float]] = None,
    ) -> ScalingAction:
        return ScalingAction(
            id=f"scale_{uuid4().hex[:12]}",
            executor_type=executor_type,
            executor_id=spec.id if spec else None,
            action=kind,
            count=count,
            current_count=current,
            predicted_demand=predicted,
            anomaly=anomaly,
            confidence=confidence,
            reason=reason,
            scores=scores or {},
            created_at=datetime.utcnow(),
        )
