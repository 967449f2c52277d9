"""
Orchestrator — the kernel's single owner of mutable state.

Behavioral Contract:
- Every state transition (decide, report_outcome, installing adaptation
  results, scaling) runs under one mutex; discovery itself runs outside it
- A malformed process raises InvalidInput; malformed targets are dropped
  with a logged reason
- A selected target never carries a hard-policy violation
- When the deadline leaves less time than the predictor toolkit needs, the
  last cached prediction is used, or the base estimate when none exists
- Outcomes are learned in call order, at most once per decision
- Q-learning transitions complete when both the outcome and the next
  decision on the same data location are known, in either order
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

import numpy as np
from croniter import croniter
from pydantic import BaseModel

from placement_kernel.decision.engine import (
    DecisionEngine,
    apply_strategy,
    decision_confidence,
    explain,
)
from placement_kernel.decision.scaling import ScalingPlanner
from placement_kernel.errors import InsufficientHistory, InvalidInput, NoFeasibleTarget
from placement_kernel.learning.adaptive import AdaptiveLearner
from placement_kernel.models.config import PlacementConfig, load_config
from placement_kernel.models.decision import (
    Decision,
    DecisionContext,
    PlacementAction,
    PredictionSnapshot,
    action_for_target_type,
)
from placement_kernel.models.learning import DiscoveredPattern, PatternStatus
from placement_kernel.models.outcome import REWARD_BOUND, Outcome
from placement_kernel.models.policy import PolicyAuditEntry, PolicyStats
from placement_kernel.models.process import Process
from placement_kernel.models.scaling import ExecutorSpec, QueuedProcess, ScalingAction
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget
from placement_kernel.models.weights import WeightVector
from placement_kernel.policy.engine import PolicyEngine
from placement_kernel.policy.rules import default_rules
from placement_kernel.predictors.bandit import ArmStats, BanditSelector
from placement_kernel.predictors.change_detector import ChangeDetector
from placement_kernel.predictors.forecaster import Forecaster
from placement_kernel.predictors.reinforcement import (
    ReinforcementLearner,
    RLState,
    compute_reward,
    discretize,
)
from placement_kernel.predictors.sequence_matcher import SequenceMatcher
from placement_kernel.predictors.smoother import Smoother, optimal_alpha

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 1000
TOOLKIT_COST_SMOOTHING = 0.2
ALPHA_TUNING_MIN_RATIOS = 10


class KernelStats(BaseModel):
    decisions: int = 0
    infeasible_decisions: int = 0
    outcomes: int = 0
    duplicate_outcomes: int = 0
    success_rate: float = 0.0
    weights: Dict[str, float] = {}
    weights_version: int = 0
    stability: float = 0.0
    converged: bool = False
    rejected_updates: int = 0
    patterns_total: int = 0
    patterns_validated: int = 0
    motifs: int = 0
    discovery_runs: int = 0
    anomalies: int = 0
    cached_predictions: int = 0
    fallback_predictions: int = 0
    bandit: List[ArmStats] = []
    bandit_convergence: Dict[str, float] = {}
    rl: Dict[str, float] = {}
    optimizer: Dict[str, float] = {}
    smoothing_alpha: float = 0.0
    change_likelihood: float = 0.0                  # Shifted-mean log-likelihood ratio of recent load
    policy: PolicyStats = PolicyStats()
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0


class AdaptationReport(BaseModel):
    candidates: int
    added: int
    motifs: int
    active_patterns: int
    smoothing_alpha: float
    motif_match: Optional[str] = None
    motif_similarity: float = 0.0
    ran_at: datetime


class _Transition:
    """A Q-learning step waiting for its reward and next state."""

    def __init__(self, state: RLState, action: PlacementAction):
        self.state = state
        self.action = action
        self.reward: Optional[float] = None
        self.next_state: Optional[RLState] = None

    @property
    def complete(self) -> bool:
        return self.reward is not None and self.next_state is not None


class Orchestrator:
    def __init__(
        self,
        config: Any,
        policy_engine: Optional[PolicyEngine] = None,
        audit_sink=None,
    ):
        self.config: PlacementConfig = load_config(config)
        cfg = self.config
        self._lock = threading.Lock()
        self._rng = np.random.default_rng(cfg.seed)

        self.policy = policy_engine or PolicyEngine(
            default_rules(cfg.safety),
            audit_sink=audit_sink,
            audit_retention=cfg.audit_retention,
        )
        self.engine = DecisionEngine(cfg.objectives, cfg.cost_model, cfg.local_location)
        self.learner = AdaptiveLearner(
            cfg.learner,
            WeightVector.from_objectives(cfg.objectives),
            sequence_matcher=SequenceMatcher(
                window=cfg.predictors.motif_window, metric=cfg.predictors.motif_metric,
            ),
            processed_retention=cfg.audit_retention,
        )
        self.scaling = ScalingPlanner(cfg)

        exploration = cfg.exploration
        self.bandit: Optional[BanditSelector] = None
        if exploration.strategy_selection:
            self.bandit = BanditSelector(
                exploration_rate=exploration.bandit_exploration_rate, rng=self._rng,
            )
        self.rl = ReinforcementLearner(
            learning_rate=exploration.rl_learning_rate,
            discount=exploration.rl_discount,
            epsilon=exploration.rl_epsilon,
            epsilon_decay=exploration.rl_epsilon_decay,
            min_epsilon=exploration.rl_min_epsilon,
            rng=self._rng,
        )

        predictors = cfg.predictors
        self.forecaster = Forecaster(max_history=predictors.forecaster_history)
        self.smoother = Smoother(alpha=predictors.smoothing_alpha)
        self.detector = ChangeDetector(
            drift_sigmas=predictors.cusum_drift_sigmas,
            threshold_sigmas=predictors.cusum_threshold_sigmas,
            warmup=predictors.cusum_warmup,
            adaptive=predictors.cusum_adaptive,
        )
        self._loads: deque = deque(maxlen=predictors.cusum_warmup)
        self._ratios: deque = deque(maxlen=predictors.forecaster_history)
        self._last_prediction: Optional[PredictionSnapshot] = None
        self._toolkit_ms = 0.0

        self._decisions: "OrderedDict[str, Decision]" = OrderedDict()
        self._pending: "OrderedDict[str, _Transition]" = OrderedDict()
        self._last_on_location: Dict[str, str] = {}
        self._latencies: deque = deque(maxlen=LATENCY_WINDOW)
        self._decision_count = 0
        self._infeasible = 0
        self._outcomes = 0
        self._duplicates = 0
        self._successes = 0
        self._anomalies = 0
        self._cached = 0
        self._fallbacks = 0

    # --- Decisions ---

    def decide(
        self,
        process: Process,
        targets: List[ExecutionTarget],
        state: SystemState,
        deadline_ms: Optional[float] = None,
    ) -> Decision:
        started = time.perf_counter()
        problems = process.validation_errors()
        if problems:
            raise InvalidInput(f"process {process.id!r}: {'; '.join(problems)}")

        dropped: Dict[str, str] = {}
        valid: List[ExecutionTarget] = []
        seen: Dict[str, int] = {}
        for target in targets:
            errors = target.validation_errors()
            key = target.id or "<unnamed>"
            if target.id in seen:
                seen[target.id] += 1
                key = f"{target.id}#dup{seen[target.id]}"
                errors.append("duplicate target id")
            if errors:
                dropped[key] = "; ".join(errors)
                logger.warning("Dropped target %r: %s", target.id, "; ".join(errors))
                continue
            seen[target.id] = 0
            valid.append(target)

        with self._lock:
            try:
                return self._decide_locked(process, valid, state, dropped, started, deadline_ms)
            finally:
                self._latencies.append((time.perf_counter() - started) * 1000.0)

    def _decide_locked(
        self,
        process: Process,
        targets: List[ExecutionTarget],
        state: SystemState,
        dropped: Dict[str, str],
        started: float,
        deadline_ms: Optional[float],
    ) -> Decision:
        now = datetime.utcnow()
        feasible, evaluations = self.policy.filter_targets(process, targets, now)
        for evaluation in evaluations:
            if not evaluation.allowed:
                rules = ", ".join(v.rule_id for v in evaluation.hard_violations)
                dropped[evaluation.target_id] = f"hard policy violation ({rules})"

        prediction = self._predict(state, started, deadline_ms)
        capacity = self.engine.capacity_needed(process, state, prediction)
        context = _context(process, state)
        weights = self.learner.weights
        self._decision_count += 1

        if not feasible:
            decision = Decision(
                id=f"dec_{uuid4().hex[:12]}",
                process_id=process.id,
                policy_evaluations=evaluations,
                dropped_targets=dropped,
                capacity_needed=capacity,
                prediction=prediction,
                effective_weights=weights.as_dict(),
                weights_version=weights.version,
                explanation=explain(None, [], dropped),
                context=context,
                created_at=now,
            )
            self._remember(decision)
            self._infeasible += 1
            raise NoFeasibleTarget(decision.explanation, decision=decision)

        strategy = self.bandit.select_strategy() if self.bandit else None
        effective = apply_strategy(weights.weights, weights.bounds, strategy)

        location = self._location_key(process)
        rl_state = discretize(location, process.data_size_mb, process.pipeline_stage, state.load_score())
        rl_action = self.rl.select_action(rl_state)
        pattern = self.learner.match_pattern(context)

        ranked = self.engine.rank(
            process, feasible, state, effective, capacity,
            evaluations={e.target_id: e for e in evaluations},
            pattern=pattern,
            rl_action=rl_action,
        )
        best = ranked[0]
        selected = next(t for t in feasible if t.id == best.target_id)
        action = action_for_target_type(selected.type)
        followed = pattern is not None and pattern.recommended_action == action

        decision = Decision(
            id=f"dec_{uuid4().hex[:12]}",
            process_id=process.id,
            selected_target_id=selected.id,
            selected_target_type=selected.type,
            action=action,
            scores=ranked,
            policy_evaluations=evaluations,
            dropped_targets=dropped,
            applied_pattern_id=pattern.id if followed else None,
            strategy=strategy,
            rl_action=rl_action,
            capacity_needed=capacity,
            prediction=prediction,
            effective_weights={k.value: v for k, v in effective.items()},
            weights_version=weights.version,
            confidence=decision_confidence(ranked, pattern, followed),
            explanation=explain(best, ranked, dropped, strategy, pattern if followed else None),
            context=context,
            created_at=now,
        )
        self._remember(decision)
        self._track_transition(decision, location, rl_state, action)
        return decision

    def _predict(
        self,
        state: SystemState,
        started: float,
        deadline_ms: Optional[float],
    ) -> PredictionSnapshot:
        deadline = deadline_ms if deadline_ms is not None else self.config.decision_deadline_ms
        if deadline is not None:
            remaining = deadline - (time.perf_counter() - started) * 1000.0
            if remaining < self._toolkit_ms or remaining <= 0:
                if self._last_prediction is not None:
                    self._cached += 1
                    logger.warning("Deadline leaves %.2fms; using cached prediction", remaining)
                    return self._last_prediction.model_copy(update={"source": "cached"})
                self._fallbacks += 1
                logger.warning("Deadline leaves %.2fms; no cached prediction, using base", remaining)
                return PredictionSnapshot(source="fallback")

        toolkit_started = time.perf_counter()
        load = state.compute_usage
        self.forecaster.add_observation(load)
        self._loads.append(load)
        change = self.detector.update(load)
        if change.is_anomaly:
            self._anomalies += 1
        forecast = None
        smoothed = None
        try:
            forecast = self.forecaster.predict()
        except InsufficientHistory:
            pass
        interval = None
        if forecast is not None:
            ratio = self.engine.forecast_ratio(forecast, load)
            self._ratios.append(ratio)
            smoothed = self.smoother.update(ratio)
            interval = self.smoother.confidence_interval()

        snapshot = PredictionSnapshot(
            forecast=forecast,
            smoothed=smoothed,
            smoothed_interval=interval,
            anomaly=change.is_anomaly,
            source="live",
        )
        cost = (time.perf_counter() - toolkit_started) * 1000.0
        if self._toolkit_ms == 0.0:
            self._toolkit_ms = cost
        else:
            self._toolkit_ms += TOOLKIT_COST_SMOOTHING * (cost - self._toolkit_ms)
        self._last_prediction = snapshot
        return snapshot

    def _location_key(self, process: Process) -> str:
        location = process.data_location or self.config.local_location
        return location.site

    def _remember(self, decision: Decision) -> None:
        self._decisions[decision.id] = decision
        while len(self._decisions) > self.config.audit_retention:
            self._decisions.popitem(last=False)

    def _track_transition(
        self,
        decision: Decision,
        location: str,
        state: RLState,
        action: PlacementAction,
    ) -> None:
        previous = self._last_on_location.get(location)
        if previous is not None and previous in self._pending:
            self._pending[previous].next_state = state
            self._complete_transition(previous)
        self._last_on_location[location] = decision.id
        self._pending[decision.id] = _Transition(state, action)
        while len(self._pending) > self.config.audit_retention:
            self._pending.popitem(last=False)

    def _complete_transition(self, decision_id: str) -> None:
        transition = self._pending.get(decision_id)
        if transition is None or not transition.complete:
            return
        self.rl.update(transition.state, transition.action, transition.reward, transition.next_state)
        del self._pending[decision_id]

    # --- Outcomes ---

    def report_outcome(self, outcome: Outcome) -> bool:
        """False when this decision's outcome was already learned from."""
        with self._lock:
            decision = self._decisions.get(outcome.decision_id)
            if decision is None:
                raise InvalidInput(f"unknown decision id {outcome.decision_id!r}")
            if decision.selected_target_id is None:
                raise InvalidInput(f"decision {decision.id!r} selected no target")
            if self.learner.has_processed(decision.id):
                self._duplicates += 1
                return False
            self.learner.record_outcome(decision, outcome)

            self._outcomes += 1
            if outcome.success:
                self._successes += 1
            reward = self.learner.reward_for(outcome)
            if self.bandit is not None and decision.strategy is not None:
                self.bandit.update_strategy(decision.strategy, outcome.success, reward / REWARD_BOUND)

            transition = self._pending.get(decision.id)
            if transition is not None:
                transition.reward = compute_reward(
                    outcome.cost, reward, outcome.sla_met, self.config.exploration.rl_sla_penalty,
                )
                self._complete_transition(decision.id)
            discover = self.learner.should_discover()

        if discover:
            self.adapt()
        return True

    # --- Adaptation ---

    def adapt(self) -> AdaptationReport:
        """Discover patterns from a history snapshot, then install the results."""
        with self._lock:
            history = self.learner.snapshot_history()
            ratios = list(self._ratios)
        result = self.learner.discover_patterns(history)
        alpha = optimal_alpha(ratios) if len(ratios) >= ALPHA_TUNING_MIN_RATIOS else None
        with self._lock:
            added = self.learner.install(result)
            active = len(self.learner.get_patterns())
            if alpha is not None:
                self.smoother.alpha = alpha
            smoothing_alpha = self.smoother.alpha
            motif = self.learner.match_motif()
        logger.info(
            "Adaptation pass: %d candidates, %d new patterns, %d motifs",
            len(result.patterns), added, len(result.motifs),
        )
        return AdaptationReport(
            candidates=len(result.patterns),
            added=added,
            motifs=len(result.motifs),
            active_patterns=active,
            smoothing_alpha=smoothing_alpha,
            motif_match=motif[0].id if motif else None,
            motif_similarity=motif[1] if motif else 0.0,
            ran_at=datetime.utcnow(),
        )

    def seconds_until_adaptation(self, now: Optional[datetime] = None) -> float:
        schedule = self.config.learner.adaptation_schedule
        if schedule is None:
            return float(self.config.learner.adaptation_interval_seconds)
        now = now or datetime.utcnow()
        upcoming = croniter(schedule, now).get_next(datetime)
        return max((upcoming - now).total_seconds(), 0.0)

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run adaptation passes on the configured schedule until stopped."""
        if stop_event is None:
            stop_event = asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self.seconds_until_adaptation(),
                )
            except asyncio.TimeoutError:
                await asyncio.to_thread(self.adapt)

    # --- Scaling ---

    def decide_scaling(
        self,
        executor_type: str,
        queued: List[QueuedProcess],
        executors: List[ExecutorSpec],
        running: Mapping[str, int],
        state: SystemState,
    ) -> ScalingAction:
        with self._lock:
            return self.scaling.decide(
                executor_type, queued, executors, running, state, self.learner.weights.weights,
            )

    # --- Introspection ---

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        with self._lock:
            return self._decisions.get(decision_id)

    def get_weights(self) -> WeightVector:
        with self._lock:
            return self.learner.weights

    def get_patterns(self) -> List[DiscoveredPattern]:
        with self._lock:
            return [p.model_copy() for p in self.learner.get_patterns()]

    def audit_log(self, limit: Optional[int] = None) -> List[PolicyAuditEntry]:
        with self._lock:
            return self.policy.get_audit_log(limit)

    def rl_policy(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return self.rl.export_policy()

    def get_stats(self) -> KernelStats:
        with self._lock:
            weights = self.learner.weights
            patterns = self.learner.get_patterns()
            latencies = np.fromiter(self._latencies, dtype=float)
            return KernelStats(
                decisions=self._decision_count,
                infeasible_decisions=self._infeasible,
                outcomes=self._outcomes,
                duplicate_outcomes=self._duplicates,
                success_rate=self._successes / self._outcomes if self._outcomes else 0.0,
                weights=weights.as_dict(),
                weights_version=weights.version,
                stability=self.learner.stability(),
                converged=self.learner.converged(),
                rejected_updates=self.learner.rejected_updates,
                patterns_total=len(patterns),
                patterns_validated=sum(1 for p in patterns if p.status == PatternStatus.VALIDATED),
                motifs=len(self.learner.get_motifs()),
                discovery_runs=self.learner.discovery_runs,
                anomalies=self._anomalies,
                cached_predictions=self._cached,
                fallback_predictions=self._fallbacks,
                bandit=self.bandit.stats() if self.bandit else [],
                bandit_convergence=self.bandit.convergence() if self.bandit else {},
                rl=self.rl.stats(),
                optimizer=self.learner.optimizer_stats(),
                smoothing_alpha=self.smoother.alpha,
                change_likelihood=self.detector.change_point_likelihood(list(self._loads)),
                policy=self.policy.get_stats(),
                latency_p50_ms=float(np.percentile(latencies, 50)) if len(latencies) else 0.0,
                latency_p95_ms=float(np.percentile(latencies, 95)) if len(latencies) else 0.0,
            )


def _context(process: Process, state: SystemState) -> DecisionContext:
    return DecisionContext(
        queue_depth=state.queue_depth,
        compute_usage=state.compute_usage,
        memory_usage=state.memory_usage,
        load_score=state.load_score(),
        priority=process.priority,
        process_type=process.type,
        data_size_mb=process.data_size_mb,
        real_time=process.real_time,
        pipeline_stage=process.pipeline_stage,
        time_slot=state.time_slot,
    )
