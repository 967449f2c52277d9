"""
Adaptive Learner — online weight adaptation and pattern discovery.

Behavioral Contract:
- Each decision's outcome is learned from at most once
- Gradient g_k = -reward * attribution_k; the optimizer step is projected
  back onto the bounds and renormalised
- A projected vector that still breaks the sum or bound invariant is
  rejected: the previous vector stays, the rejection is counted and logged
- Patterns are only ever promoted from enough supporting history, and are
  deprecated when their applications stop succeeding
- Discovery is a pure computation over a history snapshot; installing its
  results is a separate step
"""

import logging
from collections import OrderedDict, deque
from datetime import datetime
from itertools import product
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple
from uuid import uuid4

import numpy as np
from pydantic import BaseModel

from placement_kernel.models.config import LearnerConfig
from placement_kernel.models.decision import Decision, DecisionContext, PlacementAction
from placement_kernel.models.learning import (
    ConditionOperator,
    DiscoveredPattern,
    PatternCondition,
    PatternStatus,
)
from placement_kernel.models.outcome import REWARD_BOUND, Outcome
from placement_kernel.models.weights import ObjectiveKind, WeightVector, project_to_bounds
from placement_kernel.predictors.bandit import reward_from_measurements
from placement_kernel.predictors.gradient import GradientOptimizer
from placement_kernel.predictors.sequence_matcher import SequenceMatcher, SequencePattern

logger = logging.getLogger(__name__)

DEPRECATION_MIN_APPLICATIONS = 5
MOTIF_MIN_LEN = 3
MOTIF_MAX_LEN = 8


class LearningSample(BaseModel):
    """One (decision, outcome) pair as the learner remembers it."""

    decision_id: str
    context: DecisionContext
    action: PlacementAction
    selected_score: float
    success: bool
    reward: float
    recorded_at: datetime


class DiscoveryResult(BaseModel):
    patterns: List[DiscoveredPattern] = []
    motifs: List[SequencePattern] = []


Condition = Tuple[str, float]              # (context field, threshold it exceeds)


class AdaptiveLearner:
    def __init__(
        self,
        config: LearnerConfig,
        weights: WeightVector,
        sequence_matcher: Optional[SequenceMatcher] = None,
        processed_retention: Optional[int] = None,
    ):
        self.config = config
        self._weights = weights
        self.optimizer = GradientOptimizer(
            config.learning_rate,
            momentum=config.momentum,
            weight_decay=config.weight_decay,
            adaptive=config.adaptive_rate,
        )
        self.matcher = sequence_matcher or SequenceMatcher()
        self._history: deque = deque(maxlen=config.history_size)
        self._processed: "OrderedDict[str, None]" = OrderedDict()
        self._processed_retention = processed_retention
        self._changes: deque = deque(maxlen=config.stability_window)
        self._patterns: Dict[str, DiscoveredPattern] = {}
        self._motifs: List[SequencePattern] = []
        self.updates = 0
        self.rejected_updates = 0
        self.outcomes_since_discovery = 0
        self.discovery_runs = 0

    @property
    def weights(self) -> WeightVector:
        return self._weights

    # --- Outcomes ---

    def has_processed(self, decision_id: str) -> bool:
        return decision_id in self._processed

    def _remember_processed(self, decision_id: str) -> None:
        self._processed[decision_id] = None
        if self._processed_retention is not None:
            while len(self._processed) > self._processed_retention:
                self._processed.popitem(last=False)

    def reward_for(self, outcome: Outcome) -> float:
        if outcome.reward is not None:
            return outcome.reward
        score = reward_from_measurements(
            outcome.sla_met,
            outcome.within_budget(),
            outcome.throughput_ratio(),
            outcome.energy_efficiency,
        )
        return score * REWARD_BOUND

    def attribution_for(self, decision: Decision, outcome: Outcome) -> Dict[ObjectiveKind, float]:
        """
        The outcome's own attribution when supplied; otherwise each objective's
        share of the selected target's weighted cost.
        """
        kinds = self._weights.kinds
        if outcome.attribution:
            return {k: float(outcome.attribution.get(k, 0.0)) for k in kinds}

        score = decision.score_for(decision.selected_target_id) if decision.selected_target_id else None
        contributions = {}
        for kind in kinds:
            weight = decision.effective_weights.get(kind.value, self._weights.get(kind))
            cost = score.components.get(kind.value, 0.0) if score else 0.0
            contributions[kind] = abs(weight * cost)
        total = sum(contributions.values())
        if total <= 0:
            return {k: 1.0 / len(kinds) for k in kinds}
        return {k: v / total for k, v in contributions.items()}

    def record_outcome(self, decision: Decision, outcome: Outcome) -> bool:
        """Learn from one outcome. False when this decision was already learned from."""
        if decision.id in self._processed:
            return False
        self._remember_processed(decision.id)

        reward = self.reward_for(outcome)
        attribution = self.attribution_for(decision, outcome)
        self._update_weights(attribution, reward)

        success = outcome.success and reward >= self.config.pattern_reward_threshold
        if decision.applied_pattern_id:
            self._record_application(decision.applied_pattern_id, success)

        if decision.context is not None and decision.action is not None:
            selected = decision.score_for(decision.selected_target_id)
            self._history.append(LearningSample(
                decision_id=decision.id,
                context=decision.context,
                action=decision.action,
                selected_score=selected.final_score if selected else 0.0,
                success=success,
                reward=reward,
                recorded_at=outcome.reported_at,
            ))
        self.outcomes_since_discovery += 1
        return True

    def _update_weights(self, attribution: Dict[ObjectiveKind, float], reward: float) -> bool:
        kinds = self._weights.kinds
        params = np.array([self._weights.get(k) for k in kinds])
        gradient = np.array([-reward * attribution.get(k, 0.0) for k in kinds])
        if not np.all(np.isfinite(gradient)):
            # Stepping would also poison the optimizer's momentum state
            self.rejected_updates += 1
            logger.warning("Rejected weight update: non-finite gradient %s", gradient)
            return False
        stepped = self.optimizer.update(params, gradient, loss=-reward)

        projected = project_to_bounds(
            {k: float(v) for k, v in zip(kinds, stepped)}, self._weights.bounds
        )
        candidate = self._weights.with_weights(projected)
        problems = candidate.violations()
        if problems:
            self.rejected_updates += 1
            logger.warning("Rejected weight update: %s", "; ".join(problems))
            return False

        change = max(abs(candidate.get(k) - self._weights.get(k)) for k in kinds)
        self._changes.append(change)
        self._weights = candidate
        self.updates += 1
        return True

    def _record_application(self, pattern_id: str, success: bool) -> None:
        pattern = self._patterns.get(pattern_id)
        if pattern is None:
            return
        pattern.applications += 1
        if success:
            pattern.successes += 1
        pattern.last_updated = datetime.utcnow()
        rate = pattern.applied_success_rate
        if (
            pattern.applications > DEPRECATION_MIN_APPLICATIONS
            and rate < self.config.pattern_deprecate_threshold
        ):
            if pattern.status != PatternStatus.DEPRECATED:
                logger.info("Deprecated pattern %s (success %.2f)", pattern.id, rate)
            pattern.status = PatternStatus.DEPRECATED
        elif (
            pattern.applications >= self.config.pattern_min_samples
            and rate > self.config.pattern_success_threshold
            and pattern.status != PatternStatus.VALIDATED
        ):
            pattern.status = PatternStatus.VALIDATED
            logger.info("Validated pattern %s (success %.2f)", pattern.id, rate)

    # --- Stability ---

    def stability(self) -> float:
        """Largest single-coordinate weight change over the recent window."""
        return max(self._changes) if self._changes else 0.0

    def converged(self) -> bool:
        return bool(self._changes) and self.stability() < self.config.stability_epsilon

    def optimizer_stats(self) -> Dict[str, float]:
        losses = self.optimizer.loss_history
        return {
            "steps": float(self.optimizer.steps),
            "converged": float(self.optimizer.converged),
            "average_gradient_norm": self.optimizer.average_gradient_norm,
            "best_loss": self.optimizer.best_loss if self.optimizer.steps else 0.0,
            "last_loss": losses[-1] if losses else 0.0,
        }

    # --- Patterns ---

    def should_discover(self) -> bool:
        return self.outcomes_since_discovery >= self.config.discovery_interval_decisions

    def snapshot_history(self) -> List[LearningSample]:
        return list(self._history)

    def match_pattern(self, context: DecisionContext) -> Optional[DiscoveredPattern]:
        """The most confident validated pattern whose conditions hold."""
        candidates = [
            p for p in self._patterns.values()
            if p.status == PatternStatus.VALIDATED and p.matches(context)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda p: (-p.confidence, -p.success_rate, p.id))

    def context_items(self, context: DecisionContext) -> FrozenSet[Condition]:
        """Every (field, threshold) the context exceeds."""
        items = set()
        for name, thresholds in self._features():
            value = getattr(context, name)
            items.update((name, t) for t in thresholds if value > t)
        return frozenset(items)

    def _features(self) -> List[Tuple[str, List[float]]]:
        return [
            ("queue_depth", sorted(self.config.queue_depth_thresholds)),
            ("compute_usage", sorted(self.config.compute_usage_thresholds)),
            ("memory_usage", sorted(self.config.memory_usage_thresholds)),
        ]

    def _candidate_conditions(self) -> List[FrozenSet[Condition]]:
        """Non-empty condition sets with at most one threshold per field."""
        choices = [
            [None] + [(name, t) for t in thresholds] for name, thresholds in self._features()
        ]
        candidates = []
        for combo in product(*choices):
            chosen = frozenset(c for c in combo if c is not None)
            if chosen:
                candidates.append(chosen)
        return candidates

    def _mine_closures(
        self, members: Sequence[Tuple[FrozenSet[Condition], bool]]
    ) -> Dict[FrozenSet[Condition], Tuple[int, int]]:
        """
        Closed condition sets with enough support and a high enough success rate,
        as closure -> (supporting samples, successes). A closure is the
        intersection of the items of every sample that satisfies a candidate
        set, so unrelated features and threshold crossings beyond the shared
        ones drop out.
        """
        qualifying: Dict[FrozenSet[Condition], Tuple[int, int]] = {}
        for candidate in self._candidate_conditions():
            support = [(items, ok) for items, ok in members if candidate <= items]
            count = len(support)
            if count < self.config.pattern_min_samples:
                continue
            closure = frozenset.intersection(*(items for items, _ in support))
            if closure in qualifying:
                continue
            successes = sum(1 for _, ok in support if ok)
            if successes / count < self.config.pattern_success_threshold:
                continue
            qualifying[closure] = (count, successes)
        # Most general only: a closure implied by a smaller qualifying one adds nothing
        return {
            closure: counts for closure, counts in qualifying.items()
            if not any(other < closure for other in qualifying)
        }

    def discover_patterns(self, history: Optional[List[LearningSample]] = None) -> DiscoveryResult:
        """
        Mine threshold conditions per action; promote the most general
        condition sets with enough samples and a high success rate. Also mine
        the selected-score series for recurring motifs.
        """
        samples = self.snapshot_history() if history is None else history
        now = datetime.utcnow()

        by_action: Dict[PlacementAction, List[Tuple[FrozenSet[Condition], bool]]] = {}
        for sample in samples:
            items = self.context_items(sample.context)
            if items:
                by_action.setdefault(sample.action, []).append((items, sample.success))

        mined = []
        for action, members in by_action.items():
            for closure, (count, successes) in self._mine_closures(members).items():
                levels: Dict[str, float] = {}
                for name, threshold in closure:
                    levels[name] = max(threshold, levels.get(name, threshold))
                mined.append((action, levels, count, successes))

        patterns = []
        for action, levels, count, successes in sorted(
            mined, key=lambda m: (-m[2], m[0].value, sorted(m[1].items()))
        ):
            rate = successes / count
            patterns.append(DiscoveredPattern(
                id=f"pat_{uuid4().hex[:12]}",
                conditions=[
                    PatternCondition(field=name, operator=ConditionOperator.GT, value=level)
                    for name, level in sorted(levels.items())
                ],
                recommended_action=action,
                confidence=rate * min(1.0, count / (2.0 * self.config.pattern_min_samples)),
                success_rate=rate,
                sample_count=count,
                status=PatternStatus.VALIDATED,
                source="context",
                discovered_at=now,
                last_updated=now,
            ))

        motifs: List[SequencePattern] = []
        series = [s.selected_score for s in samples]
        if len(series) >= 2 * MOTIF_MIN_LEN:
            motifs = self.matcher.discover_patterns(series, MOTIF_MIN_LEN, MOTIF_MAX_LEN)

        return DiscoveryResult(patterns=patterns, motifs=motifs)

    def install(self, result: DiscoveryResult) -> int:
        """Merge discovered patterns by signature, then prune. Returns new-pattern count."""
        by_signature = {p.signature(): p for p in self._patterns.values()}
        added = 0
        for pattern in result.patterns:
            existing = by_signature.get(pattern.signature())
            if existing is not None:
                if existing.status == PatternStatus.DEPRECATED:
                    continue
                existing.sample_count = pattern.sample_count
                existing.success_rate = pattern.success_rate
                existing.confidence = pattern.confidence
                existing.last_updated = pattern.last_updated
                continue
            self._patterns[pattern.id] = pattern
            by_signature[pattern.signature()] = pattern
            added += 1
            logger.info("Promoted pattern %s: %s", pattern.id, pattern.signature())

        for motif in result.motifs:
            self.matcher.add_pattern(motif)
        self._motifs = self.matcher.get_patterns()

        self._prune()
        self.outcomes_since_discovery = 0
        self.discovery_runs += 1
        return added

    def _prune(self) -> None:
        active = [p for p in self._patterns.values() if p.status != PatternStatus.DEPRECATED]
        active.sort(key=lambda p: (
            p.status != PatternStatus.VALIDATED,
            -p.success_rate,
            -p.last_updated.timestamp(),
        ))
        self._patterns = {p.id: p for p in active[: self.config.max_patterns]}

    def get_patterns(self) -> List[DiscoveredPattern]:
        return sorted(self._patterns.values(), key=lambda p: (-p.confidence, p.id))

    def get_motifs(self) -> List[SequencePattern]:
        return list(self._motifs)

    def match_motif(self) -> Optional[Tuple[SequencePattern, float]]:
        """The stored motif closest to the most recent selected scores, if any."""
        recent = [s.selected_score for s in list(self._history)[-MOTIF_MAX_LEN:]]
        if len(recent) < MOTIF_MIN_LEN:
            return None
        return self.matcher.find_best_match(recent)
