"""
Cost models — one callable per ObjectiveKind.

Each model maps CostInputs to a non-negative cost (or, for benefit metrics
such as throughput, a non-negative benefit that the objective list marks as
maximised). A cost-model set must cover every kind in the objective list;
the decision engine checks this at construction.
"""

import math
from typing import Callable, Dict, Optional

from placement_kernel.models.config import CostModelConfig, ProximityClass
from placement_kernel.models.process import Process
from placement_kernel.models.scaling import ExecutorSpec
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget, TargetType
from placement_kernel.models.weights import ObjectiveKind


class CostInputs:
    """Everything a cost model may look at for one (process, target) pair."""

    def __init__(
        self,
        process: Process,
        target: ExecutionTarget,
        state: SystemState,
        capacity_needed: float,
        proximity: ProximityClass,
        gravity: float,
        soft_penalty: float,
        config: CostModelConfig,
        executor: Optional[ExecutorSpec] = None,
        demand: float = 0.0,
        transfer_penalty: float = 0.0,
    ):
        self.process = process
        self.target = target
        self.state = state
        self.capacity_needed = capacity_needed
        self.proximity = proximity
        self.gravity = gravity
        self.soft_penalty = soft_penalty
        self.config = config
        self.executor = executor
        self.demand = demand
        self.transfer_penalty = transfer_penalty

    @property
    def is_local(self) -> bool:
        return self.target.type == TargetType.LOCAL

    @property
    def utilization(self) -> float:
        if self.is_local:
            return self.state.compute_usage
        return max(self.target.current_load, self.target.utilization())


CostModel = Callable[[CostInputs], float]


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def queue_depth_cost(ci: CostInputs) -> float:
    """Keeping work local under pressure is costly; remote targets cost their own wait."""
    relief_need = _sigmoid(8.0 * (ci.state.queue_pressure() - 0.5))
    if ci.is_local:
        return relief_need
    remote_wait = min(ci.target.estimated_wait_seconds / 60.0, 1.0)
    return 0.5 * (1.0 - relief_need) + 0.5 * remote_wait


def processor_load_cost(ci: CostInputs) -> float:
    hours = ci.target.estimate_execution_seconds(ci.process) / 3600.0
    return (
        ci.capacity_needed * (1.0 + ci.utilization) * ci.config.compute_unit_cost
        / ci.target.processing_speed
        + ci.target.compute_cost_per_hour * hours
    )


def network_cost(ci: CostInputs) -> float:
    """
    Transfer priced by location-pair class plus the gravity transfer penalty,
    and downstream pipeline movement.
    """
    data_gb = ci.process.data_size_mb / 1024.0
    cost = data_gb * ci.config.transfer_cost_per_gb[ci.proximity]
    cost += ci.transfer_penalty
    if not ci.is_local:
        cost += ci.target.network_cost_per_mb * ci.process.data_size_mb
    if ci.process.pipeline is not None:
        remaining = len(ci.process.pipeline.remaining_stages())
        cost += ci.config.downstream_stage_factor * remaining * (1.0 - ci.gravity)
    return cost


def latency_cost(ci: CostInputs) -> float:
    """Completion estimate relative to the process's own estimated duration."""
    seconds = ci.target.estimate_execution_seconds(ci.process)
    seconds += ci.config.base_latency_ms * (1.0 + ci.utilization) / 1000.0
    if ci.is_local:
        seconds += ci.state.queue_wait_seconds
    return seconds / max(ci.process.estimated_duration_seconds, 1.0)


def energy_cost(ci: CostInputs) -> float:
    hours = ci.target.estimate_execution_seconds(ci.process) / 3600.0
    return ci.target.energy_cost_per_hour * hours * max(ci.capacity_needed, 1e-3)


def policy_cost(ci: CostInputs) -> float:
    return min(ci.soft_penalty, 1.0)


def throughput_benefit(ci: CostInputs) -> float:
    return ci.target.processing_speed * (1.0 - ci.utilization)


PLACEMENT_COST_MODELS: Dict[ObjectiveKind, CostModel] = {
    ObjectiveKind.QUEUE_DEPTH: queue_depth_cost,
    ObjectiveKind.PROCESSOR_LOAD: processor_load_cost,
    ObjectiveKind.NETWORK_COST: network_cost,
    ObjectiveKind.LATENCY_COST: latency_cost,
    ObjectiveKind.ENERGY_COST: energy_cost,
    ObjectiveKind.POLICY_COST: policy_cost,
    ObjectiveKind.THROUGHPUT: throughput_benefit,
}


# --- Scaling variants: candidates are executor specs, not single processes ---

def _instances_needed(ci: CostInputs) -> int:
    return max(1, math.ceil(ci.demand / ci.executor.tasks_per_minute))


def scaling_queue_cost(ci: CostInputs) -> float:
    """Backlog that accumulates while new instances start."""
    return ci.executor.startup_seconds / 60.0 * ci.state.queue_pressure()


def scaling_processor_cost(ci: CostInputs) -> float:
    return (
        _instances_needed(ci) * ci.executor.cost_per_hour * ci.config.compute_unit_cost
        * (1.0 + ci.utilization)
    )


def scaling_throughput_benefit(ci: CostInputs) -> float:
    return ci.executor.tasks_per_minute / ci.config.baseline_throughput * (1.0 - ci.utilization)


SCALING_COST_MODELS: Dict[ObjectiveKind, CostModel] = {
    **PLACEMENT_COST_MODELS,
    ObjectiveKind.QUEUE_DEPTH: scaling_queue_cost,
    ObjectiveKind.PROCESSOR_LOAD: scaling_processor_cost,
    ObjectiveKind.THROUGHPUT: scaling_throughput_benefit,
}
