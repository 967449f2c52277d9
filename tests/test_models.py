"""Tests for data models and configuration validation."""

import pytest
from pydantic import ValidationError

from placement_kernel.errors import ConfigurationInvalid
from placement_kernel.models.config import ProximityClass, load_config
from placement_kernel.models.decision import (
    Decision,
    DecisionContext,
    PlacementAction,
    action_for_target_type,
)
from placement_kernel.models.learning import ConditionOperator, PatternCondition
from placement_kernel.models.outcome import Outcome
from placement_kernel.models.process import PipelineContext, PipelineStage, Process
from placement_kernel.models.state import SystemState
from placement_kernel.models.target import ExecutionTarget, Location, TargetType
from placement_kernel.models.weights import (
    ObjectiveKind,
    ObjectiveSpec,
    WeightVector,
    project_to_bounds,
    weight_violations,
)


LOCAL_SITE = {"site": "local", "region": "eu-west", "provider": "onprem"}

OBJECTIVES = [
    {"kind": "queue_depth", "weight": 0.25},
    {"kind": "processor_load", "weight": 0.2},
    {"kind": "network_cost", "weight": 0.2},
    {"kind": "latency_cost", "weight": 0.15},
    {"kind": "energy_cost", "weight": 0.1},
    {"kind": "policy_cost", "weight": 0.1},
]


def _make_cost_model(**overrides) -> dict:
    data = {
        "transfer_cost_per_gb": {
            "same_location": 0.0,
            "same_region": 0.01,
            "adjacent_region": 0.02,
            "same_provider": 0.05,
            "different_provider": 0.09,
        },
        "gravity": {
            "same_location": 1.0,
            "same_region": 0.7,
            "adjacent_region": 0.4,
            "same_provider": 0.25,
            "different_provider": 0.1,
        },
        "gravity_factor": 1.0,
        "adjacent_regions": [["eu-west", "eu-central"]],
        "compute_unit_cost": 0.1,
        "base_latency_ms": 10.0,
        "baseline_throughput": 10.0,
        "anomaly_capacity_multiplier": 1.2,
        "forecast_adjustment": 0.5,
        "downstream_stage_factor": 0.1,
        "soft_penalty_scale": 0.5,
        "pattern_bonus": 0.2,
        "rl_bonus": 0.0,
    }
    data.update(overrides)
    return data


def _make_config_data(**overrides) -> dict:
    data = {
        "objectives": [dict(o) for o in OBJECTIVES],
        "cost_model": _make_cost_model(),
        "learner": {"learning_rate": 0.01},
        "local_location": dict(LOCAL_SITE),
        "seed": 42,
    }
    data.update(overrides)
    return data


def _make_target(
    target_id: str,
    target_type: TargetType = TargetType.LOCAL,
    site: str = "local",
    region: str = "eu-west",
    provider: str = "onprem",
    **kwargs,
) -> ExecutionTarget:
    data = {
        "id": target_id,
        "type": target_type,
        "location": Location(site=site, region=region, provider=provider),
        "total_capacity": 16.0,
        "available_capacity": 12.0,
        "memory_total_mb": 32768.0,
        "memory_available_mb": 16384.0,
        "security_level": 3,
    }
    data.update(kwargs)
    return ExecutionTarget(**data)


def _make_process(process_id: str = "proc-1", **kwargs) -> Process:
    data = {"id": process_id, "input_size_mb": 100.0}
    data.update(kwargs)
    return Process(**data)


def _make_state(**kwargs) -> SystemState:
    data = {"queue_depth": 5, "compute_usage": 0.3, "memory_usage": 0.3}
    data.update(kwargs)
    return SystemState(**data)


def _make_context(**kwargs) -> DecisionContext:
    data = {
        "queue_depth": 35,
        "compute_usage": 0.85,
        "memory_usage": 0.4,
        "load_score": 0.6,
        "priority": 5,
        "process_type": "compute",
        "data_size_mb": 100.0,
    }
    data.update(kwargs)
    return DecisionContext(**data)


class TestProcess:
    def test_valid_process_has_no_errors(self):
        assert _make_process().validation_errors() == []

    def test_self_dependency(self):
        process = _make_process(dependencies=["proc-1"])
        assert "process cannot depend on itself" in process.validation_errors()

    def test_deadline_shorter_than_duration(self):
        process = _make_process(estimated_duration_seconds=120, deadline_seconds=60)
        assert any("deadline" in e for e in process.validation_errors())

    def test_pipeline_stage_out_of_range(self):
        pipeline = PipelineContext(
            dag_id="dag-1",
            stages=[PipelineStage(id="s1", name="extract")],
            current_stage=3,
        )
        process = _make_process(pipeline=pipeline)
        assert any("pipeline stage" in e for e in process.validation_errors())

    def test_data_size_sums_input_and_output(self):
        process = _make_process(input_size_mb=100, output_size_mb=50)
        assert process.data_size_mb == 150

    def test_priority_bounds_enforced(self):
        with pytest.raises(ValidationError):
            _make_process(priority=11)

    def test_process_is_frozen(self):
        process = _make_process()
        with pytest.raises(ValidationError):
            process.priority = 9


class TestExecutionTarget:
    def test_available_exceeding_total_is_invalid(self):
        target = _make_target("t1", total_capacity=4, available_capacity=8)
        assert target.validation_errors()

    def test_can_accommodate(self):
        target = _make_target("t1", available_capacity=2, memory_available_mb=1024)
        assert target.can_accommodate(_make_process(cpu_requirement=1, memory_requirement_mb=512))
        assert not target.can_accommodate(_make_process(cpu_requirement=4))

    def test_remote_estimate_includes_transfer(self):
        local = _make_target("local")
        edge = _make_target("edge", TargetType.EDGE, network_bandwidth_mbps=100)
        process = _make_process(input_size_mb=200, estimated_duration_seconds=60)
        assert local.estimate_execution_seconds(process) == pytest.approx(60.0)
        assert edge.estimate_execution_seconds(process) == pytest.approx(62.0)

    def test_action_for_target_type(self):
        assert action_for_target_type(TargetType.LOCAL) == PlacementAction.STAY
        assert action_for_target_type(TargetType.FOG) == PlacementAction.MOVE_TO_EDGE
        assert action_for_target_type(TargetType.PUBLIC_CLOUD) == PlacementAction.MOVE_TO_CLOUD
        assert action_for_target_type(TargetType.HPC_CLUSTER) == PlacementAction.MOVE_TO_HPC


class TestSystemState:
    def test_queue_pressure_capped(self):
        assert _make_state(queue_depth=10, queue_threshold=20).queue_pressure() == 0.5
        assert _make_state(queue_depth=100, queue_threshold=20).queue_pressure() == 1.0

    def test_high_load(self):
        assert _make_state(compute_usage=0.9).is_high_load()
        assert not _make_state().is_high_load()


class TestWeightVector:
    def _bounds(self):
        return {
            ObjectiveKind.QUEUE_DEPTH: (0.1, 0.6),
            ObjectiveKind.NETWORK_COST: (0.1, 0.6),
            ObjectiveKind.LATENCY_COST: (0.1, 0.6),
        }

    def test_from_objectives(self):
        vector = WeightVector.from_objectives([
            ObjectiveSpec(kind=ObjectiveKind.QUEUE_DEPTH, weight=0.6, max_weight=0.8),
            ObjectiveSpec(kind=ObjectiveKind.NETWORK_COST, weight=0.4),
        ])
        assert vector.is_valid()
        assert vector.bounds[ObjectiveKind.QUEUE_DEPTH] == (0.0, 0.8)

    def test_violations_report_sum(self):
        problems = weight_violations(
            {ObjectiveKind.QUEUE_DEPTH: 0.5, ObjectiveKind.NETWORK_COST: 0.3}, {}
        )
        assert any("sum" in p for p in problems)

    def test_violations_report_non_finite(self):
        problems = weight_violations(
            {ObjectiveKind.QUEUE_DEPTH: float("nan"), ObjectiveKind.NETWORK_COST: 0.5}, {}
        )
        assert problems == ["queue_depth is not finite"]

    def test_projection_restores_invariants(self):
        weights = {
            ObjectiveKind.QUEUE_DEPTH: 0.9,
            ObjectiveKind.NETWORK_COST: 0.05,
            ObjectiveKind.LATENCY_COST: 0.2,
        }
        projected = project_to_bounds(weights, self._bounds())
        assert sum(projected.values()) == pytest.approx(1.0)
        assert weight_violations(projected, self._bounds()) == []
        assert projected[ObjectiveKind.QUEUE_DEPTH] == pytest.approx(0.6)

    def test_projection_raises_deficit(self):
        weights = {k: 0.2 for k in self._bounds()}
        projected = project_to_bounds(weights, self._bounds())
        assert sum(projected.values()) == pytest.approx(1.0)

    def test_with_weights_bumps_version(self):
        vector = WeightVector(
            weights={ObjectiveKind.QUEUE_DEPTH: 1.0},
            bounds={ObjectiveKind.QUEUE_DEPTH: (0.0, 1.0)},
        )
        assert vector.with_weights({ObjectiveKind.QUEUE_DEPTH: 1.0}).version == 1


class TestConfiguration:
    def test_valid_config_loads(self):
        config = load_config(_make_config_data())
        assert len(config.objectives) == 6
        assert config.cost_model.gravity[ProximityClass.SAME_LOCATION] == 1.0

    def test_weights_must_sum_to_one(self):
        data = _make_config_data()
        data["objectives"][0]["weight"] = 0.5
        with pytest.raises(ConfigurationInvalid, match="sum"):
            load_config(data)

    def test_duplicate_objective_kinds(self):
        data = _make_config_data(objectives=[
            {"kind": "queue_depth", "weight": 0.5},
            {"kind": "queue_depth", "weight": 0.5},
        ])
        with pytest.raises(ConfigurationInvalid, match="duplicate"):
            load_config(data)

    def test_infeasible_lower_bounds(self):
        data = _make_config_data(objectives=[
            {"kind": "queue_depth", "weight": 0.5, "min_weight": 0.5},
            {"kind": "network_cost", "weight": 0.5, "min_weight": 0.5},
            {"kind": "latency_cost", "weight": 0.0, "min_weight": 0.0},
        ])
        load_config(data)
        data["objectives"][2]["min_weight"] = 0.2
        data["objectives"][2]["weight"] = 0.2
        with pytest.raises(ConfigurationInvalid):
            load_config(data)

    def test_missing_proximity_class(self):
        cost_model = _make_cost_model()
        del cost_model["gravity"]["adjacent_region"]
        with pytest.raises(ConfigurationInvalid, match="adjacent_region"):
            load_config(_make_config_data(cost_model=cost_model))

    def test_cost_parameters_are_required(self):
        cost_model = _make_cost_model()
        del cost_model["compute_unit_cost"]
        with pytest.raises(ConfigurationInvalid):
            load_config(_make_config_data(cost_model=cost_model))

    def test_learning_rate_required_and_positive(self):
        with pytest.raises(ConfigurationInvalid):
            load_config(_make_config_data(learner={}))
        with pytest.raises(ConfigurationInvalid):
            load_config(_make_config_data(learner={"learning_rate": 0.0}))

    def test_invalid_adaptation_schedule(self):
        data = _make_config_data(learner={"learning_rate": 0.01, "adaptation_schedule": "not cron"})
        with pytest.raises(ConfigurationInvalid, match="schedule"):
            load_config(data)

    def test_non_mapping_rejected(self):
        with pytest.raises(ConfigurationInvalid):
            load_config(["objectives"])

    def test_existing_config_round_trips(self):
        config = load_config(_make_config_data())
        assert load_config(config) == config


class TestLearningModels:
    def test_condition_matches(self):
        condition = PatternCondition(field="queue_depth", operator=ConditionOperator.GT, value=30)
        assert condition.matches(_make_context(queue_depth=31))
        assert not condition.matches(_make_context(queue_depth=30))

    def test_condition_on_unknown_field(self):
        condition = PatternCondition(field="nope", operator=ConditionOperator.EQ, value=1)
        assert not condition.matches(_make_context())


class TestOutcome:
    def test_throughput_ratio(self):
        outcome = Outcome(
            decision_id="d1", success=True, duration_seconds=30, expected_duration_seconds=60,
        )
        assert outcome.throughput_ratio() == 2.0

    def test_reward_bounded(self):
        with pytest.raises(ValidationError):
            Outcome(decision_id="d1", success=True, reward=6.0)

    def test_within_budget(self):
        assert Outcome(decision_id="d1", success=True, cost=5, budget=10).within_budget()
        assert not Outcome(decision_id="d1", success=True, cost=15, budget=10).within_budget()

    @pytest.mark.parametrize("share", [float("nan"), float("inf")])
    def test_attribution_must_be_finite(self, share):
        with pytest.raises(ValidationError, match="not finite"):
            Outcome(
                decision_id="d1", success=True,
                attribution={ObjectiveKind.QUEUE_DEPTH: share, ObjectiveKind.NETWORK_COST: 0.5},
            )


class TestDecision:
    def test_decision_is_frozen(self):
        from datetime import datetime

        decision = Decision(id="d1", process_id="p1", created_at=datetime.utcnow())
        with pytest.raises(ValidationError):
            decision.confidence = 1.0
