"""Tests for the FastAPI API endpoints."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from placement_kernel.api.app import create_app
from placement_kernel.errors import ConfigurationInvalid
from placement_kernel.models.target import ExecutionTarget, Location, TargetType


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


def _make_fleet():
    """A local node, an edge node in-region, and clouds of decreasing proximity."""
    return [
        _make_target("local-1"),
        _make_target("edge-1", TargetType.EDGE, site="edge-a", network_latency_ms=5.0),
        _make_target(
            "cloud-private", TargetType.PRIVATE_CLOUD, site="dc-2", region="eu-central",
            provider="onprem", network_latency_ms=20.0, processing_speed=2.0,
        ),
        _make_target(
            "cloud-public", TargetType.PUBLIC_CLOUD, site="aws-1", region="us-east",
            provider="aws", network_latency_ms=80.0, processing_speed=3.0,
            total_capacity=64.0, available_capacity=60.0,
        ),
    ]


@pytest.fixture
def client():
    """Create a test client with a fresh orchestrator."""
    return TestClient(create_app(config=_make_config_data()))


def _fleet_json():
    return [t.model_dump(mode="json") for t in _make_fleet()]


def _decide(client, process=None, targets=None):
    return client.post("/decisions", json={
        "process": process or {"id": "proc-1", "input_size_mb": 100.0},
        "targets": targets if targets is not None else _fleet_json(),
        "state": {"queue_depth": 5, "compute_usage": 0.3, "memory_usage": 0.3},
    })


class TestDecisionEndpoints:
    def test_create_decision(self, client):
        response = _decide(client)
        assert response.status_code == 200
        data = response.json()
        assert data["id"].startswith("dec_")
        assert data["selected_target_id"] in {t.id for t in _make_fleet()}
        assert data["scores"]

    def test_get_decision(self, client):
        decision_id = _decide(client).json()["id"]
        response = client.get(f"/decisions/{decision_id}")
        assert response.status_code == 200
        assert response.json()["id"] == decision_id

    def test_get_missing_decision(self, client):
        assert client.get("/decisions/dec_missing").status_code == 404

    def test_no_feasible_target(self, client):
        down = _make_target("down", healthy=False).model_dump(mode="json")
        response = _decide(client, targets=[down])
        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["decision"]["selected_target_id"] is None
        assert "down" in detail["decision"]["dropped_targets"]

    def test_invalid_process(self, client):
        process = {"id": "proc-1", "deadline_seconds": 5.0, "estimated_duration_seconds": 60.0}
        assert _decide(client, process=process).status_code == 422

    def test_schema_violation(self, client):
        assert _decide(client, process={"id": "proc-1", "priority": 42}).status_code == 422


class TestOutcomeEndpoints:
    def test_report_outcome(self, client):
        decision_id = _decide(client).json()["id"]
        outcome = {"decision_id": decision_id, "success": True, "reward": 2.0}
        response = client.post("/outcomes", json=outcome)
        assert response.status_code == 200
        assert response.json() == {"decision_id": decision_id, "applied": True}

        again = client.post("/outcomes", json=outcome)
        assert again.json()["applied"] is False

    def test_unknown_decision(self, client):
        response = client.post("/outcomes", json={"decision_id": "dec_missing", "success": True})
        assert response.status_code == 404

    def test_outcome_for_infeasible_decision(self, client):
        down = _make_target("down", healthy=False).model_dump(mode="json")
        decision_id = _decide(client, targets=[down]).json()["detail"]["decision"]["id"]
        response = client.post("/outcomes", json={"decision_id": decision_id, "success": False})
        assert response.status_code == 422


class TestScalingEndpoint:
    def test_deploy_for_backlog(self, client):
        now = datetime.utcnow().isoformat()
        response = client.post("/scaling", json={
            "executor_type": "cpu-worker",
            "queued": [
                {"id": f"q{i}", "executor_type": "cpu-worker", "submitted_at": now}
                for i in range(10)
            ],
            "executors": [{
                "id": "cpu-a",
                "executor_type": "cpu-worker",
                "target": _make_target("local-1").model_dump(mode="json"),
                "tasks_per_minute": 2.0,
                "cost_per_hour": 1.0,
            }],
        })
        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "deploy"
        assert data["executor_id"] == "cpu-a"


class TestLearningEndpoints:
    def test_weights(self, client):
        data = client.get("/weights").json()
        assert data["version"] == 0
        assert abs(sum(data["weights"].values()) - 1.0) < 1e-3
        assert data["bounds"]["queue_depth"] == [0.0, 1.0]

    def test_weights_change_after_outcome(self, client):
        decision_id = _decide(client).json()["id"]
        client.post("/outcomes", json={"decision_id": decision_id, "success": True, "reward": 3.0})
        assert client.get("/weights").json()["version"] == 1

    def test_adapt_and_patterns(self, client):
        response = client.post("/adapt")
        assert response.status_code == 200
        assert response.json()["added"] == 0
        assert client.get("/patterns").json() == []

    def test_rl_policy(self, client):
        assert client.get("/rl/policy").json() == {}
        first = _decide(client).json()["id"]
        client.post("/outcomes", json={"decision_id": first, "success": True, "reward": 1.0})
        _decide(client, process={"id": "proc-2", "input_size_mb": 100.0})
        policy = client.get("/rl/policy").json()
        assert len(policy) == 1
        assert set(next(iter(policy.values()))) == {"action", "q"}

    def test_stats(self, client):
        _decide(client)
        data = client.get("/stats").json()
        assert data["decisions"] == 1
        assert data["policy"]["total_evaluations"] == len(_make_fleet())


class TestPolicyEndpoints:
    def test_rules(self, client):
        rules = client.get("/policy/rules").json()
        ids = [r["id"] for r in rules]
        assert "safety_critical_local" in ids
        assert all("predicate" not in r for r in rules)

    def test_audit_and_verify(self, client):
        _decide(client, process={"id": "proc-1", "safety_critical": True})
        audit = client.get("/policy/audit", params={"limit": 3}).json()
        assert len(audit) == 3
        verify = client.get("/policy/audit/verify").json()
        assert verify["integrity_valid"] is True
        assert verify["total_records"] > len(_make_fleet())

    def test_policy_stats(self, client):
        _decide(client, process={"id": "proc-1", "safety_critical": True})
        stats = client.get("/policy/stats").json()
        assert stats["violations_by_rule"]["safety_critical_local"] == 3


class TestAppFactory:
    def test_requires_orchestrator_or_config(self):
        with pytest.raises(ConfigurationInvalid):
            create_app()
