"""Execution Target — a candidate place to run a process."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TargetType(str, Enum):
    LOCAL = "local"
    EDGE = "edge"
    FOG = "fog"
    PRIVATE_CLOUD = "private_cloud"
    PUBLIC_CLOUD = "public_cloud"
    HYBRID_CLOUD = "hybrid_cloud"
    HPC_CLUSTER = "hpc_cluster"


class Location(BaseModel):
    """Where data or compute lives. Proximity is derived from these fields."""

    site: str                               # e.g., "lab-01", "eu-west-1a"
    region: str = ""                        # e.g., "eu-west"
    provider: str = ""                      # e.g., "onprem", "aws"


class ExecutionTarget(BaseModel):
    """
    A remote or local executor as reported by the discovery collaborator.
    Read-only to the kernel.
    """

    id: str
    type: TargetType
    location: Location

    total_capacity: float = Field(ge=0.0)           # CPU cores
    available_capacity: float = Field(ge=0.0)
    memory_total_mb: float = Field(ge=0.0)
    memory_available_mb: float = Field(ge=0.0)

    network_latency_ms: float = Field(default=0.0, ge=0.0)
    network_bandwidth_mbps: float = Field(default=100.0, ge=0.0)  # MB/s
    network_stability: float = Field(default=1.0, ge=0.0, le=1.0)
    network_cost_per_mb: float = Field(default=0.0, ge=0.0)

    processing_speed: float = Field(default=1.0, gt=0.0)  # Relative to local
    reliability: float = Field(default=1.0, ge=0.0, le=1.0)

    compute_cost_per_hour: float = Field(default=0.0, ge=0.0)
    energy_cost_per_hour: float = Field(default=0.0, ge=0.0)

    security_level: int = Field(default=0, ge=0, le=5)
    jurisdiction: str = ""
    energy_source: str = ""
    capabilities: List[str] = []

    current_load: float = Field(default=0.0, ge=0.0, le=1.0)
    estimated_wait_seconds: float = Field(default=0.0, ge=0.0)
    healthy: bool = True                    # Set by the discovery heartbeat
    historical_success: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def validation_errors(self) -> List[str]:
        """Cross-field inconsistencies that make the target unusable."""
        errors = []
        if not self.id:
            errors.append("id cannot be empty")
        if self.available_capacity > self.total_capacity:
            errors.append(
                f"available_capacity {self.available_capacity} exceeds "
                f"total_capacity {self.total_capacity}"
            )
        if self.memory_available_mb > self.memory_total_mb:
            errors.append(
                f"memory_available_mb {self.memory_available_mb} exceeds "
                f"memory_total_mb {self.memory_total_mb}"
            )
        return errors

    def utilization(self) -> float:
        if self.total_capacity <= 0:
            return 1.0
        return 1.0 - (self.available_capacity / self.total_capacity)

    def memory_utilization(self) -> float:
        if self.memory_total_mb <= 0:
            return 0.0
        return 1.0 - (self.memory_available_mb / self.memory_total_mb)

    def can_accommodate(self, process) -> bool:
        """Check CPU and memory headroom for a process."""
        return (
            process.cpu_requirement <= self.available_capacity
            and process.memory_requirement_mb <= self.memory_available_mb
        )

    def estimate_execution_seconds(self, process) -> float:
        """
        Wall-clock estimate: compute time scaled by speed, plus data transfer,
        round-trip latency and queue wait.
        """
        seconds = process.estimated_duration_seconds / self.processing_speed
        data_mb = process.data_size_mb
        if data_mb > 0 and self.type != TargetType.LOCAL and self.network_bandwidth_mbps > 0:
            seconds += data_mb / self.network_bandwidth_mbps
        seconds += 2 * self.network_latency_ms / 1000.0
        seconds += self.estimated_wait_seconds
        return seconds

    def total_cost(self, process) -> float:
        """Monetary estimate: compute and energy per hour, network per MB."""
        hours = self.estimate_execution_seconds(process) / 3600.0
        network = 0.0 if self.type == TargetType.LOCAL else self.network_cost_per_mb * process.data_size_mb
        return (
            self.compute_cost_per_hour * hours
            + self.energy_cost_per_hour * hours
            + network
        )
