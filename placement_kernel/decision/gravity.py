"""
Data Gravity — prefer compute that sits near the data it consumes.

Location pairs are classified into proximity classes; each class maps to a
configured gravity score in (0, 1]. The placement multiplier is
gravity ** gravity_factor.
"""

import math
from typing import Dict, Iterable, Tuple

from placement_kernel.models.config import CostModelConfig, ProximityClass
from placement_kernel.models.target import Location


class DataGravityModel:
    def __init__(
        self,
        gravity: Dict[ProximityClass, float],
        gravity_factor: float,
        adjacent_regions: Iterable[Tuple[str, str]] = (),
    ):
        self.gravity = dict(gravity)
        self.gravity_factor = gravity_factor
        self._adjacent = {frozenset(pair) for pair in adjacent_regions}

    @classmethod
    def from_config(cls, config: CostModelConfig) -> "DataGravityModel":
        return cls(config.gravity, config.gravity_factor, config.adjacent_regions)

    def proximity(self, data: Location, compute: Location) -> ProximityClass:
        if data.site == compute.site:
            return ProximityClass.SAME_LOCATION
        if data.region and data.region == compute.region and data.provider == compute.provider:
            return ProximityClass.SAME_REGION
        if data.region and compute.region and frozenset((data.region, compute.region)) in self._adjacent:
            return ProximityClass.ADJACENT_REGION
        if data.provider and data.provider == compute.provider:
            return ProximityClass.SAME_PROVIDER
        return ProximityClass.DIFFERENT_PROVIDER

    def score(self, data: Location, compute: Location) -> float:
        return self.gravity[self.proximity(data, compute)]

    def multiplier(self, data: Location, compute: Location) -> float:
        return self.score(data, compute) ** self.gravity_factor

    @staticmethod
    def apply(score: float, multiplier: float) -> float:
        """
        Weight a score by the gravity multiplier so that lower proximity is
        always worse: positive scores shrink, negative scores grow in magnitude.
        """
        if score >= 0:
            return score * multiplier
        return score / max(multiplier, 1e-9)

    def transfer_penalty(self, data: Location, compute: Location, size_gb: float) -> float:
        """Log-scaled penalty for moving size_gb away from its gravity well."""
        if size_gb <= 0 or data.site == compute.site:
            return 0.0
        base = size_gb * (1.0 - self.score(data, compute))
        return base * math.log10(1.0 + size_gb)
