"""
Sequence Matcher — dynamic time warping over short numeric series.

Discovery buckets sliding windows by a coarse shape signature (min-max
normalised, quantised to 10 levels) and then confirms bucket members by
pairwise warped distance against the bucket's first window. Confirmed groups
of two or more non-overlapping occurrences become SequencePatterns.
"""

from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import numpy as np
from pydantic import BaseModel, Field

SIGNATURE_LEVELS = 10


class DistanceMetric(str, Enum):
    EUCLIDEAN = "euclidean"                 # Squared difference per point
    MANHATTAN = "manhattan"


class SequencePattern(BaseModel):
    id: str
    sequence: List[float]                   # Normalised representative window
    length: int
    occurrences: int
    positions: List[int] = []
    confidence: float = Field(ge=0.0, le=1.0)
    usage_count: int = 0
    discovered_at: datetime


def _normalize(window: np.ndarray) -> np.ndarray:
    lo, hi = float(window.min()), float(window.max())
    if hi - lo == 0.0:
        return np.zeros_like(window)
    return (window - lo) / (hi - lo)


def _signature(window: np.ndarray) -> Tuple[int, ...]:
    levels = np.minimum((_normalize(window) * SIGNATURE_LEVELS).astype(int), SIGNATURE_LEVELS - 1)
    return tuple(int(v) for v in levels)


def dtw_distance(
    a: Sequence[float],
    b: Sequence[float],
    window: Optional[int] = None,
    metric: DistanceMetric = DistanceMetric.EUCLIDEAN,
) -> float:
    """
    Warped distance normalised by len(a) + len(b). `window` is a Sakoe-Chiba
    band half-width; None means unconstrained.
    """
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    m, n = len(x), len(y)
    if m == 0 or n == 0:
        raise ValueError("sequences must be non-empty")
    band = max(window, abs(m - n)) if window is not None else max(m, n)

    cost = np.full((m + 1, n + 1), np.inf)
    cost[0, 0] = 0.0
    for i in range(1, m + 1):
        j_lo = max(1, i - band)
        j_hi = min(n, i + band)
        for j in range(j_lo, j_hi + 1):
            diff = x[i - 1] - y[j - 1]
            d = diff * diff if metric == DistanceMetric.EUCLIDEAN else abs(diff)
            cost[i, j] = d + min(cost[i - 1, j], cost[i, j - 1], cost[i - 1, j - 1])
    return float(cost[m, n] / (m + n))


class SequenceMatcher:
    def __init__(
        self,
        window: Optional[int] = None,
        metric: DistanceMetric = DistanceMetric.EUCLIDEAN,
        distance_threshold: float = 0.05,
        similarity_threshold: float = 0.8,
        min_confidence: float = 0.6,
        max_patterns: int = 100,
    ):
        self.window = window
        self.metric = metric
        self.distance_threshold = distance_threshold
        self.similarity_threshold = similarity_threshold
        self.min_confidence = min_confidence
        self.max_patterns = max_patterns
        self._patterns: Dict[str, SequencePattern] = {}

    def distance(self, a: Sequence[float], b: Sequence[float]) -> float:
        return dtw_distance(a, b, window=self.window, metric=self.metric)

    def discover_patterns(
        self,
        series: Sequence[float],
        min_len: int,
        max_len: int,
    ) -> List[SequencePattern]:
        """Recurring sub-sequences with lengths in [min_len, max_len]."""
        if min_len < 2 or max_len < min_len:
            raise ValueError("need 2 <= min_len <= max_len")
        data = np.asarray(series, dtype=float)
        if len(data) < 2 * min_len:
            return []

        found: List[SequencePattern] = []
        now = datetime.utcnow()
        for length in range(min_len, min(max_len, len(data) // 2) + 1):
            buckets: Dict[Tuple[int, ...], List[int]] = defaultdict(list)
            for start in range(len(data) - length + 1):
                window = data[start:start + length]
                if window.max() == window.min():
                    continue  # Flat windows carry no shape
                buckets[_signature(window)].append(start)

            for starts in buckets.values():
                if len(starts) < 2:
                    continue
                anchor = _normalize(data[starts[0]:starts[0] + length])
                members = [starts[0]]
                for start in starts[1:]:
                    if start < members[-1] + length:
                        continue  # Overlaps the previous occurrence
                    candidate = _normalize(data[start:start + length])
                    if self.distance(anchor, candidate) <= self.distance_threshold:
                        members.append(start)
                if len(members) >= 2:
                    found.append(SequencePattern(
                        id=f"seq_{uuid4().hex[:12]}",
                        sequence=[float(v) for v in anchor],
                        length=length,
                        occurrences=len(members),
                        positions=members,
                        confidence=min(len(members) / 10.0, 1.0),
                        discovered_at=now,
                    ))

        found.sort(key=lambda p: (-p.confidence, -p.length, p.positions[0]))
        return found[: self.max_patterns]

    # --- Pattern library ---

    def add_pattern(self, pattern: SequencePattern) -> None:
        """Store a pattern, evicting the least-used one when full."""
        if pattern.id not in self._patterns and len(self._patterns) >= self.max_patterns:
            victim = min(self._patterns.values(), key=lambda p: (p.usage_count, p.discovered_at))
            del self._patterns[victim.id]
        self._patterns[pattern.id] = pattern

    def get_patterns(self) -> List[SequencePattern]:
        return list(self._patterns.values())

    def find_best_match(self, sequence: Sequence[float]) -> Optional[Tuple[SequencePattern, float]]:
        """Most similar stored pattern, as (pattern, similarity), if above thresholds."""
        data = np.asarray(sequence, dtype=float)
        if len(data) < 2 or data.max() == data.min():
            return None
        normalized = _normalize(data)
        best: Optional[Tuple[SequencePattern, float]] = None
        for pattern in self._patterns.values():
            if pattern.confidence < self.min_confidence:
                continue
            similarity = 1.0 / (1.0 + self.distance(normalized, pattern.sequence))
            if similarity >= self.similarity_threshold and (best is None or similarity > best[1]):
                best = (pattern, similarity)
        if best is not None:
            best[0].usage_count += 1
        return best
