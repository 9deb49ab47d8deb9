"""
Latency tracking for inference collaborator calls.

Aggregates measured per-stage latencies for the /stats endpoint. Counts,
means and maxima cover the whole process lifetime; p95 is taken over a
bounded window of the most recent calls per stage.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.models.enums import ActionType, LayerName


DEFAULT_WINDOW = 1000


@dataclass
class LatencyRecord:
    """Record of a single collaborator call."""

    timestamp: datetime
    stage: LayerName
    latency_ms: float
    outcome: ActionType
    case_id: str = ""


@dataclass
class StageLatency:
    """Running aggregates for one stage."""

    recent: deque
    calls: int = 0
    timeouts: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def add(self, entry: LatencyRecord):
        self.calls += 1
        if entry.outcome == ActionType.STAGE_TIMEOUT:
            self.timeouts += 1
        self.total_ms += entry.latency_ms
        self.max_ms = max(self.max_ms, entry.latency_ms)
        self.recent.append(entry.latency_ms)

    def to_dict(self) -> dict:
        if not self.calls:
            return {"calls": 0, "timeouts": 0, "mean_ms": 0.0, "max_ms": 0.0, "p95_ms": 0.0}
        window = sorted(self.recent)
        p95_index = max(0, int(round(0.95 * len(window))) - 1)
        return {
            "calls": self.calls,
            "timeouts": self.timeouts,
            "mean_ms": self.total_ms / self.calls,
            "max_ms": self.max_ms,
            "p95_ms": window[p95_index],
        }


@dataclass
class LatencyTracker:
    """
    Tracks inference latencies across all cases for the process lifetime.

    Memory stays bounded: each stage keeps running totals plus the last
    `window` latencies. Records survive case resets; they describe
    collaborator behaviour, not case content.
    """

    window: int = DEFAULT_WINDOW
    stages: dict[LayerName, StageLatency] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        if self.window < 1:
            raise ValueError("window must be at least 1")
        self.stages = self._empty_stages()

    def _empty_stages(self) -> dict[LayerName, StageLatency]:
        return {stage: StageLatency(recent=deque(maxlen=self.window)) for stage in LayerName}

    def record(
        self,
        stage: LayerName,
        latency_ms: float,
        outcome: ActionType = ActionType.STAGE_COMPLETED,
        case_id: str = "",
    ) -> LatencyRecord:
        """
        Record one collaborator call.

        Args:
            stage: Stage that was executed
            latency_ms: Measured wall-clock inference time
            outcome: How the attempt ended
            case_id: Optional case id for context

        Returns:
            The created LatencyRecord
        """
        entry = LatencyRecord(
            timestamp=datetime.now(timezone.utc),
            stage=LayerName(stage),
            latency_ms=latency_ms,
            outcome=ActionType(outcome),
            case_id=case_id,
        )
        with self._lock:
            self.stages[entry.stage].add(entry)
        return entry

    def get_summary(self) -> dict:
        """
        Get per-stage latency aggregates.

        Returns:
            Dict keyed by stage with calls, timeouts, mean/max/p95 latency
        """
        with self._lock:
            return {stage.value: totals.to_dict() for stage, totals in self.stages.items()}

    def reset(self):
        """Clear all recorded calls."""
        with self._lock:
            self.stages = self._empty_stages()
