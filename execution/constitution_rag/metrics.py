"""
Metrics Collection for the Constitution RAG System

Diagnostic counters for chat turns: latency, outcomes, degraded searches and
errors by type. Counters never influence how a turn is processed.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class TurnMetrics:
    """Metrics for a single chat turn."""
    conversation_id: str
    start_time: float
    end_time: float = 0
    latency_ms: float = 0
    sources_count: int = 0
    search_degraded: bool = False
    replayed: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Aggregated system metrics."""
    total_turns: int = 0
    successful_turns: int = 0
    failed_turns: int = 0
    replayed_turns: int = 0

    # Latency tracking (in ms)
    total_latency_ms: float = 0
    min_latency_ms: float = float('inf')
    max_latency_ms: float = 0
    latencies: list = field(default_factory=list)

    # Retrieval
    search_failures: int = 0
    empty_searches: int = 0

    errors_by_type: dict = field(default_factory=lambda: defaultdict(int))

    @property
    def avg_latency_ms(self) -> float:
        """Average latency of completed turns."""
        if self.total_turns == 0:
            return 0
        return self.total_latency_ms / self.total_turns

    @property
    def p95_latency_ms(self) -> float:
        """95th percentile latency."""
        if not self.latencies:
            return 0
        sorted_latencies = sorted(self.latencies)
        index = int(len(sorted_latencies) * 0.95)
        return sorted_latencies[min(index, len(sorted_latencies) - 1)]

    @property
    def error_rate(self) -> float:
        if self.total_turns == 0:
            return 0
        return self.failed_turns / self.total_turns

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "turns": {
                "total": self.total_turns,
                "successful": self.successful_turns,
                "failed": self.failed_turns,
                "replayed": self.replayed_turns,
                "error_rate": f"{self.error_rate:.2%}",
            },
            "latency_ms": {
                "avg": round(self.avg_latency_ms, 2),
                "min": round(self.min_latency_ms, 2) if self.min_latency_ms != float('inf') else 0,
                "max": round(self.max_latency_ms, 2),
                "p95": round(self.p95_latency_ms, 2),
            },
            "retrieval": {
                "search_failures": self.search_failures,
                "empty_searches": self.empty_searches,
            },
            "errors": dict(self.errors_by_type),
        }


class MetricsCollector:
    """
    Collects and aggregates turn metrics.

    Usage:
        collector = MetricsCollector()

        with collector.track_turn(conversation_id) as tracker:
            ...
            tracker.set_sources(len(sources), degraded=False)

        collector.get_metrics_dict()
    """

    def __init__(self, max_history: int = 1000):
        self.metrics = SystemMetrics()
        self._max_history = max_history
        self._lock = threading.Lock()

    def reset(self):
        """Reset all metrics (for testing)."""
        with self._lock:
            self.metrics = SystemMetrics()

    class TurnTracker:
        """Context manager for tracking one turn."""

        def __init__(self, collector: 'MetricsCollector', conversation_id: str):
            self.collector = collector
            self.turn = TurnMetrics(conversation_id=conversation_id, start_time=time.time())

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc_val, exc_tb):
            self.turn.end_time = time.time()
            self.turn.latency_ms = (self.turn.end_time - self.turn.start_time) * 1000

            if exc_type:
                self.turn.error = str(exc_val)
                self.collector.record_error(exc_type.__name__)

            self.collector._record_turn(self.turn)
            return False

        def set_sources(self, count: int, degraded: bool = False):
            self.turn.sources_count = count
            self.turn.search_degraded = degraded

        def set_replayed(self):
            self.turn.replayed = True

    def track_turn(self, conversation_id: str) -> TurnTracker:
        return self.TurnTracker(self, conversation_id)

    def _record_turn(self, turn: TurnMetrics):
        with self._lock:
            m = self.metrics
            m.total_turns += 1
            if turn.error:
                m.failed_turns += 1
            else:
                m.successful_turns += 1
            if turn.replayed:
                m.replayed_turns += 1
            elif not turn.error and turn.sources_count == 0:
                m.empty_searches += 1

            m.total_latency_ms += turn.latency_ms
            m.min_latency_ms = min(m.min_latency_ms, turn.latency_ms)
            m.max_latency_ms = max(m.max_latency_ms, turn.latency_ms)
            m.latencies.append(turn.latency_ms)
            if len(m.latencies) > self._max_history:
                m.latencies = m.latencies[-self._max_history:]

    def record_search_failure(self, conversation_id: str, error: Exception):
        """Record a non-fatal search failure."""
        logger.warning(f"Vector search failed for conversation {conversation_id}: {error}")
        with self._lock:
            self.metrics.search_failures += 1
            self.metrics.errors_by_type[type(error).__name__] += 1

    def record_error(self, error_type: str):
        with self._lock:
            self.metrics.errors_by_type[error_type] += 1

    def get_metrics(self) -> SystemMetrics:
        return self.metrics

    def get_metrics_dict(self) -> dict:
        with self._lock:
            return self.metrics.to_dict()
