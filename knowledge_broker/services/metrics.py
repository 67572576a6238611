"""
Observability hook for broker operations.

The broker reports one record per query outcome to an injected recorder
instead of writing metrics itself.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger


class MetricsRecorder(Protocol):
    def record(
        self,
        operation: str,
        success: bool,
        latency: float,
        source: str,
    ) -> None: ...


class LoggingMetrics:
    """Writes each record as a debug log line."""

    def record(self, operation: str, success: bool, latency: float, source: str) -> None:
        logger.debug(
            f"[Metrics] {operation} {'SUCCESS' if success else 'FAILED'} "
            f"source={source} latency={latency * 1000:.1f}ms"
        )


@dataclass
class InMemoryMetrics:
    """Keeps counters and latencies in process memory. For tests and introspection."""

    counters: dict[tuple[str, str, bool], int] = field(
        default_factory=lambda: defaultdict(int)
    )
    latencies: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))

    def record(self, operation: str, success: bool, latency: float, source: str) -> None:
        self.counters[(operation, source, success)] += 1
        self.latencies[operation].append(latency)

    def count(
        self,
        operation: str | None = None,
        source: str | None = None,
        success: bool | None = None,
    ) -> int:
        return sum(
            value
            for (op, src, ok), value in self.counters.items()
            if (operation is None or op == operation)
            and (source is None or src == source)
            and (success is None or ok == success)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            f"{op}:{src}:{'ok' if ok else 'error'}": value
            for (op, src, ok), value in self.counters.items()
        }
