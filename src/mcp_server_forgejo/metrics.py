import asyncio
import time
from collections import defaultdict
from typing import Any, Dict

# Durations kept for averages; older samples are dropped
MAX_DURATION_SAMPLES = 1000


class MetricsCollector:
    """
    Metrics collector for MCP Forgejo Server.
    Aggregates request counts, outcomes and durations per tool.
    Safe for concurrent use from request tasks.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._metrics = self._empty()

    @staticmethod
    def _empty() -> Dict[str, Any]:
        return {
            "requests_processed": 0,
            "tools": defaultdict(int),
            "outcomes": defaultdict(int),
            "errors": defaultdict(int),
            "request_durations_ms": [],
            "last_health_check": None,
            "startup_time": time.time(),
        }

    async def record_request(self, tool: str, outcome: str, duration_ms: float):
        """Record one completed request; ``outcome`` is ``ok`` or an error kind."""
        async with self._lock:
            self._metrics["requests_processed"] += 1
            self._metrics["tools"][tool] += 1
            self._metrics["outcomes"][outcome] += 1
            if outcome != "ok":
                self._metrics["errors"][tool] += 1
            durations = self._metrics["request_durations_ms"]
            durations.append(duration_ms)
            if len(durations) > MAX_DURATION_SAMPLES:
                del durations[: len(durations) - MAX_DURATION_SAMPLES]

    async def get_metrics(self) -> Dict[str, Any]:
        async with self._lock:
            durations = self._metrics["request_durations_ms"]
            avg_duration = sum(durations) / len(durations) if durations else 0
            return {
                "requests_processed": self._metrics["requests_processed"],
                "tools": dict(self._metrics["tools"]),
                "outcomes": dict(self._metrics["outcomes"]),
                "errors": dict(self._metrics["errors"]),
                "avg_request_duration_ms": avg_duration,
                "uptime_sec": time.time() - self._metrics["startup_time"],
            }

    async def get_health_status(self) -> Dict[str, Any]:
        async with self._lock:
            health = {
                "uptime_sec": time.time() - self._metrics["startup_time"],
                "requests_processed": self._metrics["requests_processed"],
                "error_count": sum(self._metrics["errors"].values()),
                "last_health_check": time.time(),
            }
            self._metrics["last_health_check"] = health["last_health_check"]
            return health
