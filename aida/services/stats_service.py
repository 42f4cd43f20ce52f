import threading
from dataclasses import asdict, dataclass

from aida.services.response_types import ResponseResult


@dataclass
class ResponseStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_processing_time_ms: float = 0.0
    average_confidence: float = 0.0
    escalation_rate: float = 0.0
    fallback_rate: float = 0.0
    escalations: int = 0
    fallback_responses: int = 0
    content_filtered: int = 0
    fact_checked: int = 0
    low_confidence: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class StatsTracker:
    """Process-lifetime counters, updated once per completed pipeline execution.

    Averages cover successful results only. fallback_rate is failed / total.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = ResponseStats()

    def record(self, result: ResponseResult) -> None:
        with self._lock:
            stats = self._stats
            stats.total_requests += 1

            if result.success and result.response is not None:
                payload = result.response
                n = stats.successful_requests
                stats.average_processing_time_ms = (
                    stats.average_processing_time_ms * n + payload.processing_time_ms
                ) / (n + 1)
                stats.average_confidence = (stats.average_confidence * n + payload.confidence) / (n + 1)
                stats.successful_requests = n + 1

                if payload.should_escalate:
                    stats.escalations += 1
                if result.metadata.fallback_used:
                    stats.fallback_responses += 1
                flags = payload.content.metadata
                stats.content_filtered += int(bool(flags.get("content_filtered")))
                stats.fact_checked += int(bool(flags.get("fact_checked")))
                stats.low_confidence += int(bool(flags.get("low_confidence")))
            else:
                stats.failed_requests += 1

            stats.escalation_rate = stats.escalations / stats.total_requests
            stats.fallback_rate = stats.failed_requests / stats.total_requests

    def snapshot(self) -> ResponseStats:
        with self._lock:
            return ResponseStats(**asdict(self._stats))
