"""Rolling window of pipeline stage outcomes.

Events are kept in a fixed-size ring buffer; the oldest are evicted first.
Recording a failure publishes an alert right away.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Literal, Optional

from template_pipeline.alert_publisher import AlertPayload, AlertPublisher


MAX_EVENTS = 200
DEFAULT_WINDOW_MS = 60 * 60 * 1000
CRITICAL_STAGES = frozenset({"planner", "composer"})
JOB_STATUSES = ("QUEUED", "RUNNING", "SUCCESS", "FAILED", "ON_HOLD")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PipelineEvent:
    timestamp: int
    status: Literal["success", "failure"]
    stage: str
    request_id: Optional[str] = None
    template_slug: Optional[str] = None
    duration_ms: Optional[int] = None
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class FailureSummary:
    stage: str
    reason: str
    at: str


@dataclass
class PipelineMetricsSnapshot:
    success: int
    failure: int
    average_duration_ms: Optional[int]
    recent_failures: List[FailureSummary] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.failure


class PipelineMetricsCollector:
    def __init__(
        self,
        alerts: Optional[AlertPublisher] = None,
        capacity: int = MAX_EVENTS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._events: Deque[PipelineEvent] = deque(maxlen=capacity)
        self._alerts = alerts
        self._clock = clock

    def __len__(self) -> int:
        return len(self._events)

    def events(self) -> List[PipelineEvent]:
        return list(self._events)

    def reset(self) -> None:
        self._events.clear()

    def record_success(
        self,
        stage: str,
        template_slug: Optional[str] = None,
        duration_ms: Optional[int] = None,
        request_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineEvent:
        event = PipelineEvent(
            timestamp=self._clock(),
            status="success",
            stage=stage,
            request_id=request_id,
            template_slug=template_slug,
            duration_ms=duration_ms,
            metadata=metadata,
        )
        self._events.append(event)
        return event

    def record_failure(
        self,
        stage: str,
        reason: str,
        request_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineEvent:
        event = PipelineEvent(
            timestamp=self._clock(),
            status="failure",
            stage=stage,
            request_id=request_id,
            reason=reason,
            metadata=metadata,
        )
        self._events.append(event)

        if self._alerts is not None:
            self._alerts.publish(
                AlertPayload(
                    severity="critical" if stage in CRITICAL_STAGES else "warning",
                    message=f"Pipeline {stage} failure: {reason}",
                    context={"stage": stage, "requestId": request_id, "metadata": metadata},
                )
            )
        return event

    def snapshot(self, window_ms: int = DEFAULT_WINDOW_MS) -> PipelineMetricsSnapshot:
        threshold = self._clock() - window_ms
        window = [event for event in self._events if event.timestamp >= threshold]
        successes = [event for event in window if event.status == "success"]
        failures = [event for event in window if event.status == "failure"]

        durations = [
            event.duration_ms
            for event in successes
            if isinstance(event.duration_ms, (int, float)) and event.duration_ms > 0
        ]
        average = round(sum(durations) / len(durations)) if durations else None

        return PipelineMetricsSnapshot(
            success=len(successes),
            failure=len(failures),
            average_duration_ms=average,
            recent_failures=[
                FailureSummary(
                    stage=event.stage,
                    reason=event.reason or "unknown",
                    at=datetime.fromtimestamp(event.timestamp / 1000, tz=timezone.utc).isoformat(),
                )
                for event in failures[-5:]
            ],
        )

    def status_breakdown(self) -> Dict[str, int]:
        breakdown = {status: 0 for status in JOB_STATUSES}
        breakdown["TOTAL"] = 0
        for event in self._events:
            breakdown["SUCCESS" if event.status == "success" else "FAILED"] += 1
            breakdown["TOTAL"] += 1
        return breakdown
