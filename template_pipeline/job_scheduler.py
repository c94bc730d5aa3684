"""Periodic pipeline housekeeping: weekly digest and stale-job requeue.

Both tasks run on cron expressions evaluated in a fixed timezone, on the
running asyncio loop. Each can also be invoked directly. A task that is still
running when its next tick fires is skipped rather than run twice.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from template_pipeline.alert_publisher import AlertPayload, AlertPublisher
from template_pipeline.job_store import ON_HOLD, QUEUED, JobStore, PipelineJobView
from template_pipeline.pipeline_metrics import PipelineMetricsCollector, PipelineMetricsSnapshot


logger = logging.getLogger(__name__)

WEEKLY_REPORT = "weekly_report"
RETRY_HOLD_JOBS = "retry_hold_jobs"


@dataclass
class SchedulerOptions:
    report_cron: str = "0 9 * * MON"
    retry_cron: str = "*/15 * * * *"
    timezone: str = "Asia/Shanghai"
    stale_minutes: int = 30
    retry_batch_size: int = 20
    report_window_ms: int = 7 * 24 * 60 * 60 * 1000


def build_weekly_report(snapshot: PipelineMetricsSnapshot, status_breakdown: Dict[str, int]) -> str:
    total = snapshot.total
    success_rate = round(snapshot.success / total * 100, 1) if total else 0
    average = f"{snapshot.average_duration_ms} ms" if snapshot.average_duration_ms else "no data"

    lines = [
        f"Template pipeline weekly report (total {total})",
        f"- Success: {snapshot.success}, failure: {snapshot.failure}, success rate: {success_rate}%",
        f"- Average duration: {average}",
        "- Status distribution: "
        f"SUCCESS {status_breakdown.get('SUCCESS', 0)} | "
        f"FAILED {status_breakdown.get('FAILED', 0)} | "
        f"RUNNING {status_breakdown.get('RUNNING', 0)}",
    ]
    if snapshot.recent_failures:
        lines.append("- Recent failures:")
        for failure in snapshot.recent_failures:
            lines.append(f"  * [{failure.stage}] {failure.reason} @ {failure.at}")
    return "\n".join(lines)


def should_retry_job(job: PipelineJobView, threshold: datetime) -> bool:
    if job.status != ON_HOLD:
        return False
    if job.updated_at is None:
        return True
    return job.updated_at < threshold


async def _call_store(method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await async store methods; run blocking ones on a worker thread."""

    if inspect.iscoroutinefunction(method):
        return await method(*args, **kwargs)
    result = await asyncio.to_thread(method, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class PipelineJobScheduler:
    def __init__(
        self,
        store: JobStore,
        alerts: AlertPublisher,
        metrics: PipelineMetricsCollector,
        options: Optional[SchedulerOptions] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.options = options or SchedulerOptions()
        for expression in (self.options.report_cron, self.options.retry_cron):
            if not croniter.is_valid(expression):
                raise ValueError(f"Invalid cron expression: {expression!r}")
        self._tz = ZoneInfo(self.options.timezone)
        self._store = store
        self._alerts = alerts
        self._metrics = metrics
        self._now = now
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running: set[str] = set()

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def is_running(self, name: str) -> bool:
        return name in self._running

    def start(self) -> None:
        """Schedule both cron tasks on the running event loop."""

        loop = asyncio.get_running_loop()
        self.start_task(WEEKLY_REPORT, loop)
        self.start_task(RETRY_HOLD_JOBS, loop)
        logger.info(
            "pipeline.scheduler.started report_cron=%s retry_cron=%s timezone=%s",
            self.options.report_cron,
            self.options.retry_cron,
            self.options.timezone,
        )

    def start_task(self, name: str, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if name in self._tasks:
            return
        loop = loop or asyncio.get_running_loop()
        if name == WEEKLY_REPORT:
            self._tasks[name] = loop.create_task(self._cron_loop(name, self.options.report_cron, self.run_weekly_report))
        elif name == RETRY_HOLD_JOBS:
            self._tasks[name] = loop.create_task(self._cron_loop(name, self.options.retry_cron, self.run_retry_hold_jobs))
        else:
            raise ValueError(f"Unknown scheduler task: {name}")

    def stop_task(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def stop(self) -> None:
        for name in list(self._tasks):
            self.stop_task(name)
        logger.info("pipeline.scheduler.stopped")

    def next_fire_time(self, expression: str, after: Optional[datetime] = None) -> datetime:
        base = (after or self._now()).astimezone(self._tz)
        return croniter(expression, base).get_next(datetime)

    async def _cron_loop(self, name: str, expression: str, job: Callable[[], Awaitable[Any]]) -> None:
        while True:
            fire_at = self.next_fire_time(expression)
            delay = (fire_at - self._now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await job()
            except Exception:
                logger.debug("pipeline.scheduler.%s tick failed; waiting for next tick", name)

    async def run_weekly_report(self) -> Optional[str]:
        if WEEKLY_REPORT in self._running:
            logger.warning("pipeline.scheduler.weekly_report skipped: previous run still in progress")
            return None

        self._running.add(WEEKLY_REPORT)
        try:
            snapshot = self._metrics.snapshot(self.options.report_window_ms)
            status = self._metrics.status_breakdown()
            message = build_weekly_report(snapshot, status)
            self._alerts.publish(
                AlertPayload(
                    severity="info",
                    message=message,
                    context={"snapshot": snapshot, "status": status},
                )
            )
            logger.info(
                "pipeline.scheduler.weekly_report success=%d failure=%d",
                snapshot.success,
                snapshot.failure,
            )
            return message
        except Exception as exc:
            logger.error("pipeline.scheduler.weekly_report.failed: %s", exc, exc_info=True)
            raise
        finally:
            self._running.discard(WEEKLY_REPORT)

    async def run_retry_hold_jobs(self) -> Optional[int]:
        if RETRY_HOLD_JOBS in self._running:
            logger.warning("pipeline.scheduler.retry_hold_jobs skipped: previous run still in progress")
            return None

        self._running.add(RETRY_HOLD_JOBS)
        try:
            now = self._now()
            threshold = now - timedelta(minutes=self.options.stale_minutes)
            candidates: List[PipelineJobView] = await _call_store(
                self._store.find_many, status=ON_HOLD, updated_before=threshold, take=self.options.retry_batch_size
            )
            candidates = [job for job in candidates if should_retry_job(job, threshold)]
            if not candidates:
                return 0

            retried_at = now.isoformat()
            for job in candidates:
                await _call_store(
                    self._store.update,
                    job.id,
                    status=QUEUED,
                    retry_increment=1,
                    metadata={**(job.metadata or {}), "schedulerRetriedAt": retried_at},
                )

            job_ids = [job.id for job in candidates]
            self._alerts.publish(
                AlertPayload(
                    severity="warning",
                    message=f"Requeued {len(candidates)} ON_HOLD pipeline jobs",
                    context={"jobIds": job_ids, "threshold": threshold.isoformat()},
                )
            )
            logger.warning("pipeline.scheduler.retry_hold_jobs count=%d job_ids=%s", len(job_ids), job_ids)
            return len(candidates)
        except Exception as exc:
            logger.error("pipeline.scheduler.retry_hold_jobs.failed: %s", exc, exc_info=True)
            raise
        finally:
            self._running.discard(RETRY_HOLD_JOBS)
