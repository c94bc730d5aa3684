import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from template_pipeline.alert_publisher import AlertPublisher
from template_pipeline.job_scheduler import (
    PipelineJobScheduler,
    SchedulerOptions,
    build_weekly_report,
    should_retry_job,
)
from template_pipeline.job_store import InMemoryJobStore, JobStoreError, PipelineJobView
from template_pipeline.pipeline_metrics import PipelineMetricsCollector


NOW = datetime(2024, 6, 3, 9, 0, tzinfo=timezone.utc)


def _scheduler(store, received=None, **options):
    alerts = AlertPublisher()
    if received is not None:
        alerts.register(received.append)
    metrics = PipelineMetricsCollector(alerts=alerts)
    return PipelineJobScheduler(store, alerts, metrics, SchedulerOptions(**options), now=lambda: NOW)


def test_should_retry_job():
    threshold = NOW - timedelta(minutes=30)

    assert should_retry_job(PipelineJobView(id='a', status='ON_HOLD', updated_at=NOW - timedelta(hours=2)), threshold)
    assert should_retry_job(PipelineJobView(id='b', status='ON_HOLD', updated_at=None), threshold)
    assert not should_retry_job(PipelineJobView(id='c', status='ON_HOLD', updated_at=NOW - timedelta(minutes=5)), threshold)
    assert not should_retry_job(PipelineJobView(id='d', status='FAILED', updated_at=NOW - timedelta(days=3)), threshold)


def test_retry_sweep_requeues_stale_jobs():
    store = InMemoryJobStore()
    store.add(PipelineJobView(id='stale', status='ON_HOLD', updated_at=NOW - timedelta(hours=1), metadata={'k': 1}))
    store.add(PipelineJobView(id='fresh', status='ON_HOLD', updated_at=NOW - timedelta(minutes=1)))
    store.add(PipelineJobView(id='failed', status='FAILED', updated_at=NOW - timedelta(days=1)))
    received = []

    count = asyncio.run(_scheduler(store, received).run_retry_hold_jobs())

    assert count == 1
    stale = store.jobs['stale']
    assert stale.status == 'QUEUED'
    assert stale.retry_count == 1
    assert stale.metadata == {'k': 1, 'schedulerRetriedAt': NOW.isoformat()}
    assert store.jobs['fresh'].status == 'ON_HOLD'
    assert store.jobs['failed'].status == 'FAILED'

    assert len(received) == 1
    assert received[0].severity == 'warning'
    assert received[0].message == 'Requeued 1 ON_HOLD pipeline jobs'
    assert received[0].context['jobIds'] == ['stale']


def test_retry_sweep_respects_batch_size():
    store = InMemoryJobStore()
    for index in range(5):
        store.add(PipelineJobView(id=f'job-{index}', status='ON_HOLD', updated_at=NOW - timedelta(hours=index + 1)))

    count = asyncio.run(_scheduler(store, retry_batch_size=2).run_retry_hold_jobs())

    assert count == 2
    assert {job.id for job in store.jobs.values() if job.status == 'QUEUED'} == {'job-4', 'job-3'}


def test_retry_sweep_without_candidates_sends_no_alert():
    received = []

    assert asyncio.run(_scheduler(InMemoryJobStore(), received).run_retry_hold_jobs()) == 0
    assert received == []


class SlowStore(InMemoryJobStore):
    async def find_many(self, *, status, updated_before, take):
        await asyncio.sleep(0.01)
        return []


def test_overlapping_runs_are_skipped():
    scheduler = _scheduler(SlowStore())

    async def run_twice():
        return await asyncio.gather(scheduler.run_retry_hold_jobs(), scheduler.run_retry_hold_jobs())

    assert asyncio.run(run_twice()) == [0, None]
    assert not scheduler.is_running('retry_hold_jobs')


def test_blocking_store_calls_run_off_the_event_loop():
    released = threading.Event()
    seen = []

    class WaitingStore(InMemoryJobStore):
        def find_many(self, *, status, updated_before, take):
            seen.append(released.wait(timeout=2))
            return []

    scheduler = _scheduler(WaitingStore())

    async def sweep_while_loop_runs():
        sweep = asyncio.create_task(scheduler.run_retry_hold_jobs())
        await asyncio.sleep(0.05)
        released.set()
        return await sweep

    assert asyncio.run(sweep_while_loop_runs()) == 0
    assert seen == [True]


class BrokenStore(InMemoryJobStore):
    def find_many(self, *, status, updated_before, take):
        raise JobStoreError('database unavailable')


def test_store_errors_are_rethrown():
    scheduler = _scheduler(BrokenStore())

    with pytest.raises(JobStoreError):
        asyncio.run(scheduler.run_retry_hold_jobs())
    assert not scheduler.is_running('retry_hold_jobs')


def test_weekly_report_publishes_info_alert():
    received = []
    scheduler = _scheduler(InMemoryJobStore(), received)

    message = asyncio.run(scheduler.run_weekly_report())

    assert message.startswith('Template pipeline weekly report (total 0)')
    assert [a.severity for a in received] == ['info']


def test_build_weekly_report_lists_failures():
    metrics = PipelineMetricsCollector()
    metrics.record_success('package', duration_ms=120)
    metrics.record_failure('import', 'bucket missing')

    report = build_weekly_report(metrics.snapshot(), metrics.status_breakdown())

    assert 'Success: 1, failure: 1, success rate: 50.0%' in report
    assert 'Average duration: 120 ms' in report
    assert 'SUCCESS 1 | FAILED 1 | RUNNING 0' in report
    assert '[import] bucket missing' in report


def test_invalid_cron_is_rejected():
    with pytest.raises(ValueError):
        _scheduler(InMemoryJobStore(), retry_cron='every now and then')


def test_next_fire_time_uses_configured_timezone():
    scheduler = _scheduler(InMemoryJobStore())

    fire_at = scheduler.next_fire_time('0 9 * * MON', after=NOW)

    assert fire_at.utcoffset() == timedelta(hours=8)
    assert (fire_at.weekday(), fire_at.hour, fire_at.minute) == (0, 9, 0)
    assert fire_at > NOW


def test_start_and_stop_cron_tasks():
    scheduler = _scheduler(InMemoryJobStore())

    async def lifecycle():
        scheduler.start()
        started = scheduler.started
        scheduler.stop()
        await asyncio.sleep(0)
        return started

    assert asyncio.run(lifecycle()) is True
    assert not scheduler.started
