import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from template_pipeline.alert_publisher import AlertPublisher
from template_pipeline.db import db_session
from template_pipeline.job_models import TemplatePipelineJob
from template_pipeline.job_scheduler import PipelineJobScheduler
from template_pipeline.job_store import JobNotFoundError, SqlJobStore
from template_pipeline.pipeline_metrics import PipelineMetricsCollector


def _seed(session_factory, now):
    with db_session(session_factory) as session:
        session.add_all([
            TemplatePipelineJob(id='old', status='ON_HOLD', updated_at=now - timedelta(hours=3)),
            TemplatePipelineJob(id='older', status='ON_HOLD', updated_at=now - timedelta(days=1),
                                job_metadata={'attempt': 1}),
            TemplatePipelineJob(id='never', status='ON_HOLD', updated_at=None),
            TemplatePipelineJob(id='recent', status='ON_HOLD', updated_at=now - timedelta(minutes=5)),
            TemplatePipelineJob(id='done', status='SUCCESS', updated_at=now - timedelta(days=2)),
        ])


def test_find_many_selects_stale_on_hold_jobs(session_factory):
    now = datetime.now(timezone.utc)
    _seed(session_factory, now)
    store = SqlJobStore(session_factory)

    jobs = store.find_many(status='ON_HOLD', updated_before=now - timedelta(minutes=30), take=10)

    assert {job.id for job in jobs} == {'old', 'older', 'never'}
    assert all(job.updated_at is None or job.updated_at.tzinfo is not None for job in jobs)


def test_find_many_honours_take(session_factory):
    now = datetime.now(timezone.utc)
    _seed(session_factory, now)

    jobs = SqlJobStore(session_factory).find_many(status='ON_HOLD', updated_before=now, take=2)

    assert len(jobs) == 2


def test_update_increments_retry_and_replaces_metadata(session_factory):
    now = datetime.now(timezone.utc)
    _seed(session_factory, now)
    store = SqlJobStore(session_factory)

    view = store.update('older', status='QUEUED', retry_increment=1, metadata={'attempt': 2})

    assert view.status == 'QUEUED'
    assert view.retry_count == 1
    assert view.metadata == {'attempt': 2}


def test_update_missing_job_raises(session_factory):
    with pytest.raises(JobNotFoundError):
        SqlJobStore(session_factory).update('ghost', status='QUEUED')


def test_scheduler_sweep_against_sql_store(session_factory):
    now = datetime.now(timezone.utc)
    _seed(session_factory, now)
    alerts = AlertPublisher()
    received = []
    alerts.register(received.append)
    scheduler = PipelineJobScheduler(SqlJobStore(session_factory), alerts, PipelineMetricsCollector(), now=lambda: now)

    count = asyncio.run(scheduler.run_retry_hold_jobs())

    assert count == 3
    with db_session(session_factory) as session:
        statuses = {job.id: (job.status, job.retry_count) for job in session.query(TemplatePipelineJob)}
        older = session.get(TemplatePipelineJob, 'older')
        assert older.job_metadata['attempt'] == 1
        assert 'schedulerRetriedAt' in older.job_metadata
    assert statuses['old'] == ('QUEUED', 1)
    assert statuses['never'] == ('QUEUED', 1)
    assert statuses['recent'] == ('ON_HOLD', 0)
    assert statuses['done'] == ('SUCCESS', 0)
    assert received[0].message == 'Requeued 3 ON_HOLD pipeline jobs'
