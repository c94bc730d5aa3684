"""Access to pipeline job rows for the scheduler.

The scheduler only ever lists jobs by status/age and updates status, retry
count and metadata; it never creates or deletes jobs.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from template_pipeline.db import db_session, get_session_factory
from template_pipeline.job_models import TemplatePipelineJob

logger = logging.getLogger(__name__)

ON_HOLD = "ON_HOLD"
QUEUED = "QUEUED"


class JobStoreError(RuntimeError):
    """Raised when job rows cannot be read or written."""


class JobNotFoundError(JobStoreError):
    """Raised when updating a job that does not exist."""


@dataclass
class PipelineJobView:
    id: str
    status: str
    retry_count: int = 0
    updated_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    template_slug: Optional[str] = None


class JobStore(Protocol):
    def find_many(self, *, status: str, updated_before: datetime, take: int) -> List[PipelineJobView]:
        ...

    def update(
        self,
        job_id: str,
        *,
        status: str,
        retry_increment: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineJobView:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_view(row: TemplatePipelineJob) -> PipelineJobView:
    return PipelineJobView(
        id=row.id,
        status=row.status,
        retry_count=row.retry_count or 0,
        updated_at=_as_utc(row.updated_at),
        metadata=copy.deepcopy(row.job_metadata) if row.job_metadata is not None else None,
        template_slug=row.template_slug,
    )


class SqlJobStore:
    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._session_factory = session_factory

    def _factory(self) -> sessionmaker:
        return self._session_factory or get_session_factory()

    def find_many(self, *, status: str, updated_before: datetime, take: int) -> List[PipelineJobView]:
        stmt = (
            select(TemplatePipelineJob)
            .where(
                TemplatePipelineJob.status == status,
                or_(
                    TemplatePipelineJob.updated_at.is_(None),
                    TemplatePipelineJob.updated_at < updated_before,
                ),
            )
            .order_by(TemplatePipelineJob.updated_at.asc())
            .limit(take)
        )
        try:
            with db_session(self._factory()) as session:
                return [_to_view(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as exc:
            raise JobStoreError(f"Failed to list {status} jobs: {exc}") from exc

    def update(
        self,
        job_id: str,
        *,
        status: str,
        retry_increment: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineJobView:
        try:
            with db_session(self._factory()) as session:
                row = session.get(TemplatePipelineJob, job_id)
                if row is None:
                    raise JobNotFoundError(f"Pipeline job '{job_id}' not found")
                row.status = status
                row.retry_count = (row.retry_count or 0) + retry_increment
                if metadata is not None:
                    row.job_metadata = dict(metadata)
                session.flush()
                return _to_view(row)
        except SQLAlchemyError as exc:
            raise JobStoreError(f"Failed to update job '{job_id}': {exc}") from exc


@dataclass
class InMemoryJobStore:
    """Dict-backed store with the same contract, for tests and local runs."""

    jobs: Dict[str, PipelineJobView] = field(default_factory=dict)

    def add(self, job: PipelineJobView) -> PipelineJobView:
        self.jobs[job.id] = job
        return job

    def find_many(self, *, status: str, updated_before: datetime, take: int) -> List[PipelineJobView]:
        matches = [
            job
            for job in self.jobs.values()
            if job.status == status and (job.updated_at is None or job.updated_at < updated_before)
        ]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        matches.sort(key=lambda job: job.updated_at or oldest)
        return [replace(job) for job in matches[:take]]

    def update(
        self,
        job_id: str,
        *,
        status: str,
        retry_increment: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PipelineJobView:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Pipeline job '{job_id}' not found")
        updated = replace(
            job,
            status=status,
            retry_count=job.retry_count + retry_increment,
            metadata=dict(metadata) if metadata is not None else job.metadata,
            updated_at=datetime.now(timezone.utc),
        )
        self.jobs[job_id] = updated
        return updated
