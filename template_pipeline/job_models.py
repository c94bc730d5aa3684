"""SQLAlchemy models for pipeline jobs and imported templates.

Both tables belong to the template platform; this package only reads them and
updates job status / retry bookkeeping. JSON columns fall back to plain JSON
outside PostgreSQL so the models also run on SQLite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class TemplatePipelineJob(Base):
    __tablename__ = "template_pipeline_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=lambda: uuid4().hex)
    template_slug: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default="QUEUED", index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    # "metadata" is reserved on declarative classes.
    job_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=func.now()
    )


class TemplateRecord(Base):
    __tablename__ = "templates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), default="component")
    engine: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSONType, default=list)
    import_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    archive_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


def ensure_tables(engine) -> None:
    Base.metadata.create_all(bind=engine)
