"""Import a packaged template archive into object storage.

The importer is the callable handed to ``run_pipeline(auto_import=True)``.
It validates the archive, uploads every entry to MinIO under
``templates/<user>/<import-id>/``, optionally records the template, and
reports the outcome on the template event bus.
"""

from __future__ import annotations

import io
import json
import logging
import mimetypes
import posixpath
import time
import zipfile
from typing import Any, Callable, List, Optional, Sequence, Tuple
from uuid import uuid4

from minio import Minio
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from template_pipeline.component_builder import COMPONENT_DIR, DEMO_DIR
from template_pipeline.db import db_session
from template_pipeline.job_models import TemplateRecord
from template_pipeline.minio_helper import (
    build_import_prefix,
    ensure_bucket,
    get_minio_client,
    get_template_bucket,
    upload_bytes,
)
from template_pipeline.path_utils import UnsafePathError, ensure_relative
from template_pipeline.template_events import (
    TemplateEventBus,
    TemplateImportedPayload,
    TemplateImportFailedPayload,
)
from template_pipeline.zip_validator import RequiredFile, TemplateZipValidationError, validate_template_zip


logger = logging.getLogger(__name__)

PAGES_DIR = "pages"


class ArchiveImportError(RuntimeError):
    """Raised when an archive cannot be imported."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details


class ArchiveImportResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    import_id: str = Field(alias="importId")
    user_id: str = Field(alias="userId")
    bucket: str
    prefix: str
    objects: List[str] = Field(default_factory=list)
    pages: List[str] = Field(default_factory=list)
    components: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    duration_ms: int = Field(0, alias="durationMs")
    request_id: Optional[str] = Field(None, alias="requestId")


TemplateRecorder = Callable[[ArchiveImportResult], None]


def _stem(name: str) -> str:
    base = posixpath.basename(name)
    return base.split(".", 1)[0]


def classify_entries(names: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Return ``(pages, components)`` named by the archive layout."""

    pages: List[str] = []
    components: List[str] = []
    for name in names:
        if name.startswith(f"{DEMO_DIR}/"):
            continue
        if name.startswith(f"{COMPONENT_DIR}/"):
            components.append(_stem(name))
        elif name.startswith(f"{PAGES_DIR}/") and name.endswith(".html"):
            pages.append(_stem(name))
    return pages, components


def _read_title(archive: zipfile.ZipFile) -> Optional[str]:
    try:
        schema = json.loads(archive.read("schema.json"))
    except (KeyError, ValueError):
        return None
    title = schema.get("title") if isinstance(schema, dict) else None
    return title if isinstance(title, str) else None


def sql_template_recorder(session_factory: Optional[sessionmaker] = None) -> TemplateRecorder:
    """Upsert one ``TemplateRecord`` per imported component."""

    def record(result: ArchiveImportResult) -> None:
        with db_session(session_factory) as session:
            for slug in result.components:
                row = session.scalars(select(TemplateRecord).where(TemplateRecord.slug == slug)).first()
                if row is None:
                    row = TemplateRecord(slug=slug, name=result.title or slug, type="component", tags=[])
                    session.add(row)
                elif result.title:
                    row.name = result.title
                row.import_id = result.import_id
                row.archive_key = result.prefix

    return record


class ArchiveImporter:
    def __init__(
        self,
        bus: Optional[TemplateEventBus] = None,
        client: Optional[Minio] = None,
        bucket: Optional[str] = None,
        recorder: Optional[TemplateRecorder] = None,
        required_files: Optional[Sequence[RequiredFile]] = None,
    ) -> None:
        self._bus = bus
        self._client = client
        self._bucket = bucket
        self._recorder = recorder
        self._required_files = required_files

    def _fail(
        self,
        import_id: str,
        user_id: str,
        started: float,
        error: Exception,
        details: Any,
        request_id: Optional[str],
    ) -> None:
        duration = int((time.monotonic() - started) * 1000)
        logger.error("archive_importer.failed import_id=%s user_id=%s: %s", import_id, user_id, error)
        if self._bus is not None:
            self._bus.emit_import_failed(
                TemplateImportFailedPayload(
                    import_id=import_id,
                    user_id=user_id,
                    error=str(error),
                    duration_ms=duration,
                    details=details,
                    request_id=request_id,
                )
            )

    def __call__(self, zip_bytes: bytes, user_id: str, request_id: Optional[str] = None) -> ArchiveImportResult:
        import_id = uuid4().hex
        started = time.monotonic()

        try:
            result = self._import(zip_bytes, user_id, import_id, started, request_id)
        except TemplateZipValidationError as exc:
            self._fail(import_id, user_id, started, exc, exc.details, request_id)
            raise ArchiveImportError(str(exc), details=exc.details) from exc
        except (zipfile.BadZipFile, UnsafePathError) as exc:
            self._fail(import_id, user_id, started, exc, None, request_id)
            raise ArchiveImportError(f"Invalid template archive: {exc}") from exc
        except Exception as exc:
            self._fail(import_id, user_id, started, exc, None, request_id)
            raise

        logger.info(
            "archive_importer.success import_id=%s user_id=%s objects=%d components=%d duration_ms=%d",
            import_id,
            user_id,
            len(result.objects),
            len(result.components),
            result.duration_ms,
        )
        if self._bus is not None:
            self._bus.emit_imported(
                TemplateImportedPayload(
                    import_id=import_id,
                    user_id=user_id,
                    pages=list(result.pages),
                    components=list(result.components),
                    duration_ms=result.duration_ms,
                    assets_base=result.prefix,
                    request_id=request_id,
                )
            )
        return result

    def _import(
        self,
        zip_bytes: bytes,
        user_id: str,
        import_id: str,
        started: float,
        request_id: Optional[str],
    ) -> ArchiveImportResult:
        with zipfile.ZipFile(io.BytesIO(zip_bytes)) as archive:
            validate_template_zip(archive, self._required_files)
            entries = [info for info in archive.infolist() if not info.is_dir()]
            names = [ensure_relative(info.filename.replace("\\", "/")) for info in entries]

            client = self._client or get_minio_client()
            bucket = self._bucket or get_template_bucket()
            ensure_bucket(client, bucket)

            prefix = build_import_prefix(user_id, import_id)
            objects: List[str] = []
            for info, name in zip(entries, names):
                object_name = f"{prefix}/{name}"
                content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
                upload_bytes(client, bucket, object_name, archive.read(info), content_type)
                objects.append(object_name)

            pages, components = classify_entries(names)
            result = ArchiveImportResult(
                import_id=import_id,
                user_id=user_id,
                bucket=bucket,
                prefix=prefix,
                objects=objects,
                pages=pages,
                components=components,
                title=_read_title(archive),
                request_id=request_id,
            )

        if self._recorder is not None:
            self._recorder(result)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result
