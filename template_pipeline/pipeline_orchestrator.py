"""Run a parsed prompt through build, schema, preview, patch and zip.

Stages run strictly in that order against one working directory. Warnings from
every stage are concatenated in stage order. The importer is an opaque
callable ``(zip_bytes, user_id, request_id=...)`` whose return value is passed
through untouched.
"""

from __future__ import annotations

import io
import json
import logging
import os
import time
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from template_pipeline.component_builder import build_component
from template_pipeline.package_patch import PackagePatchResult, StylePatchEntry, create_package_patch
from template_pipeline.pipeline_metrics import PipelineMetricsCollector
from template_pipeline.preview_builder import build_preview
from template_pipeline.prompt_models import ParsedPrompt
from template_pipeline.schema_generator import generate_schema


logger = logging.getLogger(__name__)

SCHEMA_FILENAME = "schema.json"
DEFAULTS_FILENAME = "defaults.json"
DEFAULT_STYLE_PATH = "styles/generated.css"

PACKAGE_STAGE = "package"
IMPORT_STAGE = "import"

Importer = Callable[..., Any]


class PipelineError(RuntimeError):
    """Raised when a pipeline run cannot start or complete."""


class ImporterRequiredError(PipelineError):
    """Raised when auto-import is requested without an importer."""


@dataclass
class PipelineRunResult:
    slug: str
    out_dir: str
    zip_bytes: bytes
    schema_path: str
    defaults_path: str
    preview_path: str
    package_patch: PackagePatchResult
    import_result: Any = None
    warnings: List[str] = field(default_factory=list)


def zip_directory(directory: str) -> bytes:
    """Zip every file below ``directory`` with slash-separated relative names."""

    root = Path(directory)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for filename in sorted(filenames):
                absolute = Path(dirpath) / filename
                relative = absolute.relative_to(root).as_posix()
                archive.writestr(relative, absolute.read_bytes())
    return buffer.getvalue()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _package(
    prompt: ParsedPrompt,
    existing_package_json_path: Optional[str],
    existing_tailwind_config_path: Optional[str],
) -> PipelineRunResult:
    warnings: List[str] = []

    component = build_component(prompt)
    warnings.extend(component.warnings)

    schema = generate_schema(prompt)
    warnings.extend(schema.warnings)
    schema_path = os.path.join(component.out_dir, SCHEMA_FILENAME)
    defaults_path = os.path.join(component.out_dir, DEFAULTS_FILENAME)
    with open(schema_path, "w", encoding="utf-8") as fh:
        json.dump(schema.schema, fh, indent=2, ensure_ascii=False, allow_nan=False)
    with open(defaults_path, "w", encoding="utf-8") as fh:
        json.dump(schema.defaults, fh, indent=2, ensure_ascii=False, allow_nan=False)

    preview = build_preview(
        out_dir=component.out_dir,
        component_file=component.component_file,
        slug=component.slug,
        demo_file=component.demo_file,
    )
    warnings.extend(preview.warnings)

    package_patch = create_package_patch(
        component.npm_packages,
        [
            StylePatchEntry(path=entry.filename or DEFAULT_STYLE_PATH, content=entry.content)
            for entry in component.style_entries
        ],
        existing_package_json_path=existing_package_json_path,
        existing_tailwind_config_path=existing_tailwind_config_path,
    )
    warnings.extend(package_patch.warnings)

    return PipelineRunResult(
        slug=component.slug,
        out_dir=component.out_dir,
        zip_bytes=zip_directory(component.out_dir),
        schema_path=schema_path,
        defaults_path=defaults_path,
        preview_path=preview.preview_path,
        package_patch=package_patch,
        warnings=warnings,
    )


def run_pipeline(
    prompt: ParsedPrompt,
    user_id: Optional[str],
    request_id: Optional[str] = None,
    auto_import: bool = False,
    existing_package_json_path: Optional[str] = None,
    existing_tailwind_config_path: Optional[str] = None,
    importer: Optional[Importer] = None,
    metrics: Optional[PipelineMetricsCollector] = None,
) -> PipelineRunResult:
    if not user_id:
        raise PipelineError("user_id required")
    if auto_import and importer is None:
        raise ImporterRequiredError("Importer function is required for auto_import")

    started = time.monotonic()
    try:
        result = _package(prompt, existing_package_json_path, existing_tailwind_config_path)
    except Exception as exc:
        logger.error("pipeline.package.failed request_id=%s: %s", request_id, exc)
        if metrics is not None:
            metrics.record_failure(PACKAGE_STAGE, str(exc), request_id=request_id)
        raise

    if metrics is not None:
        metrics.record_success(
            PACKAGE_STAGE,
            template_slug=result.slug,
            duration_ms=_elapsed_ms(started),
            request_id=request_id,
        )
    logger.info(
        "pipeline.package slug=%s zip_bytes=%d warnings=%d",
        result.slug,
        len(result.zip_bytes),
        len(result.warnings),
    )

    if auto_import:
        import_started = time.monotonic()
        try:
            result.import_result = importer(result.zip_bytes, user_id, request_id=request_id)
        except Exception as exc:
            logger.error("pipeline.import.failed slug=%s request_id=%s: %s", result.slug, request_id, exc)
            if metrics is not None:
                metrics.record_failure(
                    IMPORT_STAGE, str(exc), request_id=request_id, metadata={"slug": result.slug}
                )
            raise
        if metrics is not None:
            metrics.record_success(
                IMPORT_STAGE,
                template_slug=result.slug,
                duration_ms=_elapsed_ms(import_started),
                request_id=request_id,
            )

    return result
