"""Check that a template archive carries the files the importer relies on."""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Set, Union


@dataclass(frozen=True)
class RequiredFile:
    name: str
    description: str


@dataclass
class ZipValidationDetail:
    code: str
    file: str
    message: str
    description: Optional[str] = None


DEFAULT_REQUIRED_FILES: Sequence[RequiredFile] = (
    RequiredFile("schema.json", "Template schema.json is missing"),
    RequiredFile("preview.html", "Template preview preview.html is missing"),
)


class TemplateZipValidationError(ValueError):
    status = 400

    def __init__(self, details: List[ZipValidationDetail]) -> None:
        super().__init__("Template ZIP validation failed")
        self.details = details


def normalize_entry_name(raw: str) -> str:
    segments = raw.replace("\\", "/").lstrip("/").split("/")
    return "/".join(segment for segment in segments if segment and segment != ".").lower()


def _entry_names(source: Union[bytes, zipfile.ZipFile, Iterable[str]]) -> Set[str]:
    if isinstance(source, (bytes, bytearray)):
        with zipfile.ZipFile(io.BytesIO(source)) as archive:
            return _entry_names(archive)
    if isinstance(source, zipfile.ZipFile):
        return {normalize_entry_name(info.filename) for info in source.infolist() if not info.is_dir()}
    return {normalize_entry_name(name) for name in source if not name.endswith("/")}


def _has_file(existing: Set[str], required: str) -> bool:
    normalized = normalize_entry_name(required)
    if normalized in existing:
        return True
    # one wrapping directory is allowed
    return any(name.endswith(f"/{normalized}") and name.count("/") == 1 for name in existing)


def validate_template_zip(
    source: Union[bytes, zipfile.ZipFile, Iterable[str]],
    required_files: Optional[Sequence[RequiredFile]] = None,
) -> None:
    """Raise ``TemplateZipValidationError`` listing every missing required file.

    ``source`` may be raw zip bytes, an open ``ZipFile`` or plain entry names.
    """

    existing = _entry_names(source)
    missing = [
        ZipValidationDetail(
            code="missing-file",
            file=requirement.name,
            message=f'Required file "{requirement.name}" not found in archive',
            description=requirement.description,
        )
        for requirement in (required_files if required_files is not None else DEFAULT_REQUIRED_FILES)
        if not _has_file(existing, requirement.name)
    ]
    if missing:
        raise TemplateZipValidationError(missing)
