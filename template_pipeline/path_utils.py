"""Slug and path helpers shared by the parser, the builder and storage keys."""

from __future__ import annotations

import hashlib
import posixpath
import re
from pathlib import Path
from typing import Union


class UnsafePathError(ValueError):
    """Raised when a relative path would escape its root directory."""


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to one hyphen, trim hyphens."""

    candidate = re.sub(r"[^a-z0-9]+", "-", value.lower())
    return candidate.strip("-")


def to_kebab_case(value: str, fallback: str = "component") -> str:
    candidate = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", value.strip())
    candidate = re.sub(r"[^a-zA-Z0-9]+", "-", candidate).strip("-").lower()
    return candidate or fallback


def sanitize_path_segment(value: str, fallback: str) -> str:
    """Sanitize user-provided identifiers for inclusion in object keys."""

    candidate = re.sub(r"[^0-9A-Za-z._-]", "-", value.strip())
    candidate = re.sub(r"-+", "-", candidate).strip("-._")
    return candidate or fallback


def ensure_relative(path: str) -> str:
    """Normalize ``path`` as a POSIX relative path, rejecting traversal."""

    normalized = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
    if normalized in {"", "."}:
        raise UnsafePathError(f"Empty path is not allowed: {path!r}")
    if normalized == ".." or normalized.startswith("../"):
        raise UnsafePathError(f"Path escapes output root: {path!r}")
    return normalized


def sanitize_filename(filename: str) -> str:
    segments = [segment for segment in filename.replace("\\", "/").split("/") if segment]
    safe = re.sub(r"[^a-zA-Z0-9\-_./]", "-", "/".join(segments))
    return ensure_relative(safe)


def posix_join(*segments: str) -> str:
    parts = []
    for segment in segments:
        parts.extend(part for part in re.split(r"[\\/]+", segment) if part)
    return "/".join(parts)


def resolve_inside(root: Union[str, Path], relative: str) -> Path:
    """Join ``relative`` onto ``root`` and verify the result stays inside it."""

    safe_relative = ensure_relative(relative)
    root_path = Path(root).resolve()
    target = (root_path / safe_relative).resolve()
    if target != root_path and root_path not in target.parents:
        raise UnsafePathError(f"Path escapes output root: {relative!r}")
    return target


def content_hash(content: Union[str, bytes], length: int = 8) -> str:
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.md5(data).hexdigest()[:length]
