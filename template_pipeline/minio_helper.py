"""MinIO access for template archives."""

from __future__ import annotations

import io
import os
import threading
from functools import lru_cache
from typing import Final

from minio import Minio
from minio.error import S3Error

from template_pipeline.path_utils import sanitize_path_segment

_client_lock = threading.Lock()
_DEFAULT_ENDPOINT: Final[str] = "localhost:9000"
_DEFAULT_BUCKET: Final[str] = "templates"


class StorageError(RuntimeError):
    """Raised when an object storage call fails."""


def _get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def get_template_bucket() -> str:
    return os.getenv("TEMPLATE_BUCKET", _DEFAULT_BUCKET)


@lru_cache(maxsize=1)
def _build_client() -> Minio:
    return Minio(
        os.getenv("MINIO_ENDPOINT", _DEFAULT_ENDPOINT),
        access_key=_get_required_env("MINIO_ACCESS_KEY"),
        secret_key=_get_required_env("MINIO_SECRET_KEY"),
        secure=_get_env_bool("MINIO_SECURE", False),
        region=os.getenv("MINIO_REGION"),
    )


def get_minio_client() -> Minio:
    """Return a cached MinIO client instance."""

    if _build_client.cache_info().currsize:
        return _build_client()

    with _client_lock:
        return _build_client()


def ensure_bucket(client: Minio, bucket_name: str) -> None:
    try:
        if not client.bucket_exists(bucket_name):
            client.make_bucket(bucket_name)
    except S3Error as exc:
        raise StorageError(f"Failed to ensure bucket '{bucket_name}': {exc}") from exc


def upload_bytes(client: Minio, bucket_name: str, object_name: str, data: bytes, content_type: str) -> None:
    try:
        client.put_object(
            bucket_name,
            object_name,
            io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
    except S3Error as exc:
        raise StorageError(f"Failed to upload '{object_name}' to '{bucket_name}': {exc}") from exc


def build_import_prefix(user_id: str, import_id: str) -> str:
    user_part = sanitize_path_segment(user_id, "user")
    import_part = sanitize_path_segment(import_id, "import")
    return f"templates/{user_part}/{import_part}"
