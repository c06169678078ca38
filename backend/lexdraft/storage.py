from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

import boto3

from lexdraft.config import Settings

DOCUMENTS_FOLDER = "documents"
GENERATED_FOLDER = "generated-documents"
_S3_SCHEME = "s3://"


class StorageError(RuntimeError):
    """Raised when document storage read/write fails."""


@dataclass(frozen=True)
class S3Location:
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"{_S3_SCHEME}{self.bucket}/{self.key}"

    @classmethod
    def parse(cls, uri: str) -> "S3Location":
        raw = uri.strip()
        if not raw.lower().startswith(_S3_SCHEME):
            raise StorageError(f"Not an S3 URI: '{uri}'")
        bucket, _, key = raw[len(_S3_SCHEME) :].partition("/")
        if not bucket.strip() or not key.strip():
            raise StorageError(f"Invalid S3 URI: '{uri}' (expected s3://<bucket>/<key>)")
        return cls(bucket=bucket.strip(), key=key.strip())


def _storage_backend(settings: Settings) -> str:
    normalized = (settings.storage_backend or "").strip().lower()
    if normalized in {"local", "filesystem", "fs"}:
        return "local"
    if normalized == "s3":
        return "s3"
    raise StorageError(f"Unsupported STORAGE_BACKEND '{settings.storage_backend}'. Use 'local' or 's3'.")


def _is_s3_uri(path: str) -> bool:
    return path.strip().lower().startswith(_S3_SCHEME)


def _clean_folder(folder: str) -> str:
    return "/".join(part for part in folder.strip("/").split("/") if part and part not in {".", ".."})


def _s3_client(settings: Settings):
    return boto3.client("s3", region_name=settings.aws_region)


def save_object_bytes(
    *,
    settings: Settings,
    folder: str,
    file_name: str,
    content_type: str,
    content: bytes,
    unique_prefix: bool = True,
) -> str:
    """Write bytes under ``folder`` and return the storage path (local path or s3:// URI)."""
    backend = _storage_backend(settings)
    base_name = Path(file_name).name or "upload.bin"
    object_name = f"{uuid4()}_{base_name}" if unique_prefix else base_name
    relative_folder = _clean_folder(folder)

    if backend == "local":
        destination = Path(settings.storage_root) / relative_folder / object_name
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
        return str(destination)

    bucket = (settings.s3_bucket or "").strip()
    if not bucket:
        raise StorageError("S3 storage backend selected but S3_BUCKET is not configured.")
    prefix = (settings.s3_prefix or "").strip().strip("/")
    location = S3Location(
        bucket=bucket,
        key="/".join(part for part in (prefix, relative_folder, object_name) if part),
    )
    try:
        _s3_client(settings).put_object(
            Bucket=location.bucket,
            Key=location.key,
            Body=content,
            ContentType=content_type or "application/octet-stream",
        )
    except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
        raise StorageError(f"Failed to write object to S3 ({location.uri}): {exc}") from exc
    return location.uri


def save_document_bytes(
    *,
    settings: Settings,
    user_id: str,
    case_id: str | None,
    file_name: str,
    content_type: str,
    content: bytes,
) -> str:
    return save_object_bytes(
        settings=settings,
        folder=f"{DOCUMENTS_FOLDER}/{user_id}/{case_id or 'unassigned'}",
        file_name=file_name,
        content_type=content_type,
        content=content,
    )


def load_document_bytes(*, settings: Settings, storage_path: str) -> bytes:
    raw = (storage_path or "").strip()
    if not raw:
        raise StorageError("Missing storage path.")

    if not _is_s3_uri(raw):
        path = Path(raw)
        if not path.is_file():
            raise StorageError(f"Stored file not found at '{raw}'.")
        return path.read_bytes()

    location = S3Location.parse(raw)
    try:
        response = _s3_client(settings).get_object(Bucket=location.bucket, Key=location.key)
    except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
        raise StorageError(f"Failed to read document from S3 ({location.uri}): {exc}") from exc
    body = response.get("Body")
    if body is None:
        raise StorageError(f"S3 get_object returned no body ({location.uri}).")
    return body.read()


def create_download_url(*, settings: Settings, storage_path: str, local_route: str) -> str:
    """Return a time-limited URL for S3 objects, or the API route serving a local file."""
    raw = (storage_path or "").strip()
    if not _is_s3_uri(raw):
        return f"{local_route.rstrip('/')}/{Path(raw).name}"

    location = S3Location.parse(raw)
    try:
        return _s3_client(settings).generate_presigned_url(
            "get_object",
            Params={"Bucket": location.bucket, "Key": location.key},
            ExpiresIn=settings.signed_url_expiry_seconds,
        )
    except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
        raise StorageError(f"Failed to create signed URL ({location.uri}): {exc}") from exc


def resolve_generated_path(*, settings: Settings, file_name: str) -> Path:
    if not file_name or Path(file_name).name != file_name:
        raise StorageError(f"Invalid generated document name '{file_name}'.")
    path = Path(settings.storage_root) / GENERATED_FOLDER / file_name
    if not path.is_file():
        raise StorageError(f"Generated document '{file_name}' was not found.")
    return path
