from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

from app.campus.constants import ALLOWED_IMAGE_EXTENSIONS
from app.campus.errors import UploadTooLarge, ValidationError


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Key escapes storage root: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        try:
            return self._path(key).is_file()
        except StorageError:
            return False


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    prefix: str = "uploads/"

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=self.prefix + key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=self.prefix + key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=self.prefix + key)
            return True
        except ClientError:
            return False


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    return LocalStorage(root=Path(config.get("UPLOAD_DIR") or "uploads"))


def _size_label(n: int) -> str:
    if n >= 1024 * 1024:
        return f"{n // (1024 * 1024)}MB"
    if n >= 1024:
        return f"{n // 1024}KB"
    return f"{n} bytes"


def image_extension(filename: str) -> str | None:
    fn = secure_filename(filename or "")
    if "." not in fn:
        return None
    ext = fn.rsplit(".", 1)[1].lower()
    return ext if ext in ALLOWED_IMAGE_EXTENSIONS else None


@dataclass(frozen=True)
class MediaStore:
    """
    Stores uploaded images under a generated name and hands back the public
    path. Callers persist only that path.
    """

    storage: Storage
    max_bytes: int
    url_prefix: str = "/uploads/"

    def save_image(self, data: bytes, filename: str, content_type: str | None = None) -> str:
        if not data:
            raise ValidationError("The uploaded image is empty.")
        if len(data) > self.max_bytes:
            raise UploadTooLarge(f"Image too large. Maximum size is {_size_label(self.max_bytes)}.")
        ext = image_extension(filename)
        if ext is None:
            allowed = ", ".join(sorted(ALLOWED_IMAGE_EXTENSIONS))
            raise ValidationError(f"Unsupported image type. Allowed: {allowed}.")
        key = f"{uuid.uuid4().hex}.{ext}"
        self.storage.put_bytes(key, data, content_type=content_type)
        return self.url_prefix + key


def media_store_from_config(config: dict) -> MediaStore:
    return MediaStore(
        storage=storage_from_config(config),
        max_bytes=int(config.get("MAX_IMAGE_BYTES") or 5 * 1024 * 1024),
    )
