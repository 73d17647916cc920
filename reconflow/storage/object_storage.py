"""
Object storage for uploaded source documents.

Two backends share one interface:
- LocalObjectStorage keeps files under UPLOAD_DIR
- S3ObjectStorage talks to S3 or an S3-compatible endpoint (R2, MinIO)

All methods are blocking; async callers run them with asyncio.to_thread.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.config import get_settings
from ..utils.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class ObjectMetadata:
    """Stored object description returned by head()."""
    key: str
    size: int
    content_type: str
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class ObjectStorage(ABC):
    """put/get/presign/head over string keys."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/pdf",
            metadata: Optional[Dict[str, str]] = None) -> ObjectMetadata:
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        pass

    @abstractmethod
    def head(self, key: str) -> ObjectMetadata:
        pass

    @abstractmethod
    def presign(self, key: str, expires_in: int = 3600, method: str = "get") -> str:
        pass

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class LocalObjectStorage(ObjectStorage):
    """Files on local disk; metadata kept in a sidecar JSON file."""

    META_SUFFIX = ".meta.json"

    def __init__(self, root_dir: str):
        self.root = Path(root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def _meta_path(self, key: str) -> Path:
        path = self._path(key)
        return path.with_name(path.name + self.META_SUFFIX)

    def put(self, key, data, content_type="application/pdf", metadata=None):
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self._meta_path(key).write_text(json.dumps({
                "content_type": content_type,
                "metadata": metadata or {},
            }))
        except OSError as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {key}")
        return self.head(key)

    def get(self, key):
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {key}", status_code=404) from e
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def head(self, key):
        path = self._path(key)
        if not path.exists():
            raise StorageError(f"Object not found: {key}", status_code=404)

        meta = {}
        meta_path = self._meta_path(key)
        if meta_path.exists():
            meta = json.loads(meta_path.read_text())

        stat = path.stat()
        return ObjectMetadata(
            key=key,
            size=stat.st_size,
            content_type=meta.get("content_type", "application/octet-stream"),
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=meta.get("metadata", {}),
        )

    def presign(self, key, expires_in=3600, method="get"):
        # Local files are served by path; expiry does not apply
        return self._path(key).as_uri()

    def list(self, prefix=""):
        keys = []
        for path in self.root.rglob("*"):
            if path.is_file() and not path.name.endswith(self.META_SUFFIX):
                key = path.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    def delete(self, key):
        self._path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)


class S3ObjectStorage(ObjectStorage):
    """S3-compatible bucket accessed through boto3."""

    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client or self._create_client()

    @staticmethod
    def _create_client():
        settings = get_settings()
        return boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            region_name=settings.S3_REGION,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        )

    def put(self, key, data, content_type="application/pdf", metadata=None):
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={
                    **(metadata or {}),
                    "uploadedAt": datetime.now(timezone.utc).isoformat(),
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store {key}: {e}") from e

        return ObjectMetadata(key=key, size=len(data), content_type=content_type, metadata=metadata or {})

    def get(self, key):
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to read {key}: {e}", status_code=_status_of(e)) from e

    def head(self, key):
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to inspect {key}: {e}", status_code=_status_of(e)) from e

        return ObjectMetadata(
            key=key,
            size=response.get("ContentLength", 0),
            content_type=response.get("ContentType", "application/octet-stream"),
            last_modified=response.get("LastModified"),
            metadata=response.get("Metadata", {}),
        )

    def presign(self, key, expires_in=3600, method="get"):
        operation = "put_object" if method == "put" else "get_object"
        try:
            return self.client.generate_presigned_url(
                operation,
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to presign {key}: {e}") from e

    def list(self, prefix=""):
        try:
            response = self.client.list_objects_v2(Bucket=self.bucket, Prefix=prefix)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        return [item["Key"] for item in response.get("Contents", [])]

    def delete(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e


def _status_of(error: Exception) -> Optional[int]:
    """404 for missing keys, otherwise the default storage error status."""
    if isinstance(error, ClientError) and error.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
        return 404
    return None


def create_storage(backend: Optional[str] = None) -> ObjectStorage:
    """Factory function to create the configured storage backend."""
    settings = get_settings()
    backend = (backend or settings.STORAGE_BACKEND).lower()

    if backend == "s3":
        return S3ObjectStorage(settings.S3_BUCKET)
    if backend == "local":
        return LocalObjectStorage(settings.UPLOAD_DIR)
    raise ValueError(f"Unknown storage backend: {backend}")
