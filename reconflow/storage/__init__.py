"""Object storage backends."""

from .object_storage import ObjectStorage, ObjectMetadata, LocalObjectStorage, S3ObjectStorage, create_storage

__all__ = ["ObjectStorage", "ObjectMetadata", "LocalObjectStorage", "S3ObjectStorage", "create_storage"]
