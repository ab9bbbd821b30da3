"""Object storage holding incoming check images.

Implements the pluggable ``ObjectStore`` interface.  The pipeline does not
know or care which backend a check image came from:

    S3ObjectStore          any S3-compatible service (AWS, IBM COS, MinIO)
    FilesystemObjectStore  one directory per container, for local runs

Contract shared by every backend:

    list_objects(container)  lazy, finite; a fresh listing on every call
    get(container, key)      raw bytes of the object
    delete(container, key)   an already missing object counts as deleted

Transport faults surface as ``TransientStageError``; a listing without its
expected shape surfaces as ``MalformedListingError``.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from checkdeposit.tasks.error_handler import (
    ContractViolationError,
    MalformedListingError,
    TransientStageError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES: frozenset[str] = frozenset({"404", "NoSuchKey", "NotFound"})
_THROTTLING_CODES: frozenset[str] = frozenset({
    "Throttling", "ThrottlingException", "SlowDown", "RequestTimeout", "ServiceUnavailable",
})


@dataclass(frozen=True, slots=True)
class SourceObject:
    """Candidate file descriptor produced by a listing."""

    key: str
    last_modified: datetime | None = None


class ObjectStore(ABC):
    """Pluggable interface for object-storage adapters."""

    @abstractmethod
    def list_objects(self, container: str) -> Iterator[SourceObject]:
        """Yield a SourceObject for every object currently in *container*."""
        ...

    @abstractmethod
    def get(self, container: str, key: str) -> bytes:
        """Return the bytes of *key* in *container*."""
        ...

    @abstractmethod
    def delete(self, container: str, key: str) -> None:
        """Remove *key* from *container*; a missing object is not an error."""
        ...


# ---------------------------------------------------------------------------
# S3
# ---------------------------------------------------------------------------


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _status_code(exc: ClientError) -> int:
    return int(exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def _translate_client_error(exc: ClientError, action: str) -> Exception:
    if _status_code(exc) >= 500 or _error_code(exc) in _THROTTLING_CODES:
        return TransientStageError(f"{action} failed: {exc}")
    return ContractViolationError(f"{action} rejected: {exc}")


class S3ObjectStore(ObjectStore):
    """Object storage over the S3 API.

    Parameters
    ----------
    client:
        A preconfigured boto3 S3 client.  When omitted one is created from
        *endpoint_url* and *region_name* with boto3's default credential chain.
    """

    def __init__(
        self,
        client=None,
        *,
        endpoint_url: str | None = None,
        region_name: str | None = None,
    ) -> None:
        self._client = client or boto3.client("s3", endpoint_url=endpoint_url, region_name=region_name)

    def list_objects(self, container: str) -> Iterator[SourceObject]:
        kwargs: dict[str, str] = {"Bucket": container}
        while True:
            try:
                page = self._client.list_objects_v2(**kwargs)
            except BotoCoreError as exc:
                raise TransientStageError(f"Listing {container} failed: {exc}") from exc
            except ClientError as exc:
                raise _translate_client_error(exc, f"Listing {container}") from exc

            if not isinstance(page, Mapping):
                raise MalformedListingError(f"Listing of {container} is not a mapping")
            # An empty bucket comes back without a Contents key at all.
            contents = page.get("Contents", [])
            if not isinstance(contents, list):
                raise MalformedListingError(f"Listing of {container} has non-list Contents")

            for entry in contents:
                if not isinstance(entry, Mapping) or not entry.get("Key"):
                    raise MalformedListingError(f"Listing of {container} has an entry without Key")
                yield SourceObject(key=entry["Key"], last_modified=entry.get("LastModified"))

            if not page.get("IsTruncated"):
                return
            token = page.get("NextContinuationToken")
            if not token:
                raise MalformedListingError(f"Truncated listing of {container} has no continuation token")
            kwargs["ContinuationToken"] = token

    def get(self, container: str, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=container, Key=key)
            return response["Body"].read()
        except BotoCoreError as exc:
            raise TransientStageError(f"Download of {key} failed: {exc}") from exc
        except ClientError as exc:
            raise _translate_client_error(exc, f"Download of {key}") from exc

    def delete(self, container: str, key: str) -> None:
        try:
            self._client.delete_object(Bucket=container, Key=key)
        except BotoCoreError as exc:
            raise TransientStageError(f"Delete of {key} failed: {exc}") from exc
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES or _status_code(exc) == 404:
                logger.info("Object %s already removed from %s", key, container)
                return
            raise _translate_client_error(exc, f"Delete of {key}") from exc


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FilesystemObjectStore(ObjectStore):
    """Treat each sub-directory of *root* as a container of flat objects."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _container(self, container: str) -> Path:
        path = self.root / container
        if not path.is_dir():
            raise ContractViolationError(f"Container {container!r} does not exist under {self.root}")
        return path

    def list_objects(self, container: str) -> Iterator[SourceObject]:
        directory = self._container(container)
        try:
            paths = sorted(p for p in directory.iterdir() if p.is_file())
        except OSError as exc:
            raise TransientStageError(f"Listing {container} failed: {exc}") from exc
        for path in paths:
            try:
                mtime = path.stat().st_mtime
            except FileNotFoundError:
                continue
            yield SourceObject(key=path.name, last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc))

    def get(self, container: str, key: str) -> bytes:
        path = self._container(container) / key
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ContractViolationError(f"Object {key!r} not found in {container!r}") from exc
        except OSError as exc:
            raise TransientStageError(f"Download of {key} failed: {exc}") from exc

    def delete(self, container: str, key: str) -> None:
        path = self._container(container) / key
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise TransientStageError(f"Delete of {key} failed: {exc}") from exc


def build_object_store(settings) -> ObjectStore:
    """Return the backend selected by ``settings.object_storage_backend``."""
    backend = settings.object_storage_backend.lower()
    if backend == "s3":
        return S3ObjectStore(
            endpoint_url=settings.object_storage_endpoint,
            region_name=settings.object_storage_region,
        )
    if backend == "filesystem":
        return FilesystemObjectStore(settings.object_storage_root)
    raise ValueError(f"Unknown object storage backend {settings.object_storage_backend!r}")
