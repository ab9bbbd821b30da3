"""Ingest stage: discover incoming check images and admit them as records.

Every invocation asks the object store for a fresh listing; there is no
persisted cursor.  Re-running the stage after a crash therefore sees exactly
the images that were not yet fully processed, because a source image is only
deleted once everything downstream of it has been committed.

An empty container is a normal outcome and yields nothing.
"""
from __future__ import annotations

import logging
import mimetypes
from collections.abc import Iterator

from checkdeposit.pipeline.records import CheckRecord
from checkdeposit.storage.object_store import ObjectStore, SourceObject

logger = logging.getLogger(__name__)


class IngestStage:
    """List candidate images in a container and turn them into ``incoming`` records."""

    name = "ingest"

    def __init__(self, object_store: ObjectStore) -> None:
        self.object_store = object_store

    def run(self, container: str) -> Iterator[SourceObject]:
        """Lazily yield candidates from *container*; read-only."""
        count = 0
        for source in self.object_store.list_objects(container):
            count += 1
            yield source
        logger.info("Ingest listing complete: %d candidate(s) in %s", count, container)

    def admit(self, key: str) -> CheckRecord:
        """Create the ``incoming`` record for the object stored under *key*.

        Raises ``MalformedFileNameError`` when the key does not carry the
        deposit fields.
        """
        content_type, _ = mimetypes.guess_type(key)
        record = CheckRecord.from_file_name(key, content_type=content_type)
        logger.info("Admitted %s as record %s", key, record.id)
        return record
