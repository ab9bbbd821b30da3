"""Pipeline orchestrator: drive each check record through its stages.

Stage order per record
----------------------
1. ingest     admit the source key as an ``incoming`` record
2. transform  download, resize, store derivatives and the audited original
3. ocr        read the MICR line through the OCR collaborator
4. record     parse/validate the line, commit ``parsed`` or ``rejected``
5. process    parsed only: processed-ledger insert, then notification
6. delete     remove the source image from the incoming container

Stages of one record run strictly in sequence; distinct records run
concurrently in a thread pool and share nothing but the collaborators.
Each stage attempt is wrapped into a ``StageResult``; transient failures are
retried with exponential backoff, anything else ends that record's run with
the source image left in place.  Re-delivering the same key later resumes
safely: every write is keyed by the deterministic record id, and a record
already committed as parsed/rejected skips straight to processing/deletion.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

from checkdeposit.core.credentials import TokenProvider
from checkdeposit.db.repositories import CheckStore
from checkdeposit.notification.email_sender import EmailSender
from checkdeposit.ocr.client import OcrClient
from checkdeposit.pipeline.config import PipelineConfig
from checkdeposit.pipeline.context import PipelineContext
from checkdeposit.pipeline.records import CheckRecord, CheckStatus
from checkdeposit.pipeline.results import BatchOutcome, PipelineOutcome, StageResult
from checkdeposit.storage.object_store import ObjectStore, SourceObject
from checkdeposit.tasks.error_handler import ErrorCategory, ErrorHandler, StageError
from checkdeposit.tasks.image_transform import ImageTransformStage
from checkdeposit.tasks.ingest import IngestStage
from checkdeposit.tasks.ocr_invocation import OcrInvocationStage
from checkdeposit.tasks.processing import ProcessingStage
from checkdeposit.tasks.recording import RecordingStage, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineOrchestrator:
    """Sequence the stages for each record with retry and idempotent resumption."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        object_store: ObjectStore,
        store: CheckStore,
        ocr_client: OcrClient,
        email_sender: EmailSender,
        token_provider: TokenProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.object_store = object_store
        self.token_provider = token_provider
        self.error_handler = ErrorHandler(
            max_attempts=config.max_attempts,
            backoff_base_s=config.backoff_base_s,
        )
        self.ingest = IngestStage(object_store)
        self.transform = ImageTransformStage(store)
        self.ocr = OcrInvocationStage(ocr_client)
        self.recording = RecordingStage(store)
        self.processing = ProcessingStage(store, email_sender)
        self._sleep = sleep

    # -- stage execution ----------------------------------------------------

    def _execute(self, stage: str, record_id: str | None, fn: Callable[..., T], *args) -> StageResult[T]:
        """Run *fn* under the retry policy and tag its outcome."""
        attempt = 1
        while True:
            try:
                value = fn(*args)
            except Exception as exc:
                if isinstance(exc, StageError):
                    exc.stage = exc.stage or stage
                    exc.record_id = exc.record_id or record_id
                category = self.error_handler.categorize(exc)
                if self.error_handler.should_retry(category, attempt):
                    delay = self.error_handler.backoff_delay(attempt)
                    logger.warning(
                        "Stage %s failed for record %s (attempt %d, %s): %s; retrying in %.1fs",
                        stage, record_id, attempt, category, exc, delay,
                    )
                    self._sleep(delay)
                    attempt += 1
                    continue
                logger.error(
                    "Stage %s failed for record %s after %d attempt(s) (%s): %s",
                    stage, record_id, attempt, category, exc,
                )
                if category in (ErrorCategory.TRANSIENT, ErrorCategory.UNKNOWN):
                    return StageResult.retryable(stage, record_id, exc, category)
                return StageResult.fatal(stage, record_id, exc, category)
            return StageResult.success(stage, record_id, value)

    def _new_context(self) -> PipelineContext:
        token = self.token_provider.fetch() if self.token_provider is not None else None
        return PipelineContext(config=self.config, token=token)

    def _refreshed(self, context: PipelineContext) -> PipelineContext:
        """Return *context*, or a new one when its access token has expired."""
        if context.token is not None and context.token.is_expired():
            logger.info("Access token expired; fetching a new one")
            return self._new_context()
        return context

    @staticmethod
    def _failed(
        key: str,
        result: StageResult,
        record: CheckRecord | None = None,
    ) -> PipelineOutcome:
        return PipelineOutcome(
            file_name=key,
            record_id=result.record_id,
            succeeded=False,
            status=record.status if record is not None else None,
            failed_stage=result.stage,
            category=result.category,
            reason=str(result.error),
        )

    # -- single record ------------------------------------------------------

    def run_record(self, key: str, container: str | None = None) -> PipelineOutcome:
        """Run the whole pipeline for the source image stored under *key*."""
        container = container or self.config.incoming_container

        admitted = self._execute(self.ingest.name, None, self.ingest.admit, key)
        if not admitted.ok:
            return self._failed(key, admitted)
        record = admitted.value

        auth = self._execute("authenticate", record.id, self._new_context)
        if not auth.ok:
            return self._failed(key, auth, record)
        context = auth.value

        existing = self._execute(self.recording.name, record.id, self.recording.existing_terminal, record.id)
        if not existing.ok:
            return self._failed(key, existing, record)

        if existing.value is not None:
            record = existing.value
            logger.info("Resuming record %s from committed status %s", record.id, record.status)
        else:
            download = self._execute("download", record.id, self.object_store.get, container, key)
            if not download.ok:
                return self._failed(key, download, record)

            transformed = self._execute(self.transform.name, record.id, self.transform.run, record, download.value)
            if not transformed.ok:
                return self._failed(key, transformed, record)

            auth = self._execute("authenticate", record.id, self._refreshed, context)
            if not auth.ok:
                return self._failed(key, auth, record)
            context = auth.value

            ocr = self._execute(self.ocr.name, record.id, self.ocr.run, context, record)
            if not ocr.ok:
                return self._failed(key, ocr, record)

            classify(record, ocr.value)
            recorded = self._execute(self.recording.name, record.id, self.recording.run, record)
            if not recorded.ok:
                return self._failed(key, recorded, record)
            record = recorded.value

        if record.status == CheckStatus.PARSED:
            auth = self._execute("authenticate", record.id, self._refreshed, context)
            if not auth.ok:
                return self._failed(key, auth, record)
            context = auth.value
            processed = self._execute(self.processing.name, record.id, self.processing.run, context, record)
            if not processed.ok:
                return self._failed(key, processed, record)

        deleted = self._execute("delete", record.id, self.object_store.delete, container, key)
        if not deleted.ok:
            return self._failed(key, deleted, record)

        logger.info("Record %s finished as %s", record.id, record.status)
        return PipelineOutcome(
            file_name=key,
            record_id=record.id,
            succeeded=True,
            status=record.status,
            source_deleted=True,
        )

    def process_record(self, record_id: str) -> PipelineOutcome:
        """Run only the processing stage for an already parsed record."""
        loaded = self._execute(self.processing.name, record_id, self.processing.load_parsed, record_id)
        if not loaded.ok:
            return self._failed(record_id, loaded)
        record = loaded.value
        if record is None:
            return PipelineOutcome(
                file_name=record_id,
                record_id=record_id,
                succeeded=False,
                failed_stage=self.processing.name,
                category=ErrorCategory.CONTRACT_VIOLATION,
                reason=f"No parsed record {record_id}",
            )

        auth = self._execute("authenticate", record_id, self._new_context)
        if not auth.ok:
            return self._failed(record.file_name, auth, record)

        processed = self._execute(self.processing.name, record_id, self.processing.run, auth.value, record)
        if not processed.ok:
            return self._failed(record.file_name, processed, record)
        return PipelineOutcome(
            file_name=record.file_name,
            record_id=record_id,
            succeeded=True,
            status=record.status,
        )

    # -- whole container ----------------------------------------------------

    def _discover(self, container: str) -> Iterator[SourceObject]:
        """Yield each candidate once, re-listing from scratch after a transient failure."""
        seen: set[str] = set()
        attempt = 1
        while True:
            try:
                for source in self.ingest.run(container):
                    if source.key in seen:
                        continue
                    seen.add(source.key)
                    yield source
                return
            except Exception as exc:
                category = self.error_handler.categorize(exc)
                if not self.error_handler.should_retry(category, attempt):
                    raise
                delay = self.error_handler.backoff_delay(attempt)
                logger.warning("Listing %s failed (attempt %d): %s; retrying in %.1fs", container, attempt, exc, delay)
                self._sleep(delay)
                attempt += 1

    def run_all(self, container: str | None = None) -> BatchOutcome:
        """Scan *container* and run every candidate's pipeline concurrently."""
        container = container or self.config.incoming_container
        listing_error: Exception | None = None

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = []
            try:
                for source in self._discover(container):
                    futures.append(pool.submit(self.run_record, source.key, container))
            except Exception as exc:
                logger.error("Listing %s failed: %s", container, exc)
                listing_error = exc
            outcomes = tuple(future.result() for future in futures)

        succeeded = sum(1 for outcome in outcomes if outcome.succeeded)
        logger.info(
            "Run over %s complete: %d record(s), %d succeeded, %d failed",
            container, len(outcomes), succeeded, len(outcomes) - succeeded,
        )
        if listing_error is None:
            return BatchOutcome(container=container, outcomes=outcomes)
        return BatchOutcome(
            container=container,
            outcomes=outcomes,
            listing_category=self.error_handler.categorize(listing_error),
            listing_error=str(listing_error),
        )
