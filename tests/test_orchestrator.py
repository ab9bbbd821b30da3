"""End-to-end tests for checkdeposit/pipeline/orchestrator.py.

Uses a real sqlite CheckStore and a FilesystemObjectStore on tmp_path; the
OCR client, email sender and token provider are MagicMocks.  ``sleep`` is
replaced by a recorder so backoff never actually waits.
"""
from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from checkdeposit.core.credentials import AccessToken, TokenProvider
from checkdeposit.db.repositories import StoreName
from checkdeposit.notification.email_sender import DeliveryReceipt, EmailSender
from checkdeposit.ocr.client import OcrClient
from checkdeposit.pipeline.orchestrator import PipelineOrchestrator
from checkdeposit.pipeline.records import CheckStatus, record_id_for
from checkdeposit.storage.object_store import FilesystemObjectStore
from checkdeposit.tasks.error_handler import (
    ErrorCategory,
    MalformedListingError,
    TransientStageError,
)
from conftest import encode, make_image

ALICE = "alice@example.com^12345^50.00.png"
GOOD_MICR = "[123456789[ 987654321@"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def incoming(tmp_path):
    path = tmp_path / "objects" / "incoming"
    path.mkdir(parents=True)
    return path


@pytest.fixture()
def object_store(incoming):
    return FilesystemObjectStore(incoming.parent)


@pytest.fixture()
def ocr_client():
    client = MagicMock(spec=OcrClient)
    client.read_micr.return_value = encode(GOOD_MICR)
    return client


@pytest.fixture()
def email_sender():
    sender = MagicMock(spec=EmailSender)
    sender.send.side_effect = lambda notification, record_id: DeliveryReceipt(
        record_id=record_id, status="SENT", timestamp=None, smtp_response="250 OK"
    )
    return sender


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def orchestrator(config, object_store, store, ocr_client, email_sender, sleeps):
    return PipelineOrchestrator(
        config,
        object_store=object_store,
        store=store,
        ocr_client=ocr_client,
        email_sender=email_sender,
        sleep=sleeps.append,
    )


def _drop(incoming, name: str = ALICE, data: bytes | None = None) -> str:
    (incoming / name).write_bytes(make_image() if data is None else data)
    return name


# ===========================================================================
# Happy paths
# ===========================================================================


class TestSingleRecord:

    def test_valid_check_is_processed(self, orchestrator, incoming, store, email_sender):
        key = _drop(incoming)

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is True
        assert outcome.status == CheckStatus.PROCESSED
        assert outcome.source_deleted is True
        assert not (incoming / key).exists()

        record_id = record_id_for(key)
        parsed = store.get(StoreName.PARSED, record_id)
        assert parsed.email == "alice@example.com"
        assert parsed.to_account == "12345"
        assert parsed.from_account == "987654321"
        assert parsed.routing_number == "123456789"
        assert Decimal(parsed.amount) == Decimal("50.00")
        assert parsed.status == "parsed"

        assert store.get(StoreName.PROCESSED, record_id).status == "processed"
        assert store.get(StoreName.REJECTED, record_id) is None
        assert [image.width for image in store.list_archived(record_id)] == [300, 150]

        notification = email_sender.send.call_args.args[0]
        assert notification.to_email == "alice@example.com"
        assert "987654321-123456789" in notification.body

    def test_line_without_delimiters_is_rejected(self, orchestrator, incoming, store, ocr_client, email_sender):
        key = _drop(incoming)
        ocr_client.read_micr.return_value = encode("123456789 987654321")

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is True
        assert outcome.status == CheckStatus.REJECTED
        rejected = store.get(StoreName.REJECTED, record_id_for(key))
        assert rejected.from_account == "-1"
        assert rejected.routing_number == "-1"
        assert store.get(StoreName.PARSED, record_id_for(key)) is None
        email_sender.send.assert_not_called()
        assert not (incoming / key).exists()

    def test_empty_plaintext_is_rejected(self, orchestrator, incoming, store, ocr_client):
        key = _drop(incoming)
        ocr_client.read_micr.return_value = None

        outcome = orchestrator.run_record(key)

        assert outcome.status == CheckStatus.REJECTED
        assert store.get(StoreName.REJECTED, record_id_for(key)) is not None

    def test_ocr_receives_audited_attachment(self, orchestrator, incoming, store, ocr_client):
        key = _drop(incoming)
        orchestrator.run_record(key)

        record_id, image_ref, token = ocr_client.read_micr.call_args.args
        assert record_id == record_id_for(key)
        assert image_ref == store.get(StoreName.AUDITED, record_id).attachment_name
        assert token is None


# ===========================================================================
# Failures
# ===========================================================================


class TestFailures:

    def test_unsupported_format_keeps_source(self, orchestrator, incoming, store, ocr_client):
        key = _drop(incoming, "alice@example.com^12345^50.00.tiff")

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is False
        assert outcome.failed_stage == "transform"
        assert outcome.category == ErrorCategory.CONTRACT_VIOLATION
        assert outcome.status == CheckStatus.INCOMING
        assert (incoming / key).exists()
        assert store.get(StoreName.AUDITED, record_id_for(key)) is None
        ocr_client.read_micr.assert_not_called()

    def test_malformed_file_name(self, orchestrator, incoming, sleeps):
        key = _drop(incoming, "scan-0001.png")

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is False
        assert outcome.failed_stage == "ingest"
        assert outcome.category == ErrorCategory.CONTRACT_VIOLATION
        assert outcome.record_id is None
        assert (incoming / key).exists()
        assert sleeps == []

    def test_transient_ocr_failure_backs_off(self, orchestrator, incoming, ocr_client, sleeps):
        key = _drop(incoming)
        ocr_client.read_micr.side_effect = [
            TransientStageError("timeout"),
            TransientStageError("timeout"),
            encode(GOOD_MICR),
        ]

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is True
        assert ocr_client.read_micr.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_exhausted_retries_are_retryable(self, orchestrator, incoming, store, ocr_client, sleeps):
        key = _drop(incoming)
        ocr_client.read_micr.side_effect = TransientStageError("down")

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is False
        assert outcome.failed_stage == "ocr"
        assert outcome.category == ErrorCategory.TRANSIENT
        assert outcome.status == CheckStatus.AUDITED
        assert "stage=ocr" in outcome.reason
        assert ocr_client.read_micr.call_count == 3
        assert sleeps == [1.0, 2.0]
        assert (incoming / key).exists()
        assert store.find_terminal(record_id_for(key)) is None

    def test_unknown_error_retried_once(self, orchestrator, incoming, ocr_client, sleeps):
        key = _drop(incoming)
        ocr_client.read_micr.side_effect = KeyError("surprise")

        outcome = orchestrator.run_record(key)

        assert outcome.category == ErrorCategory.UNKNOWN
        assert ocr_client.read_micr.call_count == 2
        assert sleeps == [1.0]

    def test_processing_failure_then_process_record(
        self, orchestrator, incoming, store, email_sender
    ):
        key = _drop(incoming)
        email_sender.send.side_effect = TransientStageError("relay down")

        outcome = orchestrator.run_record(key)

        record_id = record_id_for(key)
        assert outcome.succeeded is False
        assert outcome.failed_stage == "process"
        assert outcome.status == CheckStatus.PARSED
        assert (incoming / key).exists()
        assert store.get(StoreName.PARSED, record_id) is not None

        email_sender.send.side_effect = None
        email_sender.send.return_value = DeliveryReceipt(record_id, "SENT", None, "250 OK")
        retried = orchestrator.process_record(record_id)

        assert retried.succeeded is True
        assert retried.status == CheckStatus.PROCESSED
        assert retried.file_name == key

    def test_process_record_unknown_id(self, orchestrator):
        outcome = orchestrator.process_record("missing")
        assert outcome.succeeded is False
        assert outcome.category == ErrorCategory.CONTRACT_VIOLATION


# ===========================================================================
# Idempotent re-runs
# ===========================================================================


class TestIdempotence:

    def test_rerun_after_ocr_failure(self, orchestrator, incoming, store, ocr_client):
        key = _drop(incoming)
        ocr_client.read_micr.side_effect = TransientStageError("down")
        assert orchestrator.run_record(key).succeeded is False

        ocr_client.read_micr.side_effect = None
        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is True
        assert outcome.status == CheckStatus.PROCESSED
        assert len(store.list_archived(record_id_for(key))) == 2
        assert not (incoming / key).exists()

    def test_rerun_keeps_audit_timestamp(self, orchestrator, incoming, store, ocr_client):
        key = _drop(incoming)
        record_id = record_id_for(key)
        ocr_client.read_micr.side_effect = TransientStageError("down")
        with patch("checkdeposit.pipeline.records.time") as clock:
            clock.time.return_value = 1_700_000_000
            assert orchestrator.run_record(key).succeeded is False

        ocr_client.read_micr.side_effect = None
        with patch("checkdeposit.pipeline.records.time") as clock:
            clock.time.return_value = 1_700_000_900
            assert orchestrator.run_record(key).succeeded is True

        assert store.get(StoreName.AUDITED, record_id).timestamp == 1_700_000_000
        assert store.get(StoreName.PARSED, record_id).timestamp == 1_700_000_000
        assert store.get(StoreName.PROCESSED, record_id).timestamp == 1_700_000_000

    def test_rerun_after_delete_failure(self, orchestrator, object_store, incoming, store, ocr_client, email_sender):
        key = _drop(incoming)
        real_delete = object_store.delete

        with patch.object(object_store, "delete", side_effect=TransientStageError("disk")) as delete:
            first = orchestrator.run_record(key)
        assert first.succeeded is False
        assert first.failed_stage == "delete"
        assert delete.call_count == 3
        assert (incoming / key).exists()

        with patch.object(object_store, "delete", side_effect=real_delete) as delete:
            second = orchestrator.run_record(key)

        assert second.succeeded is True
        assert delete.call_count == 1
        assert ocr_client.read_micr.call_count == 1
        assert store.get(StoreName.PARSED, record_id_for(key)) is not None
        assert store.get(StoreName.REJECTED, record_id_for(key)) is None
        assert not (incoming / key).exists()

    def test_rejected_record_is_not_reparsed(self, orchestrator, object_store, incoming, store, ocr_client):
        key = _drop(incoming)
        ocr_client.read_micr.return_value = encode("nothing useful")

        with patch.object(object_store, "delete", side_effect=TransientStageError("disk")):
            orchestrator.run_record(key)

        ocr_client.read_micr.return_value = encode(GOOD_MICR)
        outcome = orchestrator.run_record(key)

        assert outcome.status == CheckStatus.REJECTED
        assert ocr_client.read_micr.call_count == 1
        assert store.get(StoreName.PARSED, record_id_for(key)) is None


# ===========================================================================
# Whole-container runs
# ===========================================================================


class TestRunAll:

    def test_empty_container(self, orchestrator):
        batch = orchestrator.run_all()
        assert batch.outcomes == ()
        assert batch.succeeded is True

    def test_concurrent_records(self, orchestrator, incoming, store, email_sender):
        keys = [
            _drop(incoming, "alice@example.com^12345^50.00.png"),
            _drop(incoming, "bob@example.com^777^12.34.png"),
            _drop(incoming, "carol@example.com^42^0.99.png"),
        ]

        batch = orchestrator.run_all()

        assert batch.succeeded is True
        assert sorted(outcome.file_name for outcome in batch.outcomes) == sorted(keys)
        assert all(outcome.status == CheckStatus.PROCESSED for outcome in batch.outcomes)
        assert email_sender.send.call_count == 3
        assert list(incoming.iterdir()) == []
        for key in keys:
            assert store.get(StoreName.PROCESSED, record_id_for(key)) is not None

    def test_one_bad_record_does_not_stop_others(self, orchestrator, incoming):
        _drop(incoming, "alice@example.com^12345^50.00.png")
        _drop(incoming, "not-a-deposit.png")

        batch = orchestrator.run_all()

        assert batch.succeeded is False
        by_name = {outcome.file_name: outcome for outcome in batch.outcomes}
        assert by_name["alice@example.com^12345^50.00.png"].succeeded is True
        assert by_name["not-a-deposit.png"].failed_stage == "ingest"

    def test_token_fetched_per_record(self, config, object_store, store, ocr_client, email_sender, incoming):
        provider = MagicMock(spec=TokenProvider)
        provider.fetch.return_value = AccessToken("tok")
        orchestrator = PipelineOrchestrator(
            config,
            object_store=object_store,
            store=store,
            ocr_client=ocr_client,
            email_sender=email_sender,
            token_provider=provider,
            sleep=lambda _: None,
        )
        _drop(incoming, "alice@example.com^12345^50.00.png")
        _drop(incoming, "bob@example.com^777^12.34.png")

        orchestrator.run_all()

        assert provider.fetch.call_count == 2
        assert all(call.args[2] == AccessToken("tok") for call in ocr_client.read_micr.call_args_list)

    def test_expired_token_refreshed_before_ocr(self, config, object_store, store, ocr_client, email_sender, incoming):
        provider = MagicMock(spec=TokenProvider)
        provider.fetch.side_effect = [AccessToken("stale", expires_at=1.0), AccessToken("fresh")]
        orchestrator = PipelineOrchestrator(
            config,
            object_store=object_store,
            store=store,
            ocr_client=ocr_client,
            email_sender=email_sender,
            token_provider=provider,
            sleep=lambda _: None,
        )
        key = _drop(incoming)

        outcome = orchestrator.run_record(key)

        assert outcome.succeeded is True
        assert provider.fetch.call_count == 2
        assert ocr_client.read_micr.call_args.args[2] == AccessToken("fresh")

    def test_malformed_listing(self, orchestrator, object_store, sleeps):
        with patch.object(object_store, "list_objects", side_effect=MalformedListingError("no Contents")):
            batch = orchestrator.run_all()

        assert batch.succeeded is False
        assert batch.outcomes == ()
        assert batch.listing_category == ErrorCategory.CONTRACT_VIOLATION
        assert sleeps == []

    def test_transient_listing_is_relisted(self, orchestrator, object_store, incoming, sleeps):
        _drop(incoming)
        listing = list(object_store.list_objects("incoming"))

        with patch.object(
            object_store, "list_objects", side_effect=[TransientStageError("blip"), listing]
        ):
            batch = orchestrator.run_all()

        assert batch.succeeded is True
        assert len(batch.outcomes) == 1
        assert sleeps == [1.0]
