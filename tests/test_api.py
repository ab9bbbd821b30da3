"""Tests for the FastAPI routes.

Covers:
- POST /pipeline/runs: container scan (orchestrator mocked)
- POST /pipeline/records: single key
- POST /checks/{record_id}/process: processing only
- GET /checks/{record_id}: committed state lookup
- invalid configuration surfaces as 500 with every bad field named
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from checkdeposit.api.deps import get_check_store, get_orchestrator
from checkdeposit.db.repositories import StoreName
from checkdeposit.pipeline.orchestrator import PipelineOrchestrator
from checkdeposit.pipeline.records import CheckRecord, CheckStatus
from checkdeposit.pipeline.results import BatchOutcome, PipelineOutcome
from checkdeposit.tasks.error_handler import ErrorCategory

KEY = "alice@example.com^12345^50.00.png"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def orchestrator() -> MagicMock:
    return MagicMock(spec=PipelineOrchestrator)


@pytest.fixture()
def api(client, orchestrator, store):
    from checkdeposit.main import app

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_check_store] = lambda: store
    return client


def _ok(status: CheckStatus = CheckStatus.PROCESSED) -> PipelineOutcome:
    return PipelineOutcome(file_name=KEY, record_id="rec-1", succeeded=True, status=status, source_deleted=True)


def _failed(category: ErrorCategory, stage: str = "ocr") -> PipelineOutcome:
    return PipelineOutcome(
        file_name=KEY,
        record_id="rec-1",
        succeeded=False,
        status=CheckStatus.AUDITED,
        failed_stage=stage,
        category=category,
        reason="boom",
    )


# ===========================================================================
# POST /pipeline/runs
# ===========================================================================


class TestRunContainer:

    def test_success(self, api, orchestrator):
        orchestrator.run_all.return_value = BatchOutcome(container="incoming", outcomes=(_ok(),))

        response = api.post("/pipeline/runs", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] is True
        assert body["outcomes"][0]["status"] == "processed"
        assert body["outcomes"][0]["source_deleted"] is True
        orchestrator.run_all.assert_called_once_with(None)

    def test_container_override(self, api, orchestrator):
        orchestrator.run_all.return_value = BatchOutcome(container="other")
        api.post("/pipeline/runs", json={"container": "other"})
        orchestrator.run_all.assert_called_once_with("other")

    def test_transient_failure_is_503(self, api, orchestrator):
        orchestrator.run_all.return_value = BatchOutcome(
            container="incoming",
            outcomes=(_ok(), _failed(ErrorCategory.TRANSIENT)),
        )
        response = api.post("/pipeline/runs", json={})
        assert response.status_code == 503
        assert response.json()["outcomes"][1]["category"] == "transient"

    def test_contract_violation_is_422(self, api, orchestrator):
        orchestrator.run_all.return_value = BatchOutcome(
            container="incoming",
            outcomes=(_failed(ErrorCategory.CONTRACT_VIOLATION, "transform"),),
        )
        assert api.post("/pipeline/runs", json={}).status_code == 422

    def test_malformed_listing_is_422(self, api, orchestrator):
        orchestrator.run_all.return_value = BatchOutcome(
            container="incoming",
            listing_category=ErrorCategory.CONTRACT_VIOLATION,
            listing_error="no Contents",
        )
        response = api.post("/pipeline/runs", json={})
        assert response.status_code == 422
        assert response.json()["listing_error"] == "no Contents"


# ===========================================================================
# POST /pipeline/records, POST /checks/{id}/process
# ===========================================================================


class TestSingleRecordRoutes:

    def test_run_record(self, api, orchestrator):
        orchestrator.run_record.return_value = _ok(CheckStatus.REJECTED)

        response = api.post("/pipeline/records", json={"key": KEY})

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        orchestrator.run_record.assert_called_once_with(KEY, None)

    def test_run_record_requires_key(self, api):
        assert api.post("/pipeline/records", json={"key": ""}).status_code == 422

    def test_process(self, api, orchestrator):
        orchestrator.process_record.return_value = _failed(ErrorCategory.TRANSIENT, "process")

        response = api.post("/checks/rec-1/process")

        assert response.status_code == 503
        assert response.json()["failed_stage"] == "process"
        orchestrator.process_record.assert_called_once_with("rec-1")


# ===========================================================================
# GET /checks/{id}
# ===========================================================================


class TestGetCheck:

    def _insert(self, store, name: StoreName, status: CheckStatus) -> CheckRecord:
        record = CheckRecord.from_file_name(KEY, timestamp=1_700_000_000)
        record.status = status
        record.from_account = "987654321"
        record.routing_number = "123456789"
        store.insert(name, **record.to_row())
        return record

    def test_latest_store_wins(self, api, store):
        record = self._insert(store, StoreName.PARSED, CheckStatus.PARSED)
        self._insert(store, StoreName.PROCESSED, CheckStatus.PROCESSED)

        response = api.get(f"/checks/{record.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["store"] == "processed"
        assert body["status"] == "processed"
        assert body["amount"] == "50.00"
        assert body["routing_number"] == "123456789"

    def test_rejected(self, api, store):
        record = self._insert(store, StoreName.REJECTED, CheckStatus.REJECTED)
        assert api.get(f"/checks/{record.id}").json()["store"] == "rejected"

    def test_not_found(self, api):
        assert api.get("/checks/does-not-exist").status_code == 404


# ===========================================================================
# Configuration
# ===========================================================================


def test_invalid_configuration_is_500(client, monkeypatch):
    for name in ("INCOMING_CONTAINER", "OCR_URL", "NOTIFICATION_FROM_ADDRESS"):
        monkeypatch.delenv(name, raising=False)

    response = client.post("/pipeline/runs", json={})

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error"] == "invalid_configuration"
    assert "incoming_container" in detail["reasons"]
