"""Pipeline invocation routes.

POST /pipeline/runs             scan a container and run every candidate
POST /pipeline/records          run the pipeline for one source key
POST /checks/{record_id}/process  run only the processing stage
GET  /checks/{record_id}        current committed state of a record

Every invocation is idempotent: re-posting the same payload after a failure
resumes the same record ids.  A failed invocation answers 503 when the
failure is worth retrying and 422 when it needs a human.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from checkdeposit.api.deps import get_check_store, get_orchestrator
from checkdeposit.db.repositories import CheckStore, StoreName
from checkdeposit.pipeline.orchestrator import PipelineOrchestrator
from checkdeposit.pipeline.records import CheckRecord
from checkdeposit.pipeline.results import BatchOutcome, PipelineOutcome
from checkdeposit.tasks.error_handler import ErrorCategory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])

_LOOKUP_ORDER = (StoreName.PROCESSED, StoreName.PARSED, StoreName.REJECTED, StoreName.AUDITED)

_NEEDS_HUMAN = frozenset({ErrorCategory.CONTRACT_VIOLATION, ErrorCategory.VALIDATION})


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class RunBody(BaseModel):
    container: str | None = None


class RecordBody(BaseModel):
    key: str = Field(min_length=1)
    container: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status_code(categories: list[ErrorCategory | None], succeeded: bool) -> int:
    if succeeded:
        return 200
    if categories and all(category in _NEEDS_HUMAN for category in categories):
        return 422
    return 503


def _record_response(outcome: PipelineOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=_status_code([outcome.category], outcome.succeeded),
        content=outcome.as_dict(),
    )


def _batch_response(batch: BatchOutcome) -> JSONResponse:
    categories = [outcome.category for outcome in batch.outcomes if not outcome.succeeded]
    if batch.listing_error is not None:
        categories.append(batch.listing_category)
    return JSONResponse(
        status_code=_status_code(categories, batch.succeeded),
        content=batch.as_dict(),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/pipeline/runs", summary="Scan a container and process every check image")
def run_container(body: RunBody, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _batch_response(orchestrator.run_all(body.container))


@router.post("/pipeline/records", summary="Process one check image")
def run_record(body: RecordBody, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _record_response(orchestrator.run_record(body.key, body.container))


@router.post("/checks/{record_id}/process", summary="Record and notify a parsed check")
def process_check(record_id: str, orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    return _record_response(orchestrator.process_record(record_id))


@router.get("/checks/{record_id}", summary="Committed state of a check record")
def get_check(record_id: str, store: CheckStore = Depends(get_check_store)):
    for name in _LOOKUP_ORDER:
        row = store.get(name, record_id)
        if row is None:
            continue
        record = CheckRecord.from_row(row)
        return {
            "store": str(name),
            "id": record.id,
            "file_name": record.file_name,
            "email": record.email,
            "to_account": record.to_account,
            "from_account": record.from_account,
            "routing_number": record.routing_number,
            "amount": str(record.amount),
            "timestamp": record.timestamp,
            "status": str(record.status),
        }
    raise HTTPException(status_code=404, detail=f"Check record {record_id} not found")
