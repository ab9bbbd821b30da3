"""Recording stage: commit the MICR outcome of a check record.

A record leaves MICR validation as ``parsed`` or ``rejected`` and is written
to the matching store under its id.  At most one terminal entry exists per
id: the store claims the id atomically, and when another delivery of the
same record got there first its entry wins and nothing new is written.
Only once this stage succeeds may the source image be deleted.
"""
from __future__ import annotations

import logging

from checkdeposit.db.repositories import CheckStore, InsertOutcome, StoreName
from checkdeposit.parsing.micr import MicrParseResult, MicrValidationError, parse_micr_line
from checkdeposit.pipeline.records import CheckRecord, CheckStatus, InvalidTransitionError
from checkdeposit.tasks.error_handler import TransientStageError

logger = logging.getLogger(__name__)

_STORES: dict[CheckStatus, StoreName] = {
    CheckStatus.PARSED: StoreName.PARSED,
    CheckStatus.REJECTED: StoreName.REJECTED,
}


def classify(record: CheckRecord, plaintext: str) -> MicrParseResult | None:
    """Parse *plaintext* and move *record* to ``parsed`` or ``rejected``."""
    try:
        result = parse_micr_line(plaintext)
    except MicrValidationError as exc:
        logger.warning("MICR line of record %s unusable: %s", record.id, exc)
        result = None

    status = record.apply_micr(result)
    if status == CheckStatus.REJECTED and result is not None:
        logger.info(
            "Record %s rejected: routing=%s account_length=%d",
            record.id,
            result.routing_number,
            len(result.account_number),
        )
    return result


class RecordingStage:
    name = "record"

    def __init__(self, store: CheckStore) -> None:
        self.store = store

    def existing_terminal(self, record_id: str) -> CheckRecord | None:
        """Return the already committed parsed/rejected record, if any."""
        found = self.store.find_terminal(record_id)
        if found is None:
            return None
        _, row = found
        return CheckRecord.from_row(row)

    def run(self, record: CheckRecord) -> CheckRecord:
        if record.status not in _STORES:
            raise InvalidTransitionError(f"Record {record.id} is {record.status}, not parsed or rejected")

        existing = self.existing_terminal(record.id)
        if existing is not None:
            logger.info("Record %s already committed as %s", record.id, existing.status)
            return existing

        store = _STORES[record.status]
        outcome = self.store.commit_terminal(store, **record.to_row())
        if outcome == InsertOutcome.CONFLICT:
            winner = self.existing_terminal(record.id)
            if winner is None:
                raise TransientStageError(
                    f"Record {record.id} is claimed but its terminal row is not readable yet",
                    stage=self.name,
                    record_id=record.id,
                )
            logger.info("Record %s was concurrently committed as %s", record.id, winner.status)
            return winner
        logger.info("Inserted record %s into the %s store", record.id, store)
        return record
