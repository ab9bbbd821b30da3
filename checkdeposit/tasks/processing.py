"""Processing stage: ledger insert, then customer notification.

A waterfall: the notification is only attempted once the processed ledger
holds the record, and the stage fails if either step fails.  A retried stage
finds the ledger entry already present (a conflict, treated as success) and
sends the email again; duplicate notifications are accepted.
"""
from __future__ import annotations

import logging

from checkdeposit.db.repositories import CheckStore, StoreName
from checkdeposit.notification.email_sender import DeliveryReceipt, EmailSender, build_notification
from checkdeposit.pipeline.context import PipelineContext
from checkdeposit.pipeline.records import CheckRecord, CheckStatus, InvalidTransitionError

logger = logging.getLogger(__name__)


class ProcessingStage:
    name = "process"

    def __init__(self, store: CheckStore, sender: EmailSender) -> None:
        self.store = store
        self.sender = sender

    def load_parsed(self, record_id: str) -> CheckRecord | None:
        row = self.store.get(StoreName.PARSED, record_id)
        return CheckRecord.from_row(row) if row is not None else None

    def run(self, context: PipelineContext, record: CheckRecord) -> DeliveryReceipt:
        if record.status != CheckStatus.PARSED:
            raise InvalidTransitionError(f"Record {record.id} is {record.status}, only parsed records are processed")

        row = record.to_row()
        row["status"] = str(CheckStatus.PROCESSED)
        outcome = self.store.insert(StoreName.PROCESSED, **row)
        logger.info("Processed ledger insert for record %s: %s", record.id, outcome)

        notification = build_notification(record, context.config.notification_from_address)
        receipt = self.sender.send(notification, record.id)

        record.mark_processed()
        return receipt
