"""OCR invocation stage: read the MICR line of an audited check image."""
from __future__ import annotations

import base64
import binascii
import logging

from checkdeposit.ocr.client import OcrClient
from checkdeposit.pipeline.context import PipelineContext
from checkdeposit.pipeline.records import CheckRecord
from checkdeposit.tasks.error_handler import TransientStageError

logger = logging.getLogger(__name__)


def decode_plaintext(encoded: str | None) -> str:
    """Decode the OCR service's base64 plaintext to ASCII.

    Line breaks and other characters outside the base64 alphabet are
    skipped, and bytes outside ASCII become U+FFFD, so OCR noise around the
    MICR line never hides it.  Only a missing value or base64 that cannot be
    decoded at all becomes ``""``, which the MICR parser then rejects.
    """
    if not encoded:
        return ""
    try:
        raw = base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        logger.warning("OCR plaintext could not be decoded")
        return ""
    return raw.decode("ascii", errors="replace")


class OcrInvocationStage:
    """Hand an audited image to the OCR collaborator; blocks until it answers."""

    name = "ocr"

    def __init__(self, client: OcrClient) -> None:
        self.client = client

    def run(self, context: PipelineContext, record: CheckRecord) -> str:
        if context.token is not None and context.token.is_expired():
            raise TransientStageError(
                "Access token expired before the OCR call", stage=self.name, record_id=record.id
            )
        logger.info("Executing OCR parse of record %s", record.id)
        encoded = self.client.read_micr(record.id, record.attachment_name, context.token)
        return decode_plaintext(encoded)
