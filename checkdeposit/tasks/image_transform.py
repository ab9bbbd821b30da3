"""Image transform stage: derive resized copies and durably store the images.

Runs after ingest, before OCR.  The source image is resized to two fixed
widths with its aspect ratio kept:

    300px  ->  archived store, file name "300px-<fileName>"
    150px  ->  archived store, file name "150px-<fileName>"

and the untouched original is written to the audited store, which is what
promotes the record to ``audited``.  Derivatives are written first so that an
audited record always has its archived copies.

All attachment names and ids are derived from the record id, so a retried
run writes to the same keys and a duplicate-key conflict counts as success.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from checkdeposit.db.repositories import CheckStore, InsertOutcome, StoreName
from checkdeposit.parsing.filename import file_extension
from checkdeposit.pipeline.records import (
    CheckRecord,
    CheckStatus,
    attachment_name_for,
    variant_id_for,
)
from checkdeposit.tasks.error_handler import (
    ContractViolationError,
    TransientStageError,
    UnsupportedImageFormat,
)

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS: frozenset[str] = frozenset({"bmp", "jpg", "png", "gif"})

DERIVATIVE_WIDTHS: tuple[int, ...] = (300, 150)


@dataclass(frozen=True, slots=True)
class DerivativeImage:
    width: int
    file_name: str
    attachment_name: str
    data: bytes


@dataclass(frozen=True, slots=True)
class DerivativeImageSet:
    """The original plus its resized copies; transient working state."""

    original: bytes
    original_attachment_name: str
    derivatives: tuple[DerivativeImage, ...]


def resize_to_width(data: bytes, width: int) -> bytes:
    """Return *data* resized to *width* pixels wide, same format, aspect ratio kept.

    Raises
    ------
    ContractViolationError
        If *data* is not a decodable image.
    TransientStageError
        If the imaging library fails while resizing or encoding.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            src_width, src_height = image.size
            height = max(1, round(src_height * width / src_width))
            resized = image.resize((width, height), Image.Resampling.LANCZOS)
    except UnidentifiedImageError as exc:
        raise ContractViolationError("Source file is not a readable image") from exc
    except (OSError, ValueError, MemoryError) as exc:
        raise TransientStageError(f"Resize to {width}px failed: {exc}") from exc

    buffer = io.BytesIO()
    try:
        resized.save(buffer, format=image_format)
    except (OSError, ValueError) as exc:
        raise TransientStageError(f"Encoding {width}px copy failed: {exc}") from exc
    return buffer.getvalue()


class ImageTransformStage:
    """Resize a check image and store the original and its derivatives."""

    name = "transform"

    def __init__(self, store: CheckStore) -> None:
        self.store = store

    def build_derivatives(self, record: CheckRecord, data: bytes) -> DerivativeImageSet:
        """Validate the format of *record*'s source and resize *data*."""
        extension = file_extension(record.file_name)
        if extension not in ALLOWED_EXTENSIONS:
            raise UnsupportedImageFormat(
                f"File is not an image: .{extension or '?'} is not one of {sorted(ALLOWED_EXTENSIONS)}",
                stage=self.name,
                record_id=record.id,
            )

        derivatives = []
        for width in DERIVATIVE_WIDTHS:
            logger.info("Resizing record %s image to %dpx wide", record.id, width)
            derivatives.append(
                DerivativeImage(
                    width=width,
                    file_name=f"{width}px-{record.file_name}",
                    attachment_name=attachment_name_for(record.id, f"{width}px"),
                    data=resize_to_width(data, width),
                )
            )
        return DerivativeImageSet(
            original=data,
            original_attachment_name=attachment_name_for(record.id),
            derivatives=tuple(derivatives),
        )

    def run(self, record: CheckRecord, data: bytes) -> DerivativeImageSet:
        """Store derivatives and the original; promote *record* to ``audited``."""
        images = self.build_derivatives(record, data)

        for derivative in images.derivatives:
            outcome = self.store.insert(
                StoreName.ARCHIVED,
                id=variant_id_for(record.id, f"{derivative.width}px"),
                record_id=record.id,
                file_name=derivative.file_name,
                attachment_name=derivative.attachment_name,
                content_type=record.content_type,
                width=derivative.width,
                data=derivative.data,
            )
            logger.info("Archived %dpx copy of record %s (%s)", derivative.width, record.id, outcome)

        row = record.to_row()
        row.update(
            status=str(CheckStatus.AUDITED),
            attachment_name=images.original_attachment_name,
            attachment=images.original,
        )
        outcome = self.store.insert(StoreName.AUDITED, **row)
        if outcome == InsertOutcome.CONFLICT:
            logger.info("Record %s was already audited by an earlier attempt", record.id)
            audited = self.store.get(StoreName.AUDITED, record.id)
            if audited is not None:
                # Later stores carry the timestamp of the first audit.
                record.timestamp = audited.timestamp

        record.mark_audited(images.original_attachment_name)
        return images
