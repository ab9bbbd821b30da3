"""The check record flowing through the pipeline and its status lifecycle.

Status moves strictly forward::

    incoming -> audited -> parsed   -> processed
                        `-> rejected

``parsed`` and ``rejected`` are mutually exclusive outcomes of MICR
validation.  A rejected record carries ``"-1"`` as both its source account
and routing number so it can never be mistaken for real banking data.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import StrEnum
from uuid import UUID, uuid5

from checkdeposit.parsing.filename import parse_deposit_file_name
from checkdeposit.parsing.micr import ABSENT, MicrParseResult

# Fixed namespace so the same file name always maps to the same record id.
CHECK_NAMESPACE = UUID("6f1c0d52-8a55-4b9f-9a2e-3c7d1e0b5a10")

INVALID_MARKER = ABSENT


class CheckStatus(StrEnum):
    INCOMING = "incoming"
    AUDITED = "audited"
    PARSED = "parsed"
    REJECTED = "rejected"
    PROCESSED = "processed"


_TRANSITIONS: dict[CheckStatus, frozenset[CheckStatus]] = {
    CheckStatus.INCOMING: frozenset({CheckStatus.AUDITED}),
    CheckStatus.AUDITED: frozenset({CheckStatus.PARSED, CheckStatus.REJECTED}),
    CheckStatus.PARSED: frozenset({CheckStatus.PROCESSED}),
    CheckStatus.REJECTED: frozenset(),
    CheckStatus.PROCESSED: frozenset(),
}

TERMINAL_STATUSES: frozenset[CheckStatus] = frozenset({CheckStatus.REJECTED, CheckStatus.PROCESSED})


class InvalidTransitionError(ValueError):
    """Raised when a record would move backwards or skip a status."""


def record_id_for(file_name: str) -> str:
    """Return the deterministic record id for a source file name."""
    return str(uuid5(CHECK_NAMESPACE, file_name))


def variant_id_for(record_id: str, variant: str) -> str:
    """Return the deterministic id of one stored image of a record."""
    return str(uuid5(CHECK_NAMESPACE, f"{record_id}:{variant}"))


def attachment_name_for(record_id: str, variant: str = "original") -> str:
    """Return the deterministic attachment name for one image of a record."""
    return f"att-{variant_id_for(record_id, variant)}"


@dataclass(slots=True)
class CheckRecord:
    id: str
    file_name: str
    email: str
    to_account: str
    amount: Decimal
    timestamp: int
    content_type: str | None = None
    attachment_name: str | None = None
    from_account: str | None = None
    routing_number: str | None = None
    status: CheckStatus = CheckStatus.INCOMING

    @classmethod
    def from_file_name(
        cls,
        file_name: str,
        content_type: str | None = None,
        timestamp: int | None = None,
    ) -> CheckRecord:
        """Create an ``incoming`` record from the deposit fields in *file_name*."""
        deposit = parse_deposit_file_name(file_name)
        return cls(
            id=record_id_for(file_name),
            file_name=file_name,
            email=deposit.email,
            to_account=deposit.to_account,
            amount=deposit.amount,
            timestamp=int(time.time()) if timestamp is None else timestamp,
            content_type=content_type,
        )

    # -- transitions ---------------------------------------------------------

    def advance(self, status: CheckStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Record {self.id} cannot move from {self.status} to {status}"
            )
        self.status = status

    def mark_audited(self, attachment_name: str) -> None:
        self.advance(CheckStatus.AUDITED)
        self.attachment_name = attachment_name

    def apply_micr(self, result: MicrParseResult | None) -> CheckStatus:
        """Move to ``parsed`` or ``rejected`` depending on *result*.

        ``None`` stands for plaintext the extractor refused outright.
        """
        if result is not None and result.is_valid():
            self.advance(CheckStatus.PARSED)
            self.from_account = result.account_number
            self.routing_number = result.routing_number
        else:
            self.advance(CheckStatus.REJECTED)
            self.from_account = INVALID_MARKER
            self.routing_number = INVALID_MARKER
        return self.status

    def mark_processed(self) -> None:
        self.advance(CheckStatus.PROCESSED)

    # -- persistence ---------------------------------------------------------

    def to_row(self) -> dict[str, object]:
        row = asdict(self)
        row["amount"] = str(self.amount)
        row["status"] = str(self.status)
        return row

    @classmethod
    def from_row(cls, row: object) -> CheckRecord:
        """Rebuild a record from an ORM row exposing the same column names."""
        return cls(
            id=row.id,
            file_name=row.file_name,
            email=row.email,
            to_account=row.to_account,
            amount=Decimal(row.amount),
            timestamp=row.timestamp,
            content_type=row.content_type,
            attachment_name=row.attachment_name,
            from_account=row.from_account,
            routing_number=row.routing_number,
            status=CheckStatus(row.status),
        )
