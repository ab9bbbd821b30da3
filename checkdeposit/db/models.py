from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, LargeBinary, String, func
from sqlalchemy.orm import Mapped, mapped_column

from checkdeposit.db.base import Base


class CheckColumnsMixin:
    """Columns shared by every store that holds a check record, keyed by record id."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    email: Mapped[str] = mapped_column(String(512), nullable=False)
    to_account: Mapped[str] = mapped_column(String(64), nullable=False)
    from_account: Mapped[str | None] = mapped_column(String(64), nullable=True)
    routing_number: Mapped[str | None] = mapped_column(String(16), nullable=True)
    # Kept as text so the deposited amount round-trips exactly.
    amount: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    attachment_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditedCheck(CheckColumnsMixin, Base):
    __tablename__ = "audited_checks"

    attachment: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class ArchivedImage(Base):
    __tablename__ = "archived_images"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    record_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    attachment_name: Mapped[str] = mapped_column(String(64), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ParsedCheck(CheckColumnsMixin, Base):
    __tablename__ = "parsed_checks"


class RejectedCheck(CheckColumnsMixin, Base):
    __tablename__ = "rejected_checks"


class ProcessedCheck(CheckColumnsMixin, Base):
    __tablename__ = "processed_checks"


class TerminalCheck(Base):
    """One row per record id that reached ``parsed`` or ``rejected``.

    Written in the same transaction as the parsed or rejected row, so its
    primary key lets only one terminal outcome commit per id.
    """

    __tablename__ = "terminal_checks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    store: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
