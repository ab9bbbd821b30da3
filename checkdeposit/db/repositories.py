"""Repositories over the check stores.

``CheckStore`` is the record-store collaborator used by the pipeline.  Each
call runs in its own short session and commits before returning, so a stage
never proceeds past a write the database has not acknowledged.  A duplicate
primary key is reported as ``InsertOutcome.CONFLICT`` rather than raised:
the same logical record was already written by an earlier attempt.

Parsed and rejected rows go through ``commit_terminal``, which claims the
record id in ``terminal_checks`` within the same transaction, so two
concurrent deliveries of one record cannot commit both outcomes.
"""
from __future__ import annotations

import logging
from enum import StrEnum
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from checkdeposit.db import models
from checkdeposit.tasks.error_handler import TransientStageError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: str) -> ModelT | None:
        return self.db.get(self.model, entity_id)


class AuditedCheckRepository(BaseRepository[models.AuditedCheck]):
    model = models.AuditedCheck


class ArchivedImageRepository(BaseRepository[models.ArchivedImage]):
    model = models.ArchivedImage

    def list_for_record(self, record_id: str) -> list[models.ArchivedImage]:
        stmt = (
            select(models.ArchivedImage)
            .where(models.ArchivedImage.record_id == record_id)
            .order_by(models.ArchivedImage.width.desc())
        )
        return list(self.db.execute(stmt).scalars().all())


class ParsedCheckRepository(BaseRepository[models.ParsedCheck]):
    model = models.ParsedCheck


class RejectedCheckRepository(BaseRepository[models.RejectedCheck]):
    model = models.RejectedCheck


class ProcessedCheckRepository(BaseRepository[models.ProcessedCheck]):
    model = models.ProcessedCheck


# ---------------------------------------------------------------------------
# CheckStore
# ---------------------------------------------------------------------------


class StoreName(StrEnum):
    AUDITED = "audited"
    ARCHIVED = "archived"
    PARSED = "parsed"
    REJECTED = "rejected"
    PROCESSED = "processed"


class InsertOutcome(StrEnum):
    CREATED = "created"
    CONFLICT = "conflict"


_REPOSITORIES: dict[StoreName, type[BaseRepository]] = {
    StoreName.AUDITED: AuditedCheckRepository,
    StoreName.ARCHIVED: ArchivedImageRepository,
    StoreName.PARSED: ParsedCheckRepository,
    StoreName.REJECTED: RejectedCheckRepository,
    StoreName.PROCESSED: ProcessedCheckRepository,
}


class CheckStore:
    """Insert/get access to the five check stores with idempotent inserts."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def insert(self, store: StoreName, **fields) -> InsertOutcome:
        """Insert one row into *store*; a duplicate key returns CONFLICT.

        Raises
        ------
        TransientStageError
            If the database is unreachable or the write times out.
        """
        with self._session_factory() as db:
            repo = _REPOSITORIES[store](db)
            try:
                repo.create(**fields)
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("Insert into %s store hit an existing key for %s", store, fields.get("id"))
                return InsertOutcome.CONFLICT
            except OperationalError as exc:
                db.rollback()
                raise TransientStageError(f"{store} store unavailable: {exc.orig}") from exc
        return InsertOutcome.CREATED

    def commit_terminal(self, store: StoreName, **fields) -> InsertOutcome:
        """Claim the record id and insert its parsed or rejected row in one transaction.

        Returns CONFLICT, writing nothing, when any terminal outcome already
        holds the id.

        Raises
        ------
        TransientStageError
            If the database is unreachable or the write times out.
        """
        if store not in (StoreName.PARSED, StoreName.REJECTED):
            raise ValueError(f"{store} is not a terminal store")
        with self._session_factory() as db:
            try:
                db.add(models.TerminalCheck(id=fields["id"], store=str(store)))
                db.flush()
                _REPOSITORIES[store](db).create(**fields)
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("Record %s already holds a terminal outcome", fields.get("id"))
                return InsertOutcome.CONFLICT
            except OperationalError as exc:
                db.rollback()
                raise TransientStageError(f"{store} store unavailable: {exc.orig}") from exc
        return InsertOutcome.CREATED

    def get(self, store: StoreName, entity_id: str):
        """Return the row stored under *entity_id*, or None."""
        with self._session_factory() as db:
            try:
                return _REPOSITORIES[store](db).get(entity_id)
            except OperationalError as exc:
                raise TransientStageError(f"{store} store unavailable: {exc.orig}") from exc

    def list_archived(self, record_id: str) -> list[models.ArchivedImage]:
        with self._session_factory() as db:
            return ArchivedImageRepository(db).list_for_record(record_id)

    def find_terminal(self, record_id: str) -> tuple[StoreName, object] | None:
        """Return the parsed or rejected row for *record_id*, if one exists."""
        for store in (StoreName.PARSED, StoreName.REJECTED):
            row = self.get(store, record_id)
            if row is not None:
                return store, row
        return None
