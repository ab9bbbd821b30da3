"""Tagged stage results and the per-record pipeline outcome."""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

from checkdeposit.pipeline.records import CheckStatus
from checkdeposit.tasks.error_handler import ErrorCategory

T = TypeVar("T")


class Outcome(StrEnum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True, slots=True)
class StageResult(Generic[T]):
    """What one stage produced: ``success(value) | retryable(err) | fatal(err)``."""

    stage: str
    record_id: str | None
    outcome: Outcome
    value: T | None = None
    error: BaseException | None = None
    category: ErrorCategory | None = None

    @classmethod
    def success(cls, stage: str, record_id: str | None, value: T) -> StageResult[T]:
        return cls(stage=stage, record_id=record_id, outcome=Outcome.SUCCESS, value=value)

    @classmethod
    def retryable(
        cls, stage: str, record_id: str | None, error: BaseException, category: ErrorCategory
    ) -> StageResult[T]:
        return cls(stage=stage, record_id=record_id, outcome=Outcome.RETRYABLE, error=error, category=category)

    @classmethod
    def fatal(
        cls, stage: str, record_id: str | None, error: BaseException, category: ErrorCategory
    ) -> StageResult[T]:
        return cls(stage=stage, record_id=record_id, outcome=Outcome.FATAL, error=error, category=category)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS


@dataclass(frozen=True, slots=True)
class PipelineOutcome:
    """Final result of one record's pipeline invocation."""

    file_name: str
    record_id: str | None
    succeeded: bool
    status: CheckStatus | None = None
    failed_stage: str | None = None
    category: ErrorCategory | None = None
    reason: str | None = None
    source_deleted: bool = False

    def as_dict(self) -> dict[str, object]:
        return {
            "file_name": self.file_name,
            "record_id": self.record_id,
            "succeeded": self.succeeded,
            "status": str(self.status) if self.status else None,
            "failed_stage": self.failed_stage,
            "category": str(self.category) if self.category else None,
            "reason": self.reason,
            "source_deleted": self.source_deleted,
        }


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Result of scanning one container and running every candidate found."""

    container: str
    outcomes: tuple[PipelineOutcome, ...] = ()
    listing_category: ErrorCategory | None = None
    listing_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.listing_error is None and all(outcome.succeeded for outcome in self.outcomes)

    def as_dict(self) -> dict[str, object]:
        return {
            "container": self.container,
            "succeeded": self.succeeded,
            "listing_category": str(self.listing_category) if self.listing_category else None,
            "listing_error": self.listing_error,
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
        }
