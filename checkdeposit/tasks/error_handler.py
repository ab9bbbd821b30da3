"""Error handling: categorize stage failures and decide retry vs. abort.

Every stage reports a failure as a ``StageError`` subclass carrying the
stage name and record id.  The orchestrator asks ``ErrorHandler`` whether
the failure is worth another attempt and how long to wait before it.

Error categories
----------------
TRANSIENT          : network/disk faults, timeouts, 5xx, resize faults; retryable
CONTRACT_VIOLATION : malformed collaborator response, unsupported image format,
                     malformed file name; non-retryable, record left untouched
VALIDATION         : MICR line failed validation; routed to Rejected, never retried
UNKNOWN            : uncategorized; retryable once then escalated
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorCategory(StrEnum):
    TRANSIENT = "transient"
    CONTRACT_VIOLATION = "contract_violation"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class StageError(Exception):
    """Base class for failures reported by a pipeline stage."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        record_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.record_id = record_id

    def __str__(self) -> str:
        where = ", ".join(
            f"{key}={value}"
            for key, value in (("stage", self.stage), ("record_id", self.record_id))
            if value
        )
        message = super().__str__()
        return f"{message} [{where}]" if where else message


class TransientStageError(StageError):
    """Raised for failures that may succeed when the stage is re-run."""

    category = ErrorCategory.TRANSIENT


class ContractViolationError(StageError):
    """Raised when a collaborator or input breaks its documented contract."""

    category = ErrorCategory.CONTRACT_VIOLATION


class UnsupportedImageFormat(ContractViolationError):
    """Raised when the source file extension is not an allowed raster format."""


class MalformedListingError(ContractViolationError):
    """Raised when an object-store listing lacks its expected shape."""


class MalformedFileNameError(ContractViolationError):
    """Raised when a source file name does not follow ``email^account^amount.ext``."""


# ---------------------------------------------------------------------------
# ErrorHandler
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorHandler:
    """Categorize failures and apply the retry policy."""

    max_attempts: int = 3
    backoff_base_s: float = 1.0

    def categorize(self, error: BaseException) -> ErrorCategory:
        """Map an exception to its ErrorCategory."""
        from checkdeposit.parsing.micr import MicrValidationError

        if isinstance(error, StageError):
            return error.category
        if isinstance(error, MicrValidationError):
            return ErrorCategory.VALIDATION
        if isinstance(error, (TimeoutError, ConnectionError, OSError)):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.UNKNOWN

    def should_retry(self, category: ErrorCategory, attempt: int) -> bool:
        """Return True if the category is retryable and *attempt* is below max_attempts."""
        if attempt >= self.max_attempts:
            return False
        if category == ErrorCategory.TRANSIENT:
            return True
        if category == ErrorCategory.UNKNOWN:
            return attempt < 2
        return False

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based): base, 2*base, 4*base, ..."""
        return self.backoff_base_s * (2 ** (attempt - 1))
