"""Pipeline configuration, validated once when an invocation starts."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from checkdeposit.core.settings import Settings


class PipelineConfigError(ValueError):
    """Raised when the pipeline configuration is incomplete or invalid.

    ``reasons`` maps each offending field name to a human-readable reason.
    """

    def __init__(self, reasons: dict[str, str]) -> None:
        self.reasons = reasons
        detail = "; ".join(f"{name}: {reason}" for name, reason in sorted(reasons.items()))
        super().__init__(f"Invalid pipeline configuration: {detail}")


class PipelineConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    incoming_container: str = Field(min_length=1)
    ocr_url: str = Field(min_length=1)
    ocr_timeout_s: float = Field(default=60.0, gt=0)
    smtp_host: str = Field(min_length=1)
    smtp_port: int = Field(default=587, ge=1, le=65535)
    notification_from_address: str = Field(min_length=3)
    iam_url: str = Field(min_length=1)
    iam_api_key: str | None = None
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_s: float = Field(default=1.0, ge=0)
    max_workers: int = Field(default=4, ge=1)

    @field_validator("ocr_url", "iam_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value

    @field_validator("notification_from_address")
    @classmethod
    def _email_address(cls, value: str) -> str:
        if "@" not in value:
            raise ValueError("must be an email address")
        return value

    @classmethod
    def load(cls, data: dict[str, object]) -> PipelineConfig:
        """Validate *data*; raise ``PipelineConfigError`` naming every bad field."""
        try:
            return cls(**data)
        except ValidationError as exc:
            reasons: dict[str, str] = {}
            for error in exc.errors():
                name = ".".join(str(part) for part in error["loc"]) or "config"
                reasons.setdefault(name, error["msg"])
            raise PipelineConfigError(reasons) from exc

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls.load(
            {
                "incoming_container": settings.incoming_container,
                "ocr_url": settings.ocr_url,
                "ocr_timeout_s": settings.ocr_timeout_s,
                "smtp_host": settings.smtp_host,
                "smtp_port": settings.smtp_port,
                "notification_from_address": settings.notification_from_address,
                "iam_url": settings.iam_url,
                "iam_api_key": settings.iam_api_key,
                "max_attempts": settings.pipeline_max_attempts,
                "backoff_base_s": settings.pipeline_backoff_base_s,
                "max_workers": settings.pipeline_max_workers,
            }
        )
