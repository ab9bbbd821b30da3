"""FastAPI dependency injection: check store and pipeline orchestrator."""
from __future__ import annotations

from fastapi import Depends, HTTPException

from checkdeposit.core.credentials import TokenProvider
from checkdeposit.core.settings import Settings, get_settings
from checkdeposit.db.repositories import CheckStore
from checkdeposit.db.session import get_session_factory
from checkdeposit.notification.email_sender import EmailSender
from checkdeposit.ocr.client import OcrClient
from checkdeposit.pipeline.config import PipelineConfig, PipelineConfigError
from checkdeposit.pipeline.orchestrator import PipelineOrchestrator
from checkdeposit.storage.object_store import build_object_store


def get_check_store() -> CheckStore:
    """Return a CheckStore over the configured database."""
    return CheckStore(get_session_factory())


def get_pipeline_config(settings: Settings = Depends(get_settings)) -> PipelineConfig:
    """Validate the pipeline configuration once per invocation."""
    try:
        return PipelineConfig.from_settings(settings)
    except PipelineConfigError as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "invalid_configuration", "reasons": exc.reasons},
        ) from exc


def get_orchestrator(
    config: PipelineConfig = Depends(get_pipeline_config),
    settings: Settings = Depends(get_settings),
    store: CheckStore = Depends(get_check_store),
) -> PipelineOrchestrator:
    """Assemble an orchestrator wired to the configured collaborators."""
    return PipelineOrchestrator(
        config,
        object_store=build_object_store(settings),
        store=store,
        ocr_client=OcrClient(config.ocr_url, timeout_s=config.ocr_timeout_s),
        email_sender=EmailSender(config.smtp_host, config.smtp_port),
        token_provider=TokenProvider(config.iam_url, config.iam_api_key),
    )
