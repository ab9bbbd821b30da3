from __future__ import annotations

from dataclasses import dataclass

from checkdeposit.core.credentials import AccessToken
from checkdeposit.pipeline.config import PipelineConfig


@dataclass(frozen=True, slots=True)
class PipelineContext:
    """Values scoped to one record's pipeline run.

    Built fresh for every run and discarded afterwards; the access token is
    never shared between runs.
    """

    config: PipelineConfig
    token: AccessToken | None = None
