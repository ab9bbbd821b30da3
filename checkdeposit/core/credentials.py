"""Short-lived access tokens for collaborator calls.

A token is fetched once per record pipeline run and travels inside that run's
``PipelineContext``.  Nothing here caches a token between runs: concurrent
runs each hold their own value, so none of them can pick up another run's
expired credential.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

from checkdeposit.tasks.error_handler import ContractViolationError, TransientStageError

logger = logging.getLogger(__name__)

_APIKEY_GRANT = "urn:ibm:params:oauth:grant-type:apikey"


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_at: float | None = None

    @property
    def authorization(self) -> str:
        return f"Bearer {self.value}"

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (time.time() if now is None else now) >= self.expires_at


class TokenProvider:
    """Exchange an API key for a bearer token at an IAM-style endpoint.

    When *api_key* is empty, ``fetch()`` returns None and collaborator calls
    are made without an ``Authorization`` header.
    """

    def __init__(self, url: str, api_key: str | None, *, timeout_s: float = 30.0) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout_s = timeout_s

    def fetch(self) -> AccessToken | None:
        if not self.api_key:
            return None

        try:
            response = httpx.post(
                self.url,
                data={
                    "apikey": self.api_key,
                    "response_type": "cloud_iam",
                    "grant_type": _APIKEY_GRANT,
                },
                headers={"Accept": "application/json"},
                timeout=self.timeout_s,
            )
        except httpx.TransportError as exc:
            raise TransientStageError(f"Token request failed: {exc}", stage="authenticate") from exc

        if response.status_code >= 500:
            raise TransientStageError(
                f"Token endpoint returned {response.status_code}", stage="authenticate"
            )
        if response.status_code >= 400:
            raise ContractViolationError(
                f"Token endpoint rejected the API key ({response.status_code})", stage="authenticate"
            )

        try:
            data = response.json()
            value = data["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise ContractViolationError("Token response has no access_token", stage="authenticate") from exc

        expiration = data.get("expiration")
        logger.info("Access token acquired")
        return AccessToken(value=value, expires_at=float(expiration) if expiration else None)
