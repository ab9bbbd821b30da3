"""OCR collaborator client.

The OCR service reads the MICR line of an audited check image and answers
with its plaintext, base64 encoded::

    POST {ocr_url}
    {"imageRef": "att-...", "recordId": "..."}
    -> {"plaintext": "WzEyMzQ1Njc4OVsgOTg3NjU0MzIxQA=="}

One request per call.  Retrying is the orchestrator's job, so every failure
is translated into a categorized ``StageError`` instead of being retried here.
"""
from __future__ import annotations

import logging
import time

import httpx

from checkdeposit.core.credentials import AccessToken
from checkdeposit.tasks.error_handler import ContractViolationError, TransientStageError

logger = logging.getLogger(__name__)


class OcrClient:
    """Synchronous client for the OCR service.

    Parameters
    ----------
    url:
        Full URL of the OCR endpoint.
    timeout_s:
        Request timeout in seconds.
    """

    def __init__(self, url: str, *, timeout_s: float = 60.0) -> None:
        self.url = url
        self.timeout_s = timeout_s

    def read_micr(
        self,
        record_id: str,
        image_ref: str,
        token: AccessToken | None = None,
    ) -> str | None:
        """Return the base64 plaintext for *image_ref*, or None if the response carries none.

        Raises
        ------
        TransientStageError
            On timeouts, connection failures and 5xx responses.
        ContractViolationError
            On 4xx responses or a body that is not a JSON object.
        """
        headers = {"Accept": "application/json"}
        if token is not None:
            headers["Authorization"] = token.authorization

        start = time.monotonic()
        try:
            response = httpx.post(
                self.url,
                json={"imageRef": image_ref, "recordId": record_id},
                headers=headers,
                timeout=self.timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise TransientStageError(f"OCR request timed out after {self.timeout_s}s") from exc
        except httpx.TransportError as exc:
            raise TransientStageError(f"Cannot reach OCR service at {self.url}") from exc
        finally:
            elapsed_ms = int((time.monotonic() - start) * 1000)

        if response.status_code >= 500:
            raise TransientStageError(f"OCR service returned {response.status_code}")
        if response.status_code >= 400:
            raise ContractViolationError(f"OCR service rejected the request ({response.status_code})")

        try:
            data = response.json()
        except ValueError as exc:
            raise ContractViolationError("OCR response is not JSON") from exc
        if not isinstance(data, dict):
            raise ContractViolationError("OCR response is not a JSON object")

        logger.info("OCR completed for record %s in %d ms", record_id, elapsed_ms)
        plaintext = data.get("plaintext")
        return plaintext if isinstance(plaintext, str) else None
