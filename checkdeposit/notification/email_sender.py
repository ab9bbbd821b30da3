"""SMTP email sender for deposit confirmations.

Sends one plain-text message per call through the configured SMTP relay.
A single attempt is made; retrying belongs to the pipeline orchestrator.

Safety: the recipient address is never logged, only the record id.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.text import MIMEText
from string import Template

from checkdeposit.pipeline.records import CheckRecord
from checkdeposit.tasks.error_handler import TransientStageError

logger = logging.getLogger(__name__)

SUBJECT = "Check deposit accepted"

_BODY = Template(
    "Hello, your deposit for $$${amount} was accepted into your account ${to_account} "
    "on ${date}. For reference, the check number and routing number were: "
    "${from_account}-${routing_number}. "
)


# ---------------------------------------------------------------------------
# Message / DeliveryReceipt
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Notification:
    to_email: str
    from_address: str
    subject: str
    body: str


@dataclass
class DeliveryReceipt:
    """Record of a single notification delivery."""

    record_id: str
    status: str
    timestamp: datetime
    smtp_response: str | None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def format_deposit_date(timestamp: int) -> str:
    """Render a Unix timestamp as ``M/D/YYYY`` (UTC)."""
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return f"{moment.month}/{moment.day}/{moment.year}"


def build_notification(record: CheckRecord, from_address: str) -> Notification:
    """Return the deposit confirmation for *record*."""
    body = _BODY.safe_substitute(
        amount=record.amount,
        to_account=record.to_account,
        date=format_deposit_date(record.timestamp),
        from_account=record.from_account,
        routing_number=record.routing_number,
    )
    return Notification(
        to_email=record.email,
        from_address=from_address,
        subject=SUBJECT,
        body=body,
    )


# ---------------------------------------------------------------------------
# EmailSender
# ---------------------------------------------------------------------------

class EmailSender:
    """Send deposit notifications via SMTP."""

    def __init__(self, smtp_host: str, smtp_port: int = 587) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port

    def send(self, notification: Notification, record_id: str) -> DeliveryReceipt:
        """Send *notification*; raise ``TransientStageError`` if the relay fails."""
        msg = MIMEText(notification.body, "plain")
        msg["Subject"] = notification.subject
        msg["From"] = notification.from_address
        msg["To"] = notification.to_email

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.sendmail(notification.from_address, [notification.to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP error for record %s: %s", record_id, exc)
            raise TransientStageError(f"Notification delivery failed: {exc}", record_id=record_id) from exc

        logger.info("Delivered notification for record %s", record_id)
        return DeliveryReceipt(
            record_id=record_id,
            status="SENT",
            timestamp=datetime.now(timezone.utc),
            smtp_response="250 OK",
        )
