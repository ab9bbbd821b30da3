"""MICR line parsing.

Turns the OCR plaintext of a check's MICR line into a routing/account pair.
The routing number sits between two transit glyphs, which the OCR service
renders as ``[``; the account number follows the second glyph and ends at
the on-us glyph, rendered as ``@``::

    [123456789[ 987654321@

Extraction never falls back to defaults silently.  Absence and ambiguity are
reported with distinct sentinels so a rejection reason can be surfaced:

    "-1"  no match
    "-2"  more than one match
"""
from __future__ import annotations

import re
from dataclasses import dataclass

ABSENT = "-1"
AMBIGUOUS = "-2"
NO_ACCOUNT = "0"

ROUTING_NUMBER_LENGTH = 9

_ROUTING_RE = re.compile(r"\[\d{9}\[", re.MULTILINE)
_ACCOUNT_RE = re.compile(r"(\[\d{9}\[)( ?)([0-9A-Z]+@)", re.IGNORECASE | re.MULTILINE)

# More account tokens than this is reported as ambiguous.
_MAX_ACCOUNT_MATCHES = 1


class MicrValidationError(ValueError):
    """Raised when the OCR plaintext cannot be parsed at all."""


@dataclass(frozen=True, slots=True)
class MicrParseResult:
    routing_number: str
    account_number: str

    def is_valid(self) -> bool:
        # A two-character account is a known OCR failure signature.
        return len(self.routing_number) == ROUTING_NUMBER_LENGTH and len(self.account_number) != 2


def parse_micr_line(text: object) -> MicrParseResult:
    """Extract routing and account numbers from raw MICR plaintext.

    Raises
    ------
    MicrValidationError
        If *text* is not a string or is empty.
    """
    if not isinstance(text, str):
        raise MicrValidationError("Invalid MICR information: expected a string")
    if not text:
        raise MicrValidationError("Invalid MICR information: empty text")

    routing_matches = _ROUTING_RE.findall(text)
    if not routing_matches:
        return MicrParseResult(ABSENT, NO_ACCOUNT)
    if len(routing_matches) > 1:
        return MicrParseResult(AMBIGUOUS, NO_ACCOUNT)
    routing_number = routing_matches[0][1:-1]

    account_matches = list(_ACCOUNT_RE.finditer(text))
    if not account_matches:
        return MicrParseResult(routing_number, ABSENT)
    if len(account_matches) > _MAX_ACCOUNT_MATCHES:
        return MicrParseResult(routing_number, AMBIGUOUS)
    account_number = account_matches[0].group(3).replace("@", "")

    return MicrParseResult(routing_number, account_number)
