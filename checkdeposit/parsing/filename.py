"""Deposit metadata encoded in the source image's file name.

Customers upload check images named ``<email>^<toAccount>^<amount>.<ext>``,
for example ``alice@example.com^12345^50.00.png``.  Extra ``^`` fields after
the amount are tolerated and ignored.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import PurePosixPath

from checkdeposit.tasks.error_handler import MalformedFileNameError

FIELD_SEPARATOR = "^"

_EXTENSION_RE = re.compile(r"\.([A-Za-z][A-Za-z0-9]*)$")


@dataclass(frozen=True, slots=True)
class DepositFileName:
    file_name: str
    email: str
    to_account: str
    amount: Decimal
    extension: str


def file_extension(file_name: str) -> str:
    """Return the lowercase extension of *file_name* without the dot, or ``""``."""
    match = _EXTENSION_RE.search(PurePosixPath(file_name).name)
    return match.group(1).lower() if match else ""


def parse_deposit_file_name(file_name: str) -> DepositFileName:
    """Split *file_name* into its deposit fields.

    Raises
    ------
    MalformedFileNameError
        If fewer than three fields are present, a field is blank, or the
        amount is not a non-negative decimal.
    """
    name = PurePosixPath(file_name).name
    base = _EXTENSION_RE.sub("", name)
    values = base.split(FIELD_SEPARATOR)
    if len(values) < 3:
        raise MalformedFileNameError(
            f"Expected email{FIELD_SEPARATOR}account{FIELD_SEPARATOR}amount in {name!r}"
        )

    email, to_account, raw_amount = (value.strip() for value in values[:3])
    if not email or not to_account or not raw_amount:
        raise MalformedFileNameError(f"Blank deposit field in {name!r}")

    try:
        amount = Decimal(raw_amount)
    except InvalidOperation as exc:
        raise MalformedFileNameError(f"Amount {raw_amount!r} is not a decimal") from exc
    if not amount.is_finite() or amount < 0:
        raise MalformedFileNameError(f"Amount {raw_amount!r} is out of range")

    return DepositFileName(
        file_name=file_name,
        email=email,
        to_account=to_account,
        amount=amount,
        extension=file_extension(name),
    )
