from __future__ import annotations

from datetime import datetime
from typing import Any

from web3 import Web3

from chaintrace.errors import ValidationError
from chaintrace.time_utils import parse_iso_datetime, utcnow


# Upper bounds for request-driven loops over chain calls
MAX_CREATE_QUANTITY = 100
MAX_TRANSFER_QUANTITY = 50


def json_body(data: Any) -> dict:
    """Request body as a dict; None (no body) is treated as {}."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def clamp_quantity(value: Any, upper: int) -> int:
    """
    Integer quantity clamped to [1, upper].

    Missing, zero or non-numeric input means 1. Booleans are rejected
    as non-numeric.
    """
    if isinstance(value, bool):
        return 1
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return max(1, min(upper, quantity or 1))


def parse_manufacture_date(value: Any) -> datetime:
    """ISO date or datetime string; missing means now."""
    if value in (None, ""):
        return utcnow()
    if not isinstance(value, str):
        raise ValidationError("manufactureDate must be an ISO-8601 date string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid manufactureDate: {value}")


def require_address(value: Any, field: str = "toAddress") -> str:
    """Checksummed 0x address, or ValidationError."""
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if not Web3.is_address(value):
        raise ValidationError(f"{field} is not a valid address")
    return Web3.to_checksum_address(value)
