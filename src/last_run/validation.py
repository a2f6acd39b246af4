"""
Timestamp validation.

A stored value is accepted only if it is an ISO-8601 UTC instant with a
literal ``Z`` suffix and optional fractional seconds, and only if it names a
real calendar instant.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

ISO_TIMESTAMP_PATTERN = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?Z", re.ASCII
)


class ValidationReason(Enum):
    """Why a candidate timestamp was rejected."""

    EMPTY = "empty"
    PATTERN = "pattern"
    PARSE = "parse"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a candidate timestamp."""

    ok: bool
    reason: ValidationReason | None = None


def parse_timestamp(value: str) -> datetime:
    """
    Parse a pattern-conformant timestamp into an aware UTC datetime.

    Fractional digits beyond microseconds are truncated.

    Raises:
        ValueError: If the value does not match the pattern or is not a
            valid calendar instant (month 13, Feb 30, hour 24, ...)
    """
    match = ISO_TIMESTAMP_PATTERN.fullmatch(value)
    if not match:
        raise ValueError(f"Not an ISO-8601 UTC timestamp: {value!r}")

    year, month, day, hour, minute, second, fraction = match.groups()
    microsecond = int((fraction or "0")[:6].ljust(6, "0"))
    return datetime(
        int(year),
        int(month),
        int(day),
        int(hour),
        int(minute),
        int(second),
        microsecond,
        tzinfo=timezone.utc,
    )


def validate_timestamp(candidate: str | None) -> ValidationResult:
    """
    Check whether a candidate is a well-formed, parseable UTC timestamp.

    Args:
        candidate: Raw value read from an artifact (may be None)

    Returns:
        ValidationResult with ok=True, or ok=False and the rejection reason
    """
    if candidate is None or not candidate.strip():
        return ValidationResult(ok=False, reason=ValidationReason.EMPTY)
    if not ISO_TIMESTAMP_PATTERN.fullmatch(candidate):
        return ValidationResult(ok=False, reason=ValidationReason.PATTERN)
    try:
        parse_timestamp(candidate)
    except ValueError:
        return ValidationResult(ok=False, reason=ValidationReason.PARSE)
    return ValidationResult(ok=True)


def format_timestamp(moment: datetime) -> str:
    """Format an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
