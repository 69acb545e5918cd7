"""Normalization of Exchange admin API values.

Objective:
    Convert the loosely-typed values returned by Exchange cmdlets into plain
    Python types once, at the service boundary, so the rest of the application
    never handles raw display strings.

Responsibilities:
    - Parse timestamps returned either as ISO-8601 strings or as the
      ``/Date(ms)/`` form used by serialized results.
    - Parse byte quantities returned either as numbers, as
      ``{"Value": ...}`` objects, or as display strings like
      ``"1.5 GB (1,610,612,736 bytes)"``.
    - Normalize multi-valued properties that may come back as a scalar, a
      list, or ``null``.

High-level call tree:
    - :func:`as_utc`
    - :func:`parse_exchange_datetime`
    - :func:`parse_byte_quantity`
    - :func:`as_string_list`

Operational notes:
    - These helpers are used as Pydantic ``mode="before"`` validators in
      :mod:`src.exchange_admin.models`.
    - Unparseable values become ``None`` rather than raising, so one odd field
      does not fail validation of a whole group or mailbox.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

_MS_DATE_RE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")
_FRACTION_RE = re.compile(r"\.(\d+)")
_BYTES_IN_PARENS_RE = re.compile(r"\(([\d,.\s]+)\s*bytes\)", re.IGNORECASE)
_UNIT_QUANTITY_RE = re.compile(r"^([\d.,]+)\s*(B|KB|MB|GB|TB)$", re.IGNORECASE)

_UNIT_MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _six_digit_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_exchange_datetime(value: Any) -> Optional[datetime]:
    """Parse an Exchange timestamp into an aware UTC datetime.

    Accepted inputs:
        - ``None`` or empty string -> ``None``
        - :class:`datetime` (naive values are assumed to be UTC)
        - ``"/Date(1700000000000)/"`` (milliseconds since epoch)
        - ISO-8601 strings, with ``Z`` suffix and up to 7 fractional digits

    Args:
        value: Raw value from a cmdlet result.

    Returns:
        Optional[datetime]: Parsed timestamp, or None when absent/unparseable.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return as_utc(value)

    text = str(value).strip()
    if not text:
        return None

    match = _MS_DATE_RE.match(text)
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)

    # fromisoformat needs exactly 6 fractional digits before 3.11; Exchange
    # emits up to 7 and drops trailing zeros
    text = _FRACTION_RE.sub(_six_digit_fraction, text.replace("Z", "+00:00"))
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Unrecognized timestamp value: %r", value)
        return None

    return as_utc(parsed)


def parse_byte_quantity(value: Any) -> Optional[int]:
    """Parse an Exchange byte quantity into an integer number of bytes.

    Live cmdlet results and deserialized results disagree on representation;
    this function accepts all of them:

    - ``1234`` / ``1234.0``
    - ``{"Value": 1234}`` (ByteQuantifiedSize object)
    - ``"1.5 GB (1,610,612,736 bytes)"`` (display string; the exact byte
      count in parentheses wins)
    - ``"512 MB"`` (unit only, converted with binary multipliers)
    - ``"Unlimited"`` -> ``None``

    Args:
        value: Raw value from a cmdlet result.

    Returns:
        Optional[int]: Number of bytes, or None when absent/unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, dict):
        return parse_byte_quantity(value.get("Value"))

    text = str(value).strip()
    if not text or text.lower() == "unlimited":
        return None

    match = _BYTES_IN_PARENS_RE.search(text)
    if match:
        digits = re.sub(r"[^\d]", "", match.group(1))
        return int(digits) if digits else None

    if text.isdigit():
        return int(text)

    match = _UNIT_QUANTITY_RE.match(text)
    if match:
        number = float(match.group(1).replace(",", ""))
        return int(number * _UNIT_MULTIPLIERS[match.group(2).upper()])

    logger.warning("Unrecognized byte quantity value: %r", value)
    return None


def as_string_list(value: Any) -> list[str]:
    """Normalize a multi-valued property into a list of non-empty strings.

    Cmdlets return single-item collections as scalars and empty collections
    as ``null``.

    Args:
        value: Raw value (None, scalar or list).

    Returns:
        list[str]: Normalized list, possibly empty.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    text = str(value).strip()
    return [text] if text else []
