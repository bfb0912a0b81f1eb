"""Small helpers shared by the services: timestamps, ids and text."""

import uuid
from datetime import UTC, datetime

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]


def _as_utc(dt: datetime) -> datetime:
    # Naive values are taken to be UTC already.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Turn an ISO8601 string or datetime into an aware UTC datetime.

    Raises:
        ValueError: If ``value`` is a string dateutil can't parse

    Example:
        >>> parse_datetime("2024-01-15T12:30:00+02:00").isoformat()
        '2024-01-15T10:30:00+00:00'
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = dateutil_parser.isoparse(value)
    return _as_utc(value)


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_iso(dt: datetime | None) -> str | None:
    """Render ``dt`` as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``.

    The fixed microsecond width keeps stored timestamps sortable as text.
    """
    if dt is None:
        return None
    return _as_utc(dt).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def truncate_preview(text: str, limit: int, ellipsis: str = "…") -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut with ``ellipsis``.

    >>> truncate_preview("abcdef", 3)
    'abc…'
    """
    return text if len(text) <= limit else text[:limit] + ellipsis


def is_blank(value: str | None) -> bool:
    """True for None, "" and whitespace-only strings."""
    return value is None or not value.strip()
