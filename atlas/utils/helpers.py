"""Shared request-parsing helpers for governance and intake blueprints.

parse_datetime:    ISO-8601 string → aware datetime (raises ValueError)
parse_bool:        JSON/query flag → bool with explicit default
parse_pagination:  page / limit query args → clamped ints
get_json_body:     request body as a dict, never None
"""
import logging
from datetime import UTC, date, datetime

from flask import request

from atlas.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 100

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime to an aware UTC datetime.

    Returns None for empty input. Naive values are taken as UTC; a trailing
    ``Z`` is accepted. Raises ValueError on malformed input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid datetime: {value!r}") from exc
    else:
        raise ValueError(f"Invalid datetime: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_bool(value, default=None):
    """Coerce JSON booleans and common string flags; *default* for empty input."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return default


def parse_pagination(args=None) -> tuple[int, int]:
    """Return ``(page, limit)`` from query args: page ≥ 1, limit clamped to 1..100."""
    args = request.args if args is None else args
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", DEFAULT_PAGE_LIMIT))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_LIMIT
    return max(page, 1), min(max(limit, 1), MAX_PAGE_LIMIT)


def get_json_body() -> dict:
    """Return the JSON request body, rejecting non-object payloads."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
