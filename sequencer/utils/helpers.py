"""Shared request-parsing helpers for the blueprints.

get_or_404:      tuple-return lookup (obj, None) / (None, error_response)
parse_date:      returns None on bad input
parse_as_of:     ISO datetime for simulation, raises ValueError on bad input
parse_bool:      lenient truthy parsing for query params and JSON bodies
"""
import logging
from datetime import date, datetime, timezone

from flask import jsonify

from sequencer.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    Usage:
        obj, err = get_or_404(Staff, staff_id)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def parse_date(value):
    """Parse an ISO date (or ISO datetime) into a ``date``.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        return None


def parse_as_of(value):
    """Parse the ``as_of`` simulation instant.

    Naive values are read as UTC. Raises ValueError on bad input so callers
    can answer 400.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("Invalid as_of. Use an ISO-8601 datetime.") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}
