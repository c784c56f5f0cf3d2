"""
Dialect-aware ``INSERT ... ON CONFLICT`` builder.

Every writer of a keyed row (weekly plan slots, pipeline state, scores,
backlog items) goes through one statement built here instead of a
read-then-write pair, so overlapping triggers cannot lose updates.
"""

from sqlalchemy.dialects import postgresql, sqlite

from sequencer.models import db

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def insert_for(model):
    """Return an ``Insert`` for *model* that supports ``on_conflict_do_*``."""
    dialect = db.engine.dialect.name
    try:
        return _INSERTS[dialect](model)
    except KeyError:
        raise RuntimeError(f"Upsert is not supported on dialect {dialect!r}") from None
