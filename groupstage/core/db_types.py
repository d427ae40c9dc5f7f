"""
JSON column type for the engine's list-valued fields.

Two columns hold JSON: QualificationRecord.qualified_team_ids (an ordered
list of participant ids) and Participant.members (a team roster of
{userId, username} objects). Both are written whole and read whole, never
queried into, so the column only has to round-trip Python lists.

PostgreSQL stores them as JSONB; SQLite and everything else get plain JSON.
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import TypeDecorator


class UniversalJSON(TypeDecorator):
    """List column that picks JSONB on PostgreSQL and JSON elsewhere."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        # Tuples and other sequences are stored as plain lists
        if value is not None and not isinstance(value, (list, dict)):
            return list(value)
        return value
