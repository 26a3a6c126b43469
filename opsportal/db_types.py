"""Database-agnostic type definitions for SQLAlchemy models.

The same models run against PostgreSQL in production and SQLite in tests.
"""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import UUID as PG_UUID

# JSON rather than JSONB: item lists and archive snapshots are read whole,
# never queried inside
JSONType = JSON

# Renders as CHAR(32) on SQLite
UUIDType = PG_UUID
