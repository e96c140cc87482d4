"""Column types shared by the models (PostgreSQL in production, SQLite locally)."""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

JSONType = JSON().with_variant(JSONB(), "postgresql")
