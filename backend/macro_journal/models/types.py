"""Column types shared by models: JSONB on Postgres, plain JSON elsewhere (SQLite in tests)."""
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

JSONPayload = JSON().with_variant(JSONB(), "postgresql")
