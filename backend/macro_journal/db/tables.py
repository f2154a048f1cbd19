"""
Single source of truth for database tables that exist after migrations (001-002).

Use these names when writing raw SQL (e.g. TRUNCATE in dev resets).
"""
# All tables that exist in the DB. Must match models and migrations.
ALL_TABLE_NAMES = (
    "entries",
    "notifications",
    "settings",
    "push_tokens",
)

# Per-user tables cleared when resetting a user's insight state (entries are left alone).
INSIGHT_STATE_TABLE_NAMES = (
    "notifications",
    "settings",
)
