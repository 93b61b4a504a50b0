import logging

from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Columns added after the first release; older SQLite files get them on startup.
LATE_COLUMNS: dict[str, dict[str, str]] = {
    "ads": {
        "campaign_id": "VARCHAR(36)",
        "url_parameters": "TEXT",
        "spent": "INTEGER NOT NULL DEFAULT 0",
        "format": "VARCHAR(32) NOT NULL DEFAULT 'text'",
        "freq_cap_views": "INTEGER",
        "freq_cap_hours": "INTEGER",
    },
    "ad_placements": {
        "rejection_reason": "TEXT",
    },
    "transactions": {
        "balance_before": "INTEGER",
        "balance_after": "INTEGER",
    },
    "users": {
        "is_test_user": "BOOLEAN NOT NULL DEFAULT 0",
    },
    "user_roles": {
        "is_test_role": "BOOLEAN NOT NULL DEFAULT 0",
    },
}


def missing_columns(conn, table: str, wanted: dict[str, str]) -> list[str]:
    tables = conn.exec_driver_sql(f"SELECT name FROM sqlite_master WHERE type='table' AND name='{table}'")
    if not tables.fetchone():
        # Table does not exist; create_all handles it.
        return []
    result = conn.exec_driver_sql(f"PRAGMA table_info({table})")
    columns = {row[1] for row in result.fetchall()}  # row[1] is column name
    return [col for col in wanted if col not in columns]


def upgrade_schema(engine: Engine) -> list[str]:
    """
    Lightweight, idempotent SQLite schema upgrade.
    Adds missing columns without destructive changes and returns what was added.
    """
    if engine.dialect.name != "sqlite":
        return []
    added: list[str] = []
    with engine.begin() as conn:
        for table, wanted in LATE_COLUMNS.items():
            for col in missing_columns(conn, table, wanted):
                logger.info("Adding missing column to %s: %s", table, col)
                conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {col} {wanted[col]}")
                added.append(f"{table}.{col}")
    return added
