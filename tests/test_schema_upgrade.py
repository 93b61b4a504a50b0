import sqlite3

from sqlalchemy import create_engine

from admarket.db.schema_upgrade import LATE_COLUMNS, upgrade_schema


def test_upgrade_adds_missing_columns(tmp_path):
    db_path = tmp_path / "old_test.db"
    conn = sqlite3.connect(db_path)
    # Ads table as it looked before campaigns, formats and spend tracking.
    conn.execute(
        """
        CREATE TABLE ads (
            id VARCHAR(36) PRIMARY KEY,
            advertiser_id VARCHAR(36) NOT NULL,
            title VARCHAR(255) NOT NULL,
            description TEXT NOT NULL,
            target_url TEXT NOT NULL,
            budget INTEGER NOT NULL,
            daily_budget INTEGER NOT NULL,
            bid_per_impression INTEGER NOT NULL,
            bid_per_click INTEGER NOT NULL,
            status VARCHAR(32) NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO ads VALUES ('a1', 'u1', 'Old ad', 'desc', 'https://example.com', 10, 1, 1, 1, 'ACTIVE')"
    )
    conn.commit()
    conn.close()

    engine = create_engine(f"sqlite:///{db_path}")
    added = upgrade_schema(engine)
    assert sorted(added) == sorted(f"ads.{col}" for col in LATE_COLUMNS["ads"])
    # Idempotent
    assert upgrade_schema(engine) == []

    conn = sqlite3.connect(db_path)
    cols = {row[1] for row in conn.execute("PRAGMA table_info(ads)").fetchall()}
    assert {"campaign_id", "spent", "format"} <= cols
    assert conn.execute("SELECT spent, format FROM ads WHERE id = 'a1'").fetchone() == (0, "text")
    conn.close()
    engine.dispose()


def test_upgrade_skips_non_sqlite():
    class FakeDialect:
        name = "postgresql"

    class FakeEngine:
        dialect = FakeDialect()

    assert upgrade_schema(FakeEngine()) == []
