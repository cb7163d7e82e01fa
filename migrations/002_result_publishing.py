"""
Migration: Add publishing columns to processed_results

This migration adds:
1. processed_results.is_published (default false)
2. processed_results.published_at
3. An index on is_published for the published-results listing

Databases created after this change already have the columns; the migration
only touches tables that are missing them.

Run manually:
    python migrations/002_result_publishing.py [downgrade]
"""

TABLE = "processed_results"

COLUMNS = {
    "is_published": "BOOLEAN NOT NULL DEFAULT FALSE",
    "published_at": "TIMESTAMP WITH TIME ZONE",
}

INDEX_SQL = "CREATE INDEX IF NOT EXISTS idx_processed_results_published ON processed_results(is_published)"
DROP_INDEX_SQL = "DROP INDEX IF EXISTS idx_processed_results_published"


def _existing_columns(conn):
    from sqlalchemy import inspect
    inspector = inspect(conn)
    if TABLE not in inspector.get_table_names():
        return None
    return {c["name"] for c in inspector.get_columns(TABLE)}


def upgrade():
    """Run upgrade migration; returns the names of the columns added"""
    from portal import db
    from sqlalchemy import text

    added = []
    with db.engine.begin() as conn:
        existing = _existing_columns(conn)
        if existing is None:
            return added
        for name, ddl in COLUMNS.items():
            if name not in existing:
                conn.execute(text(f"ALTER TABLE {TABLE} ADD COLUMN {name} {ddl}"))
                added.append(name)
        conn.execute(text(INDEX_SQL))
    return added


def downgrade():
    """Run downgrade migration"""
    from portal import db
    from sqlalchemy import text

    with db.engine.begin() as conn:
        existing = _existing_columns(conn)
        if existing is None:
            return
        conn.execute(text(DROP_INDEX_SQL))
        for name in COLUMNS:
            if name in existing:
                conn.execute(text(f"ALTER TABLE {TABLE} DROP COLUMN {name}"))


if __name__ == "__main__":
    import os
    import sys
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from portal import create_app

    app = create_app(os.getenv('FLASK_ENV', 'production'))
    with app.app_context():
        if len(sys.argv) > 1 and sys.argv[1] == 'downgrade':
            print("Running downgrade...")
            downgrade()
            print("Downgrade complete.")
        else:
            print("Running upgrade...")
            print(f"Added columns: {upgrade() or 'none'}")
            print("Upgrade complete.")
