"""
Initialize database tables.
Run this on first deploy instead of flask db upgrade.

Set RESET_DB=1 environment variable to drop and recreate all tables.
"""
import importlib.util
import os
import sys

# Add app to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from portal import create_app, db

MIGRATIONS = ('002_result_publishing.py',)


def load_migration(filename):
    """Import a migration module by file name (names start with digits)"""
    path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations', filename)
    if not os.path.exists(path):
        return None
    spec = importlib.util.spec_from_file_location(f"migration_{filename[:3]}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def run_migrations(app):
    """Apply manual migrations to databases created before the current models"""
    for filename in MIGRATIONS:
        migration = load_migration(filename)
        if migration is None:
            app.logger.warning("Migration %s not found, skipping", filename)
            continue
        added = migration.upgrade()
        print(f"Migration {filename}: added {', '.join(added) if added else 'nothing'}")


def init_db(config_name=None):
    """Create all database tables."""
    app = create_app(config_name or os.getenv('FLASK_ENV', 'production'))

    with app.app_context():
        print("Creating database tables...")
        db.create_all()
        print("Database tables created successfully!")

        # Existing databases may predate newer columns
        run_migrations(app)
    return app


if __name__ == '__main__':
    init_db()
