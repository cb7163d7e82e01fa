"""
Manual Migration Tests
"""
from sqlalchemy import inspect

from portal import db
from init_db import load_migration, run_migrations

migration = load_migration('002_result_publishing.py')


def result_columns():
    return {c['name'] for c in inspect(db.engine).get_columns('processed_results')}


class TestResultPublishingMigration:
    """Test the publishing-columns migration"""

    def test_upgrade_is_noop_on_current_schema(self, app):
        with app.app_context():
            assert migration.upgrade() == []

    def test_downgrade_then_upgrade(self, app):
        with app.app_context():
            migration.downgrade()
            assert 'is_published' not in result_columns()
            assert 'published_at' not in result_columns()

            assert migration.upgrade() == ['is_published', 'published_at']
            assert {'is_published', 'published_at'} <= result_columns()

    def test_missing_table(self, app):
        with app.app_context():
            db.drop_all()
            assert migration.upgrade() == []

    def test_run_migrations(self, app):
        with app.app_context():
            migration.downgrade()
            run_migrations(app)
            assert 'is_published' in result_columns()

    def test_unknown_migration_file(self):
        assert load_migration('999_missing.py') is None
