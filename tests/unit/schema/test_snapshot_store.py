"""
Unit tests for SchemaSnapshotStore.
"""

import json

import pytest

from schemaledger.schema.model import ColumnSpec
from schemaledger.schema.snapshot_store import SchemaSnapshotStore


@pytest.fixture
def store(schemas_dir):
    return SchemaSnapshotStore(schemas_dir)


class TestSnapshotStore:
    """Test saving and loading snapshots."""

    def test_latest_empty(self, store):
        """No snapshot yet means no baseline."""
        assert store.latest() is None
        assert store.versions() == []

    def test_save_and_load(self, store, users_schema):
        store.save('2026_10_18_120000_create_users', [users_schema])

        snapshot = store.load('2026_10_18_120000_create_users')

        assert snapshot.version == '2026_10_18_120000_create_users'
        assert snapshot.tables == {'users': users_schema}
        assert snapshot.created_at is not None

    def test_file_is_json(self, store, schemas_dir, users_schema):
        store.save('2026_10_18_120000_create_users', [users_schema])

        data = json.loads((schemas_dir / '2026_10_18_120000_create_users.json').read_text())

        assert data['version'] == '2026_10_18_120000_create_users'
        assert data['tables']['users']['columns'][0]['name'] == 'id'

    def test_latest_is_greatest_version(self, store, users_schema):
        store.save('2026_10_18_130000_second', [users_schema])
        store.save('2026_10_18_120000_first', [])

        assert store.versions() == ['2026_10_18_120000_first', '2026_10_18_130000_second']
        assert store.latest().version == '2026_10_18_130000_second'

    def test_saved_resolved(self, store, users_schema):
        """Drop and rename markers are applied before saving."""
        users_schema.columns.append(ColumnSpec('legacy', marked_for_removal=True))
        users_schema.columns[2].rename_from = 'mail'

        snapshot = store.save('2026_10_18_120000_init', [users_schema])

        users = snapshot.tables['users']
        assert users.column('legacy') is None
        assert users.column('email').rename_from is None
        assert store.load('2026_10_18_120000_init').tables == snapshot.tables

    def test_save_existing_raises(self, store, users_schema):
        store.save('2026_10_18_120000_init', [users_schema])
        with pytest.raises(FileExistsError):
            store.save('2026_10_18_120000_init', [users_schema])

    def test_load_missing(self, store):
        with pytest.raises(FileNotFoundError):
            store.load('2026_01_01_000000_nope')

    def test_delete_all(self, store, users_schema):
        store.save('2026_10_18_120000_a', [users_schema])
        store.save('2026_10_18_120001_b', [users_schema])

        assert store.delete_all() == 2
        assert store.latest() is None
