"""
Integration tests for MigrationOrchestrator against in-memory SQLite.

Covers:
- apply/rollback batches and their ordering
- Failure semantics (halt, completed units, pending after failure)
- Dry runs and status reporting
- generate from entities and from the live database
- reset
- dialect selection from config
"""

import pytest

from schemaledger.config import load_config
from schemaledger.errors import (
    ExecutionError,
    MigrationValidationError,
    NoChangesDetected,
    SchemaValidationError,
)
from schemaledger.migrations.orchestrator import MigrationOrchestrator, OrchestratorState
from schemaledger.schema.entity import EntityDefinition, FieldDefinition

pytestmark = pytest.mark.integration

U1 = '2026_10_18_120000_create_notes'
U2 = '2026_10_18_120100_create_tags'
U3 = '2026_10_18_120200_create_links'


@pytest.fixture
def three_units(write_unit):
    write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
    write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);', 'DROP TABLE tags;')
    write_unit(U3, 'CREATE TABLE links (id INTEGER PRIMARY KEY);', 'DROP TABLE links;')
    return [U1, U2, U3]


# ==================== Apply ====================

class TestApply:
    """Test applying pending units."""

    def test_apply_all_in_one_batch(self, orchestrator, database, three_units):
        result = orchestrator.apply()

        assert result.executed == three_units
        assert result.batch == 1
        assert all(r.success for r in result.results)
        assert orchestrator.state is OrchestratorState.COMMITTED
        assert {r.batch for r in orchestrator.ledger.records()} == {1}
        assert database.table_exists('links')

    def test_apply_nothing_pending(self, orchestrator):
        result = orchestrator.apply()

        assert result.nothing_to_do
        assert result.executed == []
        assert result.batch is None
        assert orchestrator.state is OrchestratorState.COMMITTED

    def test_apply_twice_is_noop(self, orchestrator, three_units):
        orchestrator.apply()
        assert orchestrator.apply().executed == []

    def test_new_units_get_next_batch(self, orchestrator, write_unit):
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        orchestrator.apply()
        write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);', 'DROP TABLE tags;')

        result = orchestrator.apply()

        assert result.executed == [U2]
        assert result.batch == 2

    def test_dry_run(self, orchestrator, database, three_units):
        """A dry run reports the plan and changes nothing."""
        result = orchestrator.apply(dry_run=True)

        assert result.dry_run is True
        assert result.planned == three_units
        assert result.executed == []
        assert orchestrator.state is OrchestratorState.IDLE
        assert not database.table_exists('notes')
        assert not database.table_exists('migrations')

    def test_failure_halts_run(self, orchestrator, database, write_unit):
        """Unit 2 fails: unit 1 stays applied, units 2 and 3 stay pending."""
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);\n'
                       'INSERT INTO nowhere VALUES (1);', 'DROP TABLE tags;')
        write_unit(U3, 'CREATE TABLE links (id INTEGER PRIMARY KEY);', 'DROP TABLE links;')

        with pytest.raises(ExecutionError) as exc_info:
            orchestrator.apply()

        error = exc_info.value
        assert error.version == U2
        assert error.completed == [U1]
        assert error.statement == 'INSERT INTO nowhere VALUES (1)'
        assert orchestrator.state is OrchestratorState.HALTED

        assert orchestrator.ledger.applied() == [U1]
        assert [m.version for m in orchestrator.status().pending] == [U2, U3]
        # The failing unit left nothing behind
        assert not database.table_exists('tags')
        assert not database.table_exists('links')

    def test_validation_errors_reject_batch(self, orchestrator, database, write_unit):
        """A unit with validation errors blocks the whole batch."""
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        write_unit(U2, '-- tags table comes later', 'SELECT 1;')

        with pytest.raises(MigrationValidationError) as exc_info:
            orchestrator.apply()

        error = exc_info.value
        assert str(error) == f'Migrations failed validation: 1 error(s) in {U2}'
        assert [w.migration_version for w in error.errors] == [U2]
        assert orchestrator.state is OrchestratorState.IDLE
        assert not database.table_exists('notes')
        assert not database.table_exists('migrations')

    def test_validation_errors_reject_dry_run(self, orchestrator, write_unit):
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY;', 'DROP TABLE notes;')

        with pytest.raises(MigrationValidationError):
            orchestrator.apply(dry_run=True)

    def test_validation_warnings_reported(self, orchestrator, database, write_unit):
        database.execute('CREATE TABLE scratch (id INTEGER PRIMARY KEY)')
        write_unit(U1, 'DROP TABLE scratch;', 'CREATE TABLE scratch (id INTEGER PRIMARY KEY);')

        result = orchestrator.apply()

        assert result.executed == [U1]
        assert [w.category for w in result.warnings] == ['destructive']

    def test_retry_after_fix(self, orchestrator, migrations_dir, write_unit):
        write_unit(U1, 'INSERT INTO nowhere VALUES (1);', 'SELECT 1;')
        with pytest.raises(ExecutionError):
            orchestrator.apply()

        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        result = orchestrator.apply()

        assert result.executed == [U1]
        assert result.batch == 1


# ==================== Rollback ====================

class TestRollback:
    """Test rolling back batches."""

    def test_rollback_last_batch(self, orchestrator, database, three_units):
        orchestrator.apply()

        result = orchestrator.rollback()

        assert result.executed == [U3, U2, U1]
        assert orchestrator.ledger.applied() == []
        assert not database.table_exists('notes')

    def test_rollback_two_batches(self, orchestrator, database, write_unit):
        """Two single-unit applies, rollback(2) undoes both, newest first."""
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        orchestrator.apply()
        write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);', 'DROP TABLE tags;')
        orchestrator.apply()

        result = orchestrator.rollback(2)

        assert result.executed == [U2, U1]
        assert orchestrator.ledger.applied() == []
        assert not database.table_exists('tags')

    def test_rollback_only_newest_batch(self, orchestrator, write_unit):
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        orchestrator.apply()
        write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);', 'DROP TABLE tags;')
        orchestrator.apply()

        orchestrator.rollback(1)

        assert orchestrator.ledger.applied() == [U1]

    def test_rollback_empty_ledger(self, orchestrator):
        result = orchestrator.rollback()
        assert result.nothing_to_do
        assert orchestrator.state is OrchestratorState.COMMITTED

    def test_rollback_invalid_count(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.rollback(0)

    def test_rollback_missing_file_skipped(self, orchestrator, migrations_dir, three_units):
        """A missing unit file is skipped and stays recorded."""
        orchestrator.apply()
        (migrations_dir / f'{U2}.sql').unlink()

        result = orchestrator.rollback()

        assert result.executed == [U3, U1]
        assert result.skipped == [U2]
        assert orchestrator.ledger.applied() == [U2]

    def test_rollback_failure_halts(self, orchestrator, write_unit):
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        write_unit(U2, 'CREATE TABLE tags (id INTEGER PRIMARY KEY);', 'DROP TABLE nowhere;')
        orchestrator.apply()

        with pytest.raises(ExecutionError) as exc_info:
            orchestrator.rollback()

        assert exc_info.value.version == U2
        assert exc_info.value.completed == []
        assert orchestrator.ledger.applied() == [U1, U2]


# ==================== Status ====================

class TestStatus:
    """Test status reporting."""

    def test_status_fresh(self, orchestrator, database, three_units):
        status = orchestrator.status()

        assert status.applied == []
        assert [m.version for m in status.pending] == three_units
        assert not status.is_current
        # Read-only: no tracking table created
        assert not database.table_exists('migrations')

    def test_status_after_apply(self, orchestrator, three_units):
        orchestrator.apply()
        status = orchestrator.status()

        assert [r.version for r in status.applied] == three_units
        assert status.is_current

    def test_modified_and_missing(self, orchestrator, migrations_dir, three_units):
        orchestrator.apply()
        path = migrations_dir / f'{U1}.sql'
        path.write_text(path.read_text() + '\n-- edited\n')
        (migrations_dir / f'{U3}.sql').unlink()

        status = orchestrator.status()

        assert status.modified == [U1]
        assert status.missing == [U3]


# ==================== Generate ====================

class TestGenerate:
    """Test unit generation from entities and from the live database."""

    def test_generate_and_apply(self, orchestrator, database, users_entity):
        result = orchestrator.generate('create_users', entities=[users_entity])

        assert result.migration.name == 'create_users'
        assert result.scripts.up[0].startswith('CREATE TABLE "users"')
        assert result.snapshot.version == result.migration.version
        assert orchestrator.snapshots.latest().version == result.migration.version

        applied = orchestrator.apply()

        assert applied.executed == [result.migration.version]
        assert database.table_exists('users')

    def test_generate_twice_no_changes(self, orchestrator, users_entity):
        orchestrator.generate('create_users', entities=[users_entity])

        with pytest.raises(NoChangesDetected):
            orchestrator.generate('again', entities=[users_entity])

        assert len(orchestrator.manager.discover()) == 1

    def test_generate_add_then_rollback(self, orchestrator, database, users_entity):
        first = orchestrator.generate('create_users', entities=[users_entity])
        orchestrator.apply()

        users_entity.fields.append(FieldDefinition.from_tags('age', 'column', 'int', 'nullable'))
        second = orchestrator.generate('add_age', entities=[users_entity])

        assert second.migration.version > first.migration.version
        assert second.scripts.up == ['ALTER TABLE "users" ADD COLUMN "age" INT(11) NULL;']
        assert second.scripts.down == ['ALTER TABLE "users" DROP COLUMN "age";']

        orchestrator.apply()
        columns = {c['name'] for c in database.inspector().get_columns('users')}
        assert 'age' in columns

        orchestrator.rollback()
        columns = {c['name'] for c in database.inspector().get_columns('users')}
        assert 'age' not in columns
        assert orchestrator.ledger.applied() == [first.migration.version]

    def test_generate_rename(self, orchestrator, database, users_entity):
        orchestrator.generate('create_users', entities=[users_entity])
        orchestrator.apply()

        users_entity.fields[2] = FieldDefinition.from_tags(
            'email_address', 'column', 'varchar', 'nullable', 'rename email'
        )
        result = orchestrator.generate('rename_email', entities=[users_entity])

        assert result.scripts.up == [
            'ALTER TABLE "users" RENAME COLUMN "email" TO "email_address";'
        ]
        # Snapshot holds the post-rename state without the marker
        column = result.snapshot.tables['users'].column('email_address')
        assert column.rename_from is None

        orchestrator.apply()
        columns = {c['name'] for c in database.inspector().get_columns('users')}
        assert 'email_address' in columns

    def test_generate_keeps_unmentioned_tables(self, orchestrator, users_entity):
        """Entities not passed to generate are not dropped."""
        posts = EntityDefinition('posts', [
            FieldDefinition.from_tags('id', 'column', 'autonumber'),
            FieldDefinition.from_tags('title', 'column', 'varchar 200'),
        ])
        orchestrator.generate('create_tables', entities=[users_entity, posts])

        posts.fields.append(FieldDefinition.from_tags('body', 'column', 'text', 'nullable'))
        result = orchestrator.generate('add_body', entities=[posts])

        assert result.scripts.up == ['ALTER TABLE "posts" ADD COLUMN "body" TEXT NULL;']
        assert set(result.snapshot.tables) == {'users', 'posts'}

    def test_generate_modification_rebuilds_on_sqlite(self, orchestrator, database,
                                                      users_entity):
        """Widening a column rebuilds the table and keeps its rows."""
        orchestrator.generate('create_users', entities=[users_entity])
        orchestrator.apply()
        database.execute(
            "INSERT INTO users (username, date_created) VALUES ('ada', '2026-10-18 12:00:00')"
        )

        users_entity.fields[1] = FieldDefinition.from_tags(
            'username', 'column', 'varchar 150', 'unique'
        )
        result = orchestrator.generate('widen_username', entities=[users_entity])

        assert result.scripts.up[0].startswith('CREATE TABLE "_users_rebuild"')
        assert result.scripts.up[-1] == (
            'CREATE UNIQUE INDEX "users_username_unique" ON "users" ("username");'
        )
        assert [w.category for w in result.warnings] == ['destructive']

        orchestrator.apply()

        def username_length():
            columns = {c['name']: c for c in database.inspector().get_columns('users')}
            return columns['username']['type'].length

        assert username_length() == 150
        assert database.query('SELECT username FROM users') == [{'username': 'ada'}]
        indexes = {i['name'] for i in database.inspector().get_indexes('users')}
        assert 'users_username_unique' in indexes
        assert not database.table_exists('_users_rebuild')

        orchestrator.rollback()

        assert username_length() == 100
        assert database.query('SELECT username FROM users') == [{'username': 'ada'}]

    def test_generate_not_null_column_on_populated_table(self, orchestrator, database,
                                                         users_entity):
        orchestrator.generate('create_users', entities=[users_entity])
        orchestrator.apply()
        database.execute(
            "INSERT INTO users (username, date_created) VALUES ('ada', '2026-10-18 12:00:00')"
        )

        users_entity.fields.append(FieldDefinition.from_tags('age', 'column', 'int'))
        result = orchestrator.generate('add_age', entities=[users_entity])

        assert result.scripts.up == [
            'ALTER TABLE "users" ADD COLUMN "age" INT(11) NOT NULL DEFAULT \'0\';'
        ]

        orchestrator.apply()

        assert database.query('SELECT username, age FROM users') == [
            {'username': 'ada', 'age': 0}
        ]

    def test_generate_foreign_key_and_apply(self, orchestrator, database, users_entity):
        posts = EntityDefinition('posts', [
            FieldDefinition.from_tags('id', 'column', 'autonumber'),
            FieldDefinition.from_tags('title', 'column', 'varchar 200'),
        ])
        orchestrator.generate('create_tables', entities=[posts, users_entity])
        orchestrator.apply()

        posts.fields.append(FieldDefinition.from_tags(
            'user_id', 'column', 'int', 'unsigned', 'nullable',
            'references users.id', 'on_delete cascade',
        ))
        result = orchestrator.generate('add_post_author', entities=[posts])
        orchestrator.apply()

        foreign_keys = database.inspector().get_foreign_keys('posts')
        assert [(fk['constrained_columns'], fk['referred_table']) for fk in foreign_keys] == [
            (['user_id'], 'users')
        ]
        assert result.snapshot.tables['posts'].foreign_keys[0].on_delete == 'CASCADE'

        orchestrator.rollback()
        assert database.inspector().get_foreign_keys('posts') == []

    def test_generate_invalid_entity(self, orchestrator):
        broken = EntityDefinition('posts', [
            FieldDefinition.from_tags('title', 'column', 'varchar'),
        ])

        with pytest.raises(SchemaValidationError):
            orchestrator.generate('broken', entities=[broken])

        assert orchestrator.manager.discover() == []
        assert orchestrator.snapshots.latest() is None

    def test_generate_from_database(self, orchestrator, database):
        """Without entities the live database is the current state."""
        database.execute(
            'CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT NOT NULL)'
        )

        result = orchestrator.generate('baseline')

        assert len(result.scripts.up) == 1
        assert result.scripts.up[0].startswith('CREATE TABLE "notes"')
        assert set(result.snapshot.tables) == {'notes'}

        with pytest.raises(NoChangesDetected):
            orchestrator.generate('again')

    def test_generate_from_database_ignores_ledger(self, orchestrator, database, write_unit):
        write_unit(U1, 'CREATE TABLE notes (id INTEGER PRIMARY KEY);', 'DROP TABLE notes;')
        orchestrator.apply()

        result = orchestrator.generate('baseline')

        assert set(result.snapshot.tables) == {'notes'}


# ==================== Reset ====================

class TestReset:
    """Test reset."""

    def test_reset(self, orchestrator, database, users_entity):
        orchestrator.generate('create_users', entities=[users_entity])
        orchestrator.apply()

        result = orchestrator.reset()

        assert result.ledger_records == 1
        assert result.migration_files == 1
        assert result.snapshots == 1
        assert orchestrator.ledger.applied() == []
        assert orchestrator.snapshots.latest() is None
        # Tables are left alone
        assert database.table_exists('users')

    def test_reset_fresh(self, orchestrator):
        result = orchestrator.reset()
        assert (result.ledger_records, result.migration_files, result.snapshots) == (0, 0, 0)


# ==================== Configuration ====================

class TestFromConfig:
    """Test building an orchestrator from a config file."""

    def test_unsupported_url_backend_uses_database_dialect(self, tmp_path, database):
        path = tmp_path / 'schemaledger.yaml'
        path.write_text('database_url: postgresql://u:p@localhost/app\n')

        orchestrator = MigrationOrchestrator.from_config(load_config(path), database)

        assert orchestrator.dialect == 'sqlite'
        assert orchestrator.differ.dialect.name == 'sqlite'

    def test_explicit_dialect(self, tmp_path, database):
        path = tmp_path / 'schemaledger.yaml'
        path.write_text('database_url: sqlite://\ndialect: mysql\n')

        orchestrator = MigrationOrchestrator.from_config(load_config(path), database)

        assert orchestrator.dialect == 'mysql'
