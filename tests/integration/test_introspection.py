"""
Integration tests for live-database introspection (SQLite).
"""

import pytest
from sqlalchemy import types as sqltypes

from schemaledger.schema.introspection import SchemaIntrospector, _strip_default, map_type
from schemaledger.schema.model import ForeignKeySpec, SqlType

pytestmark = pytest.mark.integration


@pytest.fixture
def accounts(database):
    database.execute(
        "CREATE TABLE accounts ("
        " id INTEGER PRIMARY KEY,"
        " handle VARCHAR(40) NOT NULL,"
        " status VARCHAR(20) NOT NULL DEFAULT 'active',"
        " bio TEXT,"
        " balance NUMERIC(10, 2),"
        " date_created DATETIME NOT NULL,"
        " date_modified DATETIME"
        ")"
    )
    database.execute('CREATE UNIQUE INDEX accounts_handle_unique ON accounts (handle)')
    database.execute('CREATE INDEX accounts_status_index ON accounts (status)')
    return 'accounts'


class TestSchemaIntrospector:
    """Test reading table structure."""

    def test_table_names_exclude(self, database, accounts):
        database.execute('CREATE TABLE migrations (id INTEGER PRIMARY KEY)')
        introspector = SchemaIntrospector(database, exclude=['migrations'])

        assert introspector.table_names() == ['accounts']
        assert set(introspector.introspect()) == {'accounts'}

    def test_columns(self, database, accounts):
        schema = SchemaIntrospector(database).table('accounts')

        assert schema.column_names == [
            'id', 'handle', 'status', 'bio', 'balance', 'date_created', 'date_modified'
        ]
        assert schema.primary_key.name == 'id'
        assert schema.column('id').nullable is False
        assert schema.column('handle').sql_type is SqlType.VARCHAR
        assert schema.column('handle').length == 40
        assert schema.column('bio').nullable is True
        assert schema.column('bio').sql_type is SqlType.TEXT
        assert schema.column('balance').sql_type is SqlType.DECIMAL
        assert schema.column('balance').length == '10,2'

    def test_default_unquoted(self, database, accounts):
        schema = SchemaIntrospector(database).table('accounts')
        assert schema.column('status').default == 'active'

    def test_index_flags(self, database, accounts):
        schema = SchemaIntrospector(database).table('accounts')

        assert schema.column('handle').unique is True
        assert schema.column('handle').indexed is False
        assert schema.column('status').indexed is True
        assert schema.column('bio').indexed is False

    def test_timestamps_detected(self, database, accounts):
        assert SchemaIntrospector(database).table('accounts').timestamps is True

    def test_empty_database(self, database):
        assert SchemaIntrospector(database).introspect() == {}

    def test_foreign_keys(self, database, accounts):
        database.execute(
            "CREATE TABLE posts ("
            " id INTEGER PRIMARY KEY,"
            " account_id INTEGER NOT NULL,"
            " editor_id INTEGER,"
            " CONSTRAINT posts_account_id_foreign FOREIGN KEY (account_id)"
            " REFERENCES accounts (id) ON DELETE CASCADE,"
            " FOREIGN KEY (editor_id) REFERENCES accounts (id) ON UPDATE NO ACTION"
            ")"
        )

        schema = SchemaIntrospector(database).table(posts)
        by_column = {fk.column: fk for fk in schema.foreign_keys}

        assert by_column[account_id] == ForeignKeySpec(
            posts_account_id_foreign, account_id, accounts, id, on_delete=CASCADE
        )
        # Unnamed constraints get the default name; NO ACTION is the default
        assert by_column[editor_id] == ForeignKeySpec(
            posts_editor_id_foreign, editor_id, accounts, id
        )

    def test_no_foreign_keys(self, database, accounts):
        assert SchemaIntrospector(database).table(accounts).foreign_keys == []


class TestTypeMapping:
    """Test reflected type mapping."""

    def test_known_types(self):
        assert map_type(sqltypes.VARCHAR(30)) == (SqlType.VARCHAR, 30, False)
        assert map_type(sqltypes.NUMERIC(8, 3)) == (SqlType.DECIMAL, '8,3', False)
        assert map_type(sqltypes.BOOLEAN()) == (SqlType.TINYINT, 1, False)
        assert map_type(sqltypes.TEXT())[0] is SqlType.TEXT

    def test_unknown_type_falls_back_to_text(self):
        assert map_type(sqltypes.NullType()) == (SqlType.TEXT, None, False)

    def test_strip_default(self):
        assert _strip_default("'it''s'") == "it's"
        assert _strip_default('CURRENT_TIMESTAMP') == 'CURRENT_TIMESTAMP'
        assert _strip_default(None) is None
