"""
Unit tests for the Database collaborator (in-memory SQLite).
"""

import pytest
from sqlalchemy import create_engine

from schemaledger.database import Database
from schemaledger.errors import ExecutionError


class TestDatabase:
    """Test statement execution and transactions."""

    def test_execute_and_query(self, database):
        database.execute('CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT)')
        inserted = database.execute(
            'INSERT INTO t (name) VALUES (:name)', {'name': 'alpha'}
        )

        assert inserted == 1
        assert database.query('SELECT id, name FROM t') == [{'id': 1, 'name': 'alpha'}]

    def test_query_params(self, database):
        database.execute('CREATE TABLE t (id INTEGER PRIMARY KEY)')
        for i in range(1, 4):
            database.execute('INSERT INTO t (id) VALUES (:id)', {'id': i})

        rows = database.query('SELECT id FROM t WHERE id > :min ORDER BY id', {'min': 1})

        assert [r['id'] for r in rows] == [2, 3]

    def test_dialect_name(self, database):
        assert database.dialect_name == 'sqlite'

    def test_accepts_engine(self):
        db = Database(create_engine('sqlite://'))
        try:
            assert db.dialect_name == 'sqlite'
        finally:
            db.close()

    def test_error_wrapped(self, database):
        with pytest.raises(ExecutionError) as exc_info:
            database.execute('SELECT * FROM missing_table')

        assert 'missing_table' in exc_info.value.message
        assert exc_info.value.statement == 'SELECT * FROM missing_table'

    def test_transaction_commits(self, database):
        with database.transaction() as tx:
            tx.execute('CREATE TABLE t (id INTEGER PRIMARY KEY)')
            tx.execute('INSERT INTO t (id) VALUES (1)')

        assert database.query('SELECT id FROM t') == [{'id': 1}]

    def test_transaction_rolls_back_ddl(self, database):
        """DDL inside a failed transaction is undone on SQLite."""
        with pytest.raises(ExecutionError):
            with database.transaction() as tx:
                tx.execute('CREATE TABLE t (id INTEGER PRIMARY KEY)')
                tx.execute('INSERT INTO nowhere VALUES (1)')

        assert not database.table_exists('t')

    def test_file_database(self, file_database):
        file_database.execute('CREATE TABLE t (id INTEGER PRIMARY KEY)')
        assert file_database.table_exists('t')
        assert file_database.inspector().get_table_names() == ['t']
