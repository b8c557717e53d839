#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQL execution collaborator backed by a SQLAlchemy engine.

Exposes the two operations the ledger and orchestrator rely on:
- execute(statement, params) -> rows affected
- query(statement, params) -> list of row dicts

plus transaction scoping and live-schema inspection. Driver failures are
re-raised as ExecutionError so callers never handle SQLAlchemy types.

Usage:
    db = Database('sqlite:///app.db')
    db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY)")
    rows = db.query("SELECT id FROM t WHERE id > :min", {'min': 10})

    with db.transaction() as tx:
        tx.execute("INSERT INTO t (id) VALUES (1)")
        tx.execute("INSERT INTO t (id) VALUES (2)")
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from schemaledger.errors import ExecutionError

logger = logging.getLogger(__name__)

Params = Optional[Dict[str, Any]]


def _error_message(error: SQLAlchemyError) -> str:
    # DBAPI errors carry the driver's own message in .orig
    orig = getattr(error, 'orig', None)
    return str(orig) if orig is not None else str(error)


def _enable_transactional_ddl(engine: Engine) -> None:
    """
    Make pysqlite wrap DDL in the surrounding transaction.

    The sqlite3 module only opens transactions before DML, so CREATE and
    ALTER would otherwise commit on their own. Disable its implicit
    handling and emit BEGIN whenever SQLAlchemy begins.
    """

    @event.listens_for(engine, 'connect')
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _on_begin(connection):
        connection.exec_driver_sql('BEGIN')


class TransactionScope:
    """
    Statement execution bound to one open connection/transaction.

    Attributes:
        connection: SQLAlchemy Connection inside a begin() block
    """

    def __init__(self, connection: Connection):
        self.connection = connection

    def execute(self, statement: str, params: Params = None) -> int:
        """
        Execute a statement.

        Statements without parameters go to the driver verbatim, so
        colons inside literals are never read as bind markers.

        Returns:
            Number of rows affected (-1 when the driver cannot tell)

        Raises:
            ExecutionError: If the driver reports a failure
        """
        try:
            if params is None:
                result = self.connection.exec_driver_sql(statement)
            else:
                result = self.connection.execute(text(statement), params)
        except SQLAlchemyError as e:
            raise ExecutionError(_error_message(e), statement=statement) from e
        return result.rowcount

    def query(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        """
        Run a query and return its rows as dicts.

        Raises:
            ExecutionError: If the driver reports a failure
        """
        try:
            result = self.connection.execute(text(statement), params or {})
            return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise ExecutionError(_error_message(e), statement=statement) from e


class Database:
    """
    SQL execution collaborator.

    Each execute()/query() call runs in its own short transaction; use
    transaction() to group statements.

    Attributes:
        engine: SQLAlchemy Engine

    Example:
        >>> db = Database('sqlite://')
        >>> db.execute('CREATE TABLE t (id INTEGER)')
        -1
        >>> db.dialect_name
        'sqlite'
    """

    def __init__(self, url_or_engine: Union[str, Engine], echo: bool = False):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            self.engine = create_engine(url_or_engine, echo=echo, future=True)
        self.logger = logging.getLogger(__name__)

        if self.engine.dialect.name == 'sqlite':
            _enable_transactional_ddl(self.engine)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def execute(self, statement: str, params: Params = None) -> int:
        with self.transaction() as tx:
            return tx.execute(statement, params)

    def query(self, statement: str, params: Params = None) -> List[Dict[str, Any]]:
        with self.engine.connect() as connection:
            return TransactionScope(connection).query(statement, params)

    @contextmanager
    def transaction(self) -> Iterator[TransactionScope]:
        """
        Open a transaction; commits on success, rolls back on error.

        Note that MySQL commits DDL implicitly, so a failing script may
        leave earlier DDL statements of the same unit in place.
        """
        try:
            with self.engine.begin() as connection:
                yield TransactionScope(connection)
        except SQLAlchemyError as e:
            # Commit/begin failures surface here
            raise ExecutionError(_error_message(e)) from e

    def inspector(self) -> Inspector:
        return inspect(self.engine)

    def table_exists(self, table: str) -> bool:
        return self.inspector().has_table(table)

    def close(self) -> None:
        self.engine.dispose()
        self.logger.debug("Disposed engine for %s", self.dialect_name)
