"""
Live database introspection.

Reads the current table structure through SQLAlchemy's inspector and
maps it onto the same Schema/ColumnSpec model the parser produces, so
the diff engine can compare a snapshot against the live database.

Reflection is lossy on some backends (SQLite drops integer display
widths, for example); columns keep whatever the driver reports.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import types as sqltypes

from schemaledger.schema.model import (
    TIMESTAMP_COLUMNS,
    ColumnSpec,
    ForeignKeySpec,
    Schema,
    SqlType,
    foreign_key_name,
)

logger = logging.getLogger(__name__)

# Reflected type class name -> logical type
TYPE_NAMES = {
    'INTEGER': SqlType.INT,
    'INT': SqlType.INT,
    'BIGINT': SqlType.BIGINT,
    'SMALLINT': SqlType.SMALLINT,
    'TINYINT': SqlType.TINYINT,
    'MEDIUMINT': SqlType.MEDIUMINT,
    'BOOLEAN': SqlType.TINYINT,
    'NUMERIC': SqlType.DECIMAL,
    'DECIMAL': SqlType.DECIMAL,
    'FLOAT': SqlType.FLOAT,
    'REAL': SqlType.DOUBLE,
    'DOUBLE': SqlType.DOUBLE,
    'DOUBLE_PRECISION': SqlType.DOUBLE,
    'VARCHAR': SqlType.VARCHAR,
    'NVARCHAR': SqlType.VARCHAR,
    'CHAR': SqlType.CHAR,
    'NCHAR': SqlType.CHAR,
    'TEXT': SqlType.TEXT,
    'CLOB': SqlType.TEXT,
    'TINYTEXT': SqlType.TEXT,
    'MEDIUMTEXT': SqlType.MEDIUMTEXT,
    'LONGTEXT': SqlType.LONGTEXT,
    'DATETIME': SqlType.DATETIME,
    'DATE': SqlType.DATE,
    'TIME': SqlType.TIME,
    'TIMESTAMP': SqlType.TIMESTAMP,
    'YEAR': SqlType.YEAR,
    'ENUM': SqlType.ENUM,
    'SET': SqlType.SET,
    'JSON': SqlType.JSON,
    'BLOB': SqlType.BLOB,
    'TINYBLOB': SqlType.BLOB,
    'MEDIUMBLOB': SqlType.MEDIUMBLOB,
    'LONGBLOB': SqlType.LONGBLOB,
    'POINT': SqlType.POINT,
    'GEOMETRY': SqlType.GEOMETRY,
    'LINESTRING': SqlType.LINESTRING,
    'POLYGON': SqlType.POLYGON,
}


def _strip_default(default) -> Optional[str]:
    """Reflected server defaults come back quoted, e.g. "'0'"."""
    if default is None:
        return None
    value = str(default).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].replace("''", "'")
    return value


def _action(value) -> Optional[str]:
    """Referential action as written by the parser (NO ACTION is the default)."""
    if not value:
        return None
    action = ' '.join(str(value).upper().split())
    return None if action == 'NO ACTION' else action


def map_type(type_) -> tuple:
    """
    Map a reflected SQLAlchemy type to (SqlType, length, unsigned).

    Unknown types fall back to TEXT with a warning.
    """
    name = type(type_).__name__.upper()
    sql_type = TYPE_NAMES.get(name)
    if sql_type is None:
        logger.warning("Unknown column type %s, treating as TEXT", name)
        return SqlType.TEXT, None, False

    length = None
    if sql_type.takes_values:
        length = tuple(getattr(type_, 'enums', None) or getattr(type_, 'values', None) or ())
    elif sql_type is SqlType.DECIMAL:
        precision = getattr(type_, 'precision', None)
        if precision is not None:
            length = f"{precision},{getattr(type_, 'scale', None) or 0}"
    elif isinstance(type_, sqltypes.Boolean):
        length = 1
    elif sql_type.takes_length:
        length = getattr(type_, 'length', None) or getattr(type_, 'display_width', None)

    unsigned = bool(getattr(type_, 'unsigned', False))
    return sql_type, length, unsigned


class SchemaIntrospector:
    """
    Builds Schema objects from a live database.

    Attributes:
        database: Database collaborator (provides inspector())
        exclude: Table names to ignore, e.g. the ledger table

    Example:
        >>> introspector = SchemaIntrospector(db, exclude=['migrations'])
        >>> tables = introspector.introspect()
        >>> tables['users'].primary_key.name
        'id'
    """

    def __init__(self, database, exclude: Iterable[str] = ()):
        self.database = database
        self.exclude = set(exclude)

    def table_names(self) -> List[str]:
        inspector = self.database.inspector()
        return [t for t in inspector.get_table_names() if t not in self.exclude]

    def introspect(self) -> Dict[str, Schema]:
        """Every non-excluded table, keyed by name."""
        inspector = self.database.inspector()
        tables = {}
        for table in inspector.get_table_names():
            if table in self.exclude:
                continue
            tables[table] = self._table_schema(inspector, table)
        logger.debug("Introspected %d tables", len(tables))
        return tables

    def table(self, name: str) -> Schema:
        return self._table_schema(self.database.inspector(), name)

    def _table_schema(self, inspector, table: str) -> Schema:
        pk = inspector.get_pk_constraint(table) or {}
        primary = pk.get('constrained_columns') or []

        unique_columns = set()
        indexed_columns = set()
        for index in inspector.get_indexes(table):
            columns = index.get('column_names') or []
            # Only single-column indexes map onto column flags
            if len(columns) != 1 or columns[0] is None:
                continue
            if index.get('unique'):
                unique_columns.add(columns[0])
            else:
                indexed_columns.add(columns[0])
        for constraint in inspector.get_unique_constraints(table):
            columns = constraint.get('column_names') or []
            if len(columns) == 1:
                unique_columns.add(columns[0])

        columns = []
        for info in inspector.get_columns(table):
            sql_type, length, unsigned = map_type(info['type'])
            name = info['name']
            columns.append(ColumnSpec(
                name=name,
                sql_type=sql_type,
                length=length,
                nullable=bool(info.get('nullable', True)) and name not in primary,
                unique=name in unique_columns,
                primary_key=len(primary) == 1 and name in primary,
                unsigned=unsigned,
                auto_increment=info.get('autoincrement') is True,
                default=_strip_default(info.get('default')),
                indexed=name in indexed_columns and name not in unique_columns,
            ))

        names = {c.name for c in columns}
        timestamps = all(t in names for t in TIMESTAMP_COLUMNS)
        return Schema(table, columns, timestamps, self._foreign_keys(inspector, table))

    def _foreign_keys(self, inspector, table: str) -> List[ForeignKeySpec]:
        foreign_keys = []
        for info in inspector.get_foreign_keys(table):
            constrained = info.get('constrained_columns') or []
            referred = info.get('referred_columns') or []
            # Only single-column constraints map onto ForeignKeySpec
            if len(constrained) != 1 or len(referred) != 1:
                logger.debug("Skipping composite foreign key on %s: %s", table, constrained)
                continue

            options = info.get('options') or {}
            foreign_keys.append(ForeignKeySpec(
                name=info.get('name') or foreign_key_name(table, constrained[0]),
                column=constrained[0],
                ref_table=info['referred_table'],
                ref_column=referred[0],
                on_delete=_action(options.get('ondelete')),
                on_update=_action(options.get('onupdate')),
            ))
        return foreign_keys
