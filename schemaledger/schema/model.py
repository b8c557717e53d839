#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Driver-agnostic schema data models.

This module defines the canonical representation shared by the parser,
the live-database introspector, the snapshot store and the diff engine:
- SqlType: Logical column type vocabulary
- ColumnSpec: One persisted field
- ForeignKeySpec: One single-column foreign key constraint
- Schema: One table (ordered columns, foreign keys, timestamp flag)

ColumnSpec, ForeignKeySpec and Schema serialize to plain dicts so snapshots can be
stored as JSON and read back into identical values.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

# Columns required when an entity enables timestamps
TIMESTAMP_COLUMNS = ('date_created', 'date_modified')

Length = Union[int, str, Tuple[str, ...], None]


class SqlType(Enum):
    """Logical column types."""

    # Integer family
    INT = 'INT'
    BIGINT = 'BIGINT'
    TINYINT = 'TINYINT'
    SMALLINT = 'SMALLINT'
    MEDIUMINT = 'MEDIUMINT'

    # Decimal and floating point
    DECIMAL = 'DECIMAL'
    FLOAT = 'FLOAT'
    DOUBLE = 'DOUBLE'

    # String family
    VARCHAR = 'VARCHAR'
    CHAR = 'CHAR'

    # Text family
    TEXT = 'TEXT'
    MEDIUMTEXT = 'MEDIUMTEXT'
    LONGTEXT = 'LONGTEXT'

    # Temporal
    DATETIME = 'DATETIME'
    DATE = 'DATE'
    TIME = 'TIME'
    TIMESTAMP = 'TIMESTAMP'
    YEAR = 'YEAR'

    # Enumerated sets
    ENUM = 'ENUM'
    SET = 'SET'

    JSON = 'JSON'

    # Binary
    BLOB = 'BLOB'
    MEDIUMBLOB = 'MEDIUMBLOB'
    LONGBLOB = 'LONGBLOB'

    # Spatial
    POINT = 'POINT'
    GEOMETRY = 'GEOMETRY'
    LINESTRING = 'LINESTRING'
    POLYGON = 'POLYGON'

    @property
    def is_integer(self) -> bool:
        return self in _INTEGER_TYPES

    @property
    def is_numeric(self) -> bool:
        """Types that accept the UNSIGNED modifier."""
        return self in _INTEGER_TYPES or self in (
            SqlType.DECIMAL, SqlType.FLOAT, SqlType.DOUBLE
        )

    @property
    def takes_length(self) -> bool:
        return self in _LENGTH_TYPES

    @property
    def takes_values(self) -> bool:
        return self in (SqlType.ENUM, SqlType.SET)

    @property
    def is_string(self) -> bool:
        return self in (SqlType.VARCHAR, SqlType.CHAR)


_INTEGER_TYPES = frozenset({
    SqlType.INT, SqlType.BIGINT, SqlType.TINYINT,
    SqlType.SMALLINT, SqlType.MEDIUMINT,
})

_LENGTH_TYPES = frozenset({
    SqlType.VARCHAR, SqlType.CHAR, SqlType.INT, SqlType.BIGINT,
    SqlType.TINYINT, SqlType.SMALLINT, SqlType.MEDIUMINT, SqlType.DECIMAL,
})


@dataclass
class ColumnSpec:
    """
    One persisted field.

    Attributes:
        name: Column identifier
        sql_type: Logical type (None only for a column marked for removal)
        length: int for sized types, 'precision,scale' for DECIMAL,
            tuple of values for ENUM/SET, None otherwise
        nullable: Allow NULL (default NOT NULL)
        unique: Unique constraint on this column
        primary_key: Column is the table's primary key
        unsigned: Unsigned numeric
        auto_increment: Database-generated sequence value
        default: Default value literal (string form)
        indexed: Non-unique index on this column
        rename_from: Previous column name, for rename detection
        marked_for_removal: Column should be dropped

    Example:
        >>> ColumnSpec('username', SqlType.VARCHAR, length=255)
        <ColumnSpec(username VARCHAR(255))>
    """

    name: str
    sql_type: Optional[SqlType] = None
    length: Length = None
    nullable: bool = False
    unique: bool = False
    primary_key: bool = False
    unsigned: bool = False
    auto_increment: bool = False
    default: Optional[str] = None
    indexed: bool = False
    rename_from: Optional[str] = None
    marked_for_removal: bool = False

    @property
    def values(self) -> Tuple[str, ...]:
        """Enum/set value list (empty for other types)."""
        if isinstance(self.length, tuple):
            return self.length
        return ()

    @property
    def type_label(self) -> str:
        """Type with its length, e.g. VARCHAR(255) or ENUM('a','b')."""
        if self.sql_type is None:
            return '?'
        if self.values:
            joined = ','.join(f"'{v}'" for v in self.values)
            return f"{self.sql_type.value}({joined})"
        if self.length is not None:
            return f"{self.sql_type.value}({self.length})"
        return self.sql_type.value

    def definition_key(self) -> tuple:
        """Attributes that make up the column definition for diffing."""
        return (
            self.sql_type,
            self.length,
            self.unsigned,
            self.nullable,
            self.default,
            self.auto_increment,
        )

    def with_definition(self, other: 'ColumnSpec') -> 'ColumnSpec':
        """This column (name and index flags kept) with other's definition."""
        return replace(
            self,
            sql_type=other.sql_type,
            length=other.length,
            unsigned=other.unsigned,
            nullable=other.nullable,
            default=other.default,
            auto_increment=other.auto_increment,
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with the type as its string value and enum/set
            values as a list
        """
        length = self.length
        if isinstance(length, tuple):
            length = list(length)
        return {
            'name': self.name,
            'type': self.sql_type.value if self.sql_type else None,
            'length': length,
            'nullable': self.nullable,
            'unique': self.unique,
            'primary': self.primary_key,
            'unsigned': self.unsigned,
            'autoincrement': self.auto_increment,
            'default': self.default,
            'index': self.indexed,
            'rename': self.rename_from,
            'drop': self.marked_for_removal,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ColumnSpec':
        """Rebuild a column from to_dict() output."""
        length = data.get('length')
        if isinstance(length, list):
            length = tuple(str(v) for v in length)

        type_name = data.get('type')
        return cls(
            name=data['name'],
            sql_type=SqlType(type_name) if type_name else None,
            length=length,
            nullable=bool(data.get('nullable', False)),
            unique=bool(data.get('unique', False)),
            primary_key=bool(data.get('primary', False)),
            unsigned=bool(data.get('unsigned', False)),
            auto_increment=bool(data.get('autoincrement', False)),
            default=data.get('default'),
            indexed=bool(data.get('index', False)),
            rename_from=data.get('rename'),
            marked_for_removal=bool(data.get('drop', False)),
        )

    def __repr__(self) -> str:
        return f"<ColumnSpec({self.name} {self.type_label})>"


def foreign_key_name(table: str, column: str) -> str:
    """Default constraint name, e.g. posts_user_id_foreign."""
    return f"{table}_{column}_foreign"


@dataclass
class ForeignKeySpec:
    """
    Single-column foreign key constraint.

    Attributes:
        name: Constraint name (unique per table)
        column: Referencing column
        ref_table: Referenced table
        ref_column: Referenced column
        on_delete: Referential action (CASCADE, SET NULL, ...) or None
        on_update: Referential action or None
    """

    name: str
    column: str
    ref_table: str
    ref_column: str
    on_delete: Optional[str] = None
    on_update: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'column': self.column,
            'referenced_table': self.ref_table,
            'referenced_column': self.ref_column,
            'on_delete': self.on_delete,
            'on_update': self.on_update,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForeignKeySpec':
        return cls(
            name=data['name'],
            column=data['column'],
            ref_table=data['referenced_table'],
            ref_column=data['referenced_column'],
            on_delete=data.get('on_delete'),
            on_update=data.get('on_update'),
        )


@dataclass
class Schema:
    """
    One table.

    Attributes:
        table: Table name
        columns: Columns in declaration order (names unique)
        timestamps: Entity manages date_created/date_modified columns
        foreign_keys: Foreign key constraints in declaration order

    Example:
        >>> schema = Schema('users', [ColumnSpec('id', SqlType.INT)])
        >>> schema.column_names
        ['id']
    """

    table: str
    columns: List[ColumnSpec] = field(default_factory=list)
    timestamps: bool = False
    foreign_keys: List[ForeignKeySpec] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key(self) -> Optional[ColumnSpec]:
        """The primary key column, or None."""
        for column in self.columns:
            if column.primary_key and not column.marked_for_removal:
                return column
        return None

    def column(self, name: str) -> Optional[ColumnSpec]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def foreign_key(self, name: str) -> Optional[ForeignKeySpec]:
        for fk in self.foreign_keys:
            if fk.name == name:
                return fk
        return None

    def resolved(self) -> 'Schema':
        """
        Return the schema as it looks once its changes are applied.

        Columns marked for removal disappear (with their foreign keys)
        and rename markers are cleared. This is the shape stored in
        snapshots, so the next diff does not replay the same drop or
        rename.
        """
        columns = [
            replace(c, rename_from=None)
            for c in self.columns
            if not c.marked_for_removal
        ]
        names = {c.name for c in columns}
        foreign_keys = [replace(fk) for fk in self.foreign_keys if fk.column in names]
        return Schema(self.table, columns, self.timestamps, foreign_keys)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'columns': [c.to_dict() for c in self.columns],
            'timestamps': self.timestamps,
            'foreign_keys': [fk.to_dict() for fk in self.foreign_keys],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Schema':
        return cls(
            table=data['table'],
            columns=[ColumnSpec.from_dict(c) for c in data.get('columns', [])],
            timestamps=bool(data.get('timestamps', False)),
            foreign_keys=[
                ForeignKeySpec.from_dict(fk) for fk in data.get('foreign_keys', [])
            ],
        )

    def __repr__(self) -> str:
        return f"<Schema({self.table}, {len(self.columns)} columns)>"
