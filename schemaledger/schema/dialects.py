"""
SQL rendering for schema changes.

A Dialect turns logical ColumnSpec/Schema values into DDL statements.
MySQLDialect is the default and produces backtick-quoted InnoDB DDL.
SQLiteDialect exists so generated scripts can run against SQLite
databases; what SQLite cannot alter in place (column definitions,
foreign keys) is rendered as a table rebuild: create a replacement
table, copy the rows, drop the original, rename the replacement.

Every method returns a list of statements, each terminated by ';'.
Methods that may need the whole table take the table's current Schema
as an optional last argument.
"""

from dataclasses import replace
from typing import Dict, List, Optional, Type

from schemaledger.schema.model import ColumnSpec, ForeignKeySpec, Schema, SqlType

# Defaults rendered without quotes
RAW_DEFAULTS = frozenset({'CURRENT_TIMESTAMP', 'NULL'})


class Dialect:
    """Base DDL renderer."""

    name = 'generic'
    quote_char = '"'

    def quote(self, identifier: str) -> str:
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def literal(self, value: str) -> str:
        if str(value).upper() in RAW_DEFAULTS:
            return str(value).upper()
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def type_sql(self, column: ColumnSpec) -> str:
        if column.values:
            values = ', '.join(self.literal(v) for v in column.values)
            return f"{column.sql_type.value}({values})"
        if column.length is not None:
            return f"{column.sql_type.value}({column.length})"
        return column.sql_type.value

    def column_definition(self, column: ColumnSpec) -> str:
        parts = [self.quote(column.name), self.type_sql(column)]
        if column.unsigned:
            parts.append('UNSIGNED')
        parts.append('NULL' if column.nullable else 'NOT NULL')
        if column.auto_increment:
            parts.append('AUTO_INCREMENT')
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        return ' '.join(parts)

    def foreign_key_definition(self, fk: ForeignKeySpec) -> str:
        sql = (
            f"CONSTRAINT {self.quote(fk.name)} FOREIGN KEY ({self.quote(fk.column)}) "
            f"REFERENCES {self.quote(fk.ref_table)} ({self.quote(fk.ref_column)})"
        )
        if fk.on_delete:
            sql += f" ON DELETE {fk.on_delete}"
        if fk.on_update:
            sql += f" ON UPDATE {fk.on_update}"
        return sql

    def index_name(self, table: str, column_name: str, unique: bool) -> str:
        suffix = 'unique' if unique else 'index'
        return f"{column_name}_{suffix}"

    def create_table(self, schema: Schema) -> List[str]:
        raise NotImplementedError

    def drop_table(self, table: str) -> List[str]:
        return [f"DROP TABLE IF EXISTS {self.quote(table)};"]

    def add_column(self, table: str, column: ColumnSpec) -> List[str]:
        return [
            f"ALTER TABLE {self.quote(table)} ADD COLUMN "
            f"{self.column_definition(column)};"
        ]

    def drop_column(self, table: str, column_name: str) -> List[str]:
        return [
            f"ALTER TABLE {self.quote(table)} DROP COLUMN {self.quote(column_name)};"
        ]

    def rename_column(self, table: str, old: ColumnSpec, new: ColumnSpec,
                      schema: Optional[Schema] = None) -> List[str]:
        raise NotImplementedError

    def modify_column(self, table: str, column: ColumnSpec,
                      schema: Optional[Schema] = None) -> List[str]:
        raise NotImplementedError

    def add_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        raise NotImplementedError

    def drop_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        raise NotImplementedError

    def add_foreign_key(self, table: str, fk: ForeignKeySpec,
                        schema: Optional[Schema] = None) -> List[str]:
        raise NotImplementedError

    def drop_foreign_key(self, table: str, fk: ForeignKeySpec,
                         schema: Optional[Schema] = None) -> List[str]:
        raise NotImplementedError


class MySQLDialect(Dialect):
    """MySQL / MariaDB DDL."""

    name = 'mysql'
    quote_char = '`'

    engine = 'InnoDB'
    charset = 'utf8mb4'

    def create_table(self, schema: Schema) -> List[str]:
        definitions = [self.column_definition(c) for c in schema.columns]

        primary = [c.name for c in schema.columns if c.primary_key]
        if primary:
            keys = ', '.join(self.quote(n) for n in primary)
            definitions.append(f"PRIMARY KEY ({keys})")

        for column in schema.columns:
            if column.unique:
                name = self.index_name(schema.table, column.name, True)
                definitions.append(
                    f"UNIQUE KEY {self.quote(name)} ({self.quote(column.name)})"
                )
        for column in schema.columns:
            if column.indexed:
                name = self.index_name(schema.table, column.name, False)
                definitions.append(
                    f"KEY {self.quote(name)} ({self.quote(column.name)})"
                )
        for fk in schema.foreign_keys:
            definitions.append(self.foreign_key_definition(fk))

        body = ',\n  '.join(definitions)
        return [
            f"CREATE TABLE {self.quote(schema.table)} (\n  {body}\n) "
            f"ENGINE={self.engine} DEFAULT CHARSET={self.charset};"
        ]

    def rename_column(self, table, old, new, schema=None):
        # CHANGE carries the full new definition
        return [
            f"ALTER TABLE {self.quote(table)} CHANGE {self.quote(old.name)} "
            f"{self.column_definition(new)};"
        ]

    def modify_column(self, table, column, schema=None):
        return [
            f"ALTER TABLE {self.quote(table)} MODIFY COLUMN "
            f"{self.column_definition(column)};"
        ]

    def add_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        kind = 'UNIQUE KEY' if unique else 'INDEX'
        name = self.index_name(table, column_name, unique)
        return [
            f"ALTER TABLE {self.quote(table)} ADD {kind} {self.quote(name)} "
            f"({self.quote(column_name)});"
        ]

    def drop_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        name = self.index_name(table, column_name, unique)
        return [f"ALTER TABLE {self.quote(table)} DROP INDEX {self.quote(name)};"]

    def add_foreign_key(self, table, fk, schema=None):
        return [f"ALTER TABLE {self.quote(table)} ADD {self.foreign_key_definition(fk)};"]

    def drop_foreign_key(self, table, fk, schema=None):
        return [
            f"ALTER TABLE {self.quote(table)} DROP FOREIGN KEY {self.quote(fk.name)};"
        ]


class SQLiteDialect(Dialect):
    """SQLite DDL (requires SQLite 3.35+ for DROP COLUMN)."""

    name = 'sqlite'

    def type_sql(self, column: ColumnSpec) -> str:
        if column.sql_type in (SqlType.ENUM, SqlType.SET):
            return 'TEXT'
        return super().type_sql(column)

    def _is_rowid_key(self, column: ColumnSpec) -> bool:
        return column.primary_key and column.auto_increment

    def column_definition(self, column: ColumnSpec) -> str:
        if self._is_rowid_key(column):
            return f"{self.quote(column.name)} INTEGER PRIMARY KEY AUTOINCREMENT"

        parts = [self.quote(column.name), self.type_sql(column)]
        parts.append('NULL' if column.nullable else 'NOT NULL')
        if column.default is not None:
            parts.append(f"DEFAULT {self.literal(column.default)}")
        return ' '.join(parts)

    def index_name(self, table: str, column_name: str, unique: bool) -> str:
        # SQLite index names are database-wide
        return f"{table}_{super().index_name(table, column_name, unique)}"

    def _create_statement(self, schema: Schema, table: str) -> str:
        definitions = [self.column_definition(c) for c in schema.columns]

        primary = [
            c.name for c in schema.columns
            if c.primary_key and not self._is_rowid_key(c)
        ]
        if primary and not any(self._is_rowid_key(c) for c in schema.columns):
            keys = ', '.join(self.quote(n) for n in primary)
            definitions.append(f"PRIMARY KEY ({keys})")

        for fk in schema.foreign_keys:
            definitions.append(self.foreign_key_definition(fk))

        body = ',\n  '.join(definitions)
        return f"CREATE TABLE {self.quote(table)} (\n  {body}\n);"

    def _index_statements(self, schema: Schema) -> List[str]:
        statements = []
        for column in schema.columns:
            if column.unique:
                statements.extend(self.add_index(schema.table, column.name, True))
        for column in schema.columns:
            if column.indexed:
                statements.extend(self.add_index(schema.table, column.name, False))
        return statements

    def create_table(self, schema: Schema) -> List[str]:
        return [self._create_statement(schema, schema.table)] + self._index_statements(schema)

    def rebuild_table(self, before: Schema, after: Schema) -> List[str]:
        """
        Recreate a table with a new definition, keeping its rows.

        Columns present in both definitions are copied by name. Indexes
        go away with the original table and are created again on the
        renamed replacement.
        """
        table = self.quote(before.table)
        temp = self.quote(f"_{before.table}_rebuild")
        columns = ', '.join(
            self.quote(c.name) for c in after.columns
            if before.column(c.name) is not None
        )
        return [
            self._create_statement(after, f"_{before.table}_rebuild"),
            f"INSERT INTO {temp} ({columns}) SELECT {columns} FROM {table};",
            f"DROP TABLE {table};",
            f"ALTER TABLE {temp} RENAME TO {table};",
        ] + self._index_statements(after)

    @staticmethod
    def _require(schema: Optional[Schema], table: str) -> Schema:
        if schema is None:
            raise ValueError(
                f"SQLite rebuilds '{table}' for this change and needs its "
                f"current definition"
            )
        return schema

    def add_column(self, table: str, column: ColumnSpec) -> List[str]:
        if not column.nullable and column.default is None and not column.auto_increment:
            # ADD COLUMN ... NOT NULL needs a non-NULL default for existing rows
            column = replace(column, default=implied_default(column))
        return super().add_column(table, column)

    def rename_column(self, table, old, new, schema=None):
        statements = [
            f"ALTER TABLE {self.quote(table)} RENAME COLUMN "
            f"{self.quote(old.name)} TO {self.quote(new.name)};"
        ]
        if old.sql_type is not None and old.definition_key() != new.definition_key():
            current = self._require(schema, table)
            renamed = Schema(
                current.table,
                [
                    replace(c, name=new.name) if c.name == old.name else c
                    for c in current.columns
                ],
                current.timestamps,
                [
                    replace(fk, column=new.name)
                    if fk.column == old.name else fk
                    for fk in current.foreign_keys
                ],
            )
            statements.extend(self.modify_column(table, new, renamed))
        return statements

    def modify_column(self, table, column, schema=None):
        before = self._require(schema, table)
        after = Schema(
            before.table,
            [c.with_definition(column) if c.name == column.name else c for c in before.columns],
            before.timestamps,
            list(before.foreign_keys),
        )
        return self.rebuild_table(before, after)

    def add_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        kind = 'UNIQUE INDEX' if unique else 'INDEX'
        name = self.index_name(table, column_name, unique)
        return [
            f"CREATE {kind} {self.quote(name)} ON {self.quote(table)} "
            f"({self.quote(column_name)});"
        ]

    def drop_index(self, table: str, column_name: str, unique: bool) -> List[str]:
        name = self.index_name(table, column_name, unique)
        return [f"DROP INDEX IF EXISTS {self.quote(name)};"]

    def add_foreign_key(self, table, fk, schema=None):
        before = self._require(schema, table)
        after = Schema(
            before.table,
            list(before.columns),
            before.timestamps,
            [f for f in before.foreign_keys if f.name != fk.name] + [fk],
        )
        return self.rebuild_table(before, after)

    def drop_foreign_key(self, table, fk, schema=None):
        before = self._require(schema, table)
        after = Schema(
            before.table,
            list(before.columns),
            before.timestamps,
            [f for f in before.foreign_keys if f.name != fk.name],
        )
        return self.rebuild_table(before, after)


def implied_default(column: ColumnSpec) -> str:
    """Zero value for a NOT NULL column added to a table that has rows."""
    if column.sql_type is not None and column.sql_type.is_numeric:
        return '0'
    return ''


DIALECTS: Dict[str, Type[Dialect]] = {
    'mysql': MySQLDialect,
    'mariadb': MySQLDialect,
    'sqlite': SQLiteDialect,
}


def get_dialect(name) -> Dialect:
    """
    Look up a dialect by name.

    Args:
        name: 'mysql', 'mariadb', 'sqlite', or a Dialect instance

    Raises:
        ValueError: If the dialect is unknown
    """
    if isinstance(name, Dialect):
        return name
    try:
        return DIALECTS[str(name).lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown SQL dialect '{name}'. "
            f"Valid dialects: {', '.join(sorted(DIALECTS))}"
        ) from None
