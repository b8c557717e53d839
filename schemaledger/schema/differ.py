#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Schema diff engine.

Compares two schema states (sets of tables) and produces:
- An ordered list of SchemaChange objects
- Forward (up) SQL that applies the changes
- Inverse (down) SQL that undoes them

Ordering:
    Tables:  created tables (referenced before referencing), dropped
             tables (referencing before referenced), then altered tables
    Columns: foreign key drops, index and column drops, renames,
             modifications, additions, index additions, foreign key
             additions

Drops come first and additions last so a rename A -> B next to a new
column named A never collides. The down script is the inverse of every
change, rendered in reverse order.

Each change is rendered against the table state it applies to, so a
dialect that has to rebuild a table (SQLite) sees every column.

Usage:
    differ = SchemaDiffer(dialect='mysql')
    scripts = differ.diff(previous_snapshot, current_schemas)
    if scripts.is_empty:
        print("Nothing to migrate")
"""

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Union

from schemaledger.schema.dialects import Dialect, get_dialect
from schemaledger.schema.model import ColumnSpec, ForeignKeySpec, Schema

logger = logging.getLogger(__name__)

Tables = Dict[str, Schema]
SchemaSource = Union[None, Schema, Iterable[Schema], Mapping[str, Schema]]


def _bare(column: ColumnSpec) -> ColumnSpec:
    """Column without index flags or change markers."""
    return replace(
        column,
        indexed=False,
        unique=False,
        rename_from=None,
        marked_for_removal=False,
    )


def _find(schema: Schema, name: str) -> int:
    for i, column in enumerate(schema.columns):
        if column.name == name:
            return i
    raise KeyError(f"{schema.table}.{name}")


def _current(tables: Optional[Tables], table: str) -> Optional[Schema]:
    return tables.get(table) if tables else None


def dependency_order(tables: Tables) -> List[str]:
    """Table names, each after the tables its foreign keys reference."""
    ordered: List[str] = []
    visiting = set()

    def visit(name):
        if name in ordered or name in visiting:
            return
        visiting.add(name)
        for fk in tables[name].foreign_keys:
            if fk.ref_table in tables and fk.ref_table != name:
                visit(fk.ref_table)
        visiting.discard(name)
        ordered.append(name)

    for name in tables:
        visit(name)
    return ordered


# ============================================================================
# Changes
# ============================================================================

class SchemaChange:
    """One structural change to a table."""

    kind = 'change'
    table: str

    def statements(self, dialect: Dialect, tables: Optional[Tables] = None) -> List[str]:
        """
        Render this change.

        Args:
            dialect: Target dialect
            tables: Table state this change applies to, for dialects
                that rebuild tables
        """
        raise NotImplementedError

    def inverse(self) -> 'SchemaChange':
        raise NotImplementedError

    def apply_to(self, tables: Tables) -> None:
        """Apply this change to an in-memory table map."""
        raise NotImplementedError


@dataclass
class CreateTable(SchemaChange):
    schema: Schema
    kind = 'create_table'

    @property
    def table(self) -> str:
        return self.schema.table

    def statements(self, dialect, tables=None):
        return dialect.create_table(self.schema)

    def inverse(self):
        return DropTable(self.schema)

    def apply_to(self, tables):
        tables[self.schema.table] = copy.deepcopy(self.schema)


@dataclass
class DropTable(SchemaChange):
    # Previous definition, kept so the inverse can recreate it
    schema: Schema
    kind = 'drop_table'

    @property
    def table(self) -> str:
        return self.schema.table

    def statements(self, dialect, tables=None):
        return dialect.drop_table(self.schema.table)

    def inverse(self):
        return CreateTable(self.schema)

    def apply_to(self, tables):
        tables.pop(self.schema.table, None)


@dataclass
class AddColumn(SchemaChange):
    table: str
    column: ColumnSpec
    kind = 'add_column'

    def statements(self, dialect, tables=None):
        return dialect.add_column(self.table, self.column)

    def inverse(self):
        return DropColumn(self.table, self.column)

    def apply_to(self, tables):
        tables[self.table].columns.append(copy.deepcopy(self.column))


@dataclass
class DropColumn(SchemaChange):
    table: str
    # Previous definition, kept so the inverse can re-add it
    column: ColumnSpec
    kind = 'drop_column'

    def statements(self, dialect, tables=None):
        return dialect.drop_column(self.table, self.column.name)

    def inverse(self):
        return AddColumn(self.table, self.column)

    def apply_to(self, tables):
        schema = tables[self.table]
        del schema.columns[_find(schema, self.column.name)]


@dataclass
class RenameColumn(SchemaChange):
    table: str
    old: ColumnSpec
    new: ColumnSpec
    kind = 'rename_column'

    def statements(self, dialect, tables=None):
        return dialect.rename_column(
            self.table, self.old, self.new, _current(tables, self.table)
        )

    def inverse(self):
        return RenameColumn(self.table, self.new, self.old)

    def apply_to(self, tables):
        schema = tables[self.table]
        i = _find(schema, self.old.name)
        schema.columns[i] = replace(
            schema.columns[i].with_definition(self.new), name=self.new.name
        )
        schema.foreign_keys = [
            replace(fk, column=self.new.name) if fk.column == self.old.name else fk
            for fk in schema.foreign_keys
        ]


@dataclass
class ModifyColumn(SchemaChange):
    table: str
    old: ColumnSpec
    new: ColumnSpec
    kind = 'modify_column'

    def statements(self, dialect, tables=None):
        return dialect.modify_column(self.table, self.new, _current(tables, self.table))

    def inverse(self):
        return ModifyColumn(self.table, self.new, self.old)

    def apply_to(self, tables):
        schema = tables[self.table]
        i = _find(schema, self.new.name)
        schema.columns[i] = schema.columns[i].with_definition(self.new)


@dataclass
class AddIndex(SchemaChange):
    table: str
    column_name: str
    unique: bool = False
    kind = 'add_index'

    def statements(self, dialect, tables=None):
        return dialect.add_index(self.table, self.column_name, self.unique)

    def inverse(self):
        return DropIndex(self.table, self.column_name, self.unique)

    def apply_to(self, tables):
        schema = tables[self.table]
        i = _find(schema, self.column_name)
        flag = 'unique' if self.unique else 'indexed'
        schema.columns[i] = replace(schema.columns[i], **{flag: True})


@dataclass
class DropIndex(SchemaChange):
    table: str
    column_name: str
    unique: bool = False
    kind = 'drop_index'

    def statements(self, dialect, tables=None):
        return dialect.drop_index(self.table, self.column_name, self.unique)

    def inverse(self):
        return AddIndex(self.table, self.column_name, self.unique)

    def apply_to(self, tables):
        schema = tables[self.table]
        i = _find(schema, self.column_name)
        flag = 'unique' if self.unique else 'indexed'
        schema.columns[i] = replace(schema.columns[i], **{flag: False})


@dataclass
class AddForeignKey(SchemaChange):
    table: str
    foreign_key: ForeignKeySpec
    kind = 'add_foreign_key'

    def statements(self, dialect, tables=None):
        return dialect.add_foreign_key(
            self.table, self.foreign_key, _current(tables, self.table)
        )

    def inverse(self):
        return DropForeignKey(self.table, self.foreign_key)

    def apply_to(self, tables):
        schema = tables[self.table]
        schema.foreign_keys = [
            fk for fk in schema.foreign_keys if fk.name != self.foreign_key.name
        ] + [replace(self.foreign_key)]


@dataclass
class DropForeignKey(SchemaChange):
    table: str
    # Previous definition, kept so the inverse can restore it
    foreign_key: ForeignKeySpec
    kind = 'drop_foreign_key'

    def statements(self, dialect, tables=None):
        return dialect.drop_foreign_key(
            self.table, self.foreign_key, _current(tables, self.table)
        )

    def inverse(self):
        return AddForeignKey(self.table, self.foreign_key)

    def apply_to(self, tables):
        schema = tables[self.table]
        schema.foreign_keys = [
            fk for fk in schema.foreign_keys if fk.name != self.foreign_key.name
        ]


# ============================================================================
# Scripts
# ============================================================================

@dataclass
class MigrationScripts:
    """
    Forward and inverse SQL for one schema diff.

    Attributes:
        up: Statements applying the changes, in execution order
        down: Statements undoing the changes, in execution order
        changes: Structural changes the scripts were rendered from
    """

    up: List[str] = field(default_factory=list)
    down: List[str] = field(default_factory=list)
    changes: List[SchemaChange] = field(default_factory=list)

    @property
    def up_sql(self) -> str:
        return '\n\n'.join(self.up)

    @property
    def down_sql(self) -> str:
        return '\n\n'.join(self.down)

    @property
    def is_empty(self) -> bool:
        return not self.up and not self.down


def as_tables(source: SchemaSource) -> Tables:
    """
    Normalize any accepted schema source to a {table: Schema} map.

    Accepts None, a Schema, an iterable of Schema, a mapping of
    table name to Schema, or any object with a ``tables`` mapping
    (e.g. SchemaSnapshot).
    """
    if source is None:
        return {}
    if isinstance(source, Schema):
        return {source.table: source}
    if hasattr(source, 'tables'):
        return dict(source.tables)
    if isinstance(source, Mapping):
        return dict(source)
    return {schema.table: schema for schema in source}


class SchemaDiffer:
    """
    Computes schema changes and renders reversible SQL.

    Attributes:
        dialect: Dialect used to render statements

    Example:
        >>> differ = SchemaDiffer()
        >>> scripts = differ.diff(None, users_schema)
        >>> scripts.up[0].startswith('CREATE TABLE')
        True
        >>> scripts.down
        ['DROP TABLE IF EXISTS `users`;']
    """

    def __init__(self, dialect: Union[str, Dialect] = 'mysql'):
        self.dialect = get_dialect(dialect)

    def diff(self, previous: SchemaSource, current: SchemaSource) -> MigrationScripts:
        """
        Generate migration SQL from a schema diff.

        Args:
            previous: Last known state (None for an empty database)
            current: Desired/observed state

        Returns:
            MigrationScripts; both lists are empty when nothing changed
        """
        changes = self.changes(previous, current)

        # Table state each change is rendered against
        state = {n: s.resolved() for n, s in as_tables(previous).items()}

        up: List[str] = []
        for change in changes:
            up.extend(change.statements(self.dialect, state))
            change.apply_to(state)

        down: List[str] = []
        for change in reversed(changes):
            inverse = change.inverse()
            down.extend(inverse.statements(self.dialect, state))
            inverse.apply_to(state)

        logger.debug(
            "Diff produced %d changes (%d up, %d down statements)",
            len(changes), len(up), len(down)
        )
        return MigrationScripts(up=up, down=down, changes=changes)

    def changes(self, previous: SchemaSource, current: SchemaSource) -> List[SchemaChange]:
        """
        Compute the ordered structural changes from previous to current.

        Args:
            previous: Last known state
            current: Desired/observed state

        Returns:
            List of SchemaChange in execution order
        """
        old_tables = {n: s.resolved() for n, s in as_tables(previous).items()}
        new_tables = as_tables(current)

        changes: List[SchemaChange] = []

        created = {
            n: s.resolved() for n, s in new_tables.items() if n not in old_tables
        }
        for name in dependency_order(created):
            changes.append(CreateTable(created[name]))

        dropped = {n: s for n, s in old_tables.items() if n not in new_tables}
        for name in reversed(dependency_order(dropped)):
            changes.append(DropTable(dropped[name]))

        for name, schema in new_tables.items():
            if name in old_tables:
                changes.extend(self.diff_table(old_tables[name], schema))

        return changes

    def diff_table(self, old: Schema, new: Schema) -> List[SchemaChange]:
        """
        Diff a single table.

        Columns are matched by name; a column carrying rename_from is
        matched to the previous column of that name instead, producing a
        rename rather than a drop plus an add.

        Args:
            old: Previous (resolved) table schema
            new: Current table schema, possibly with rename/drop markers

        Returns:
            Changes ordered foreign key drops, drops, renames,
            modifications, additions, foreign key additions
        """
        table = new.table
        old_columns = {c.name: c for c in old.columns}
        live = [c for c in new.columns if not c.marked_for_removal]

        # Renames claim their source first, so a new column may reuse the
        # old name (rename a -> b plus add a)
        claimed: Dict[str, str] = {}
        for column in live:
            source = column.rename_from
            if (
                source
                and column.name not in old_columns
                and source in old_columns
                and source not in claimed.values()
            ):
                claimed[column.name] = source
        renamed_sources = set(claimed.values())

        drops: List[SchemaChange] = []
        renames: List[SchemaChange] = []
        modifications: List[SchemaChange] = []
        additions: List[SchemaChange] = []
        index_additions: List[SchemaChange] = []
        matched = set()

        for column in live:
            if column.name in old_columns and column.name not in renamed_sources:
                previous = old_columns[column.name]
                matched.add(column.name)

                if previous.definition_key() != column.definition_key():
                    modifications.append(
                        ModifyColumn(table, _bare(previous), _bare(column))
                    )

                for unique in (True, False):
                    had = previous.unique if unique else previous.indexed
                    has = column.unique if unique else column.indexed
                    if had and not has:
                        drops.append(DropIndex(table, column.name, unique))
                    elif has and not had:
                        index_additions.append(AddIndex(table, column.name, unique))
                continue

            source = claimed.get(column.name)
            if source:
                previous = old_columns[source]
                matched.add(source)

                if previous.unique:
                    drops.append(DropIndex(table, previous.name, True))
                if previous.indexed:
                    drops.append(DropIndex(table, previous.name, False))

                renames.append(RenameColumn(table, _bare(previous), _bare(column)))
            else:
                additions.append(AddColumn(table, _bare(column)))

            if column.unique:
                index_additions.append(AddIndex(table, column.name, True))
            if column.indexed:
                index_additions.append(AddIndex(table, column.name, False))

        live_names = {c.name for c in live}
        old_fks = {fk.name: fk for fk in old.foreign_keys}
        new_fks = {fk.name: fk for fk in new.foreign_keys if fk.column in live_names}
        # A changed constraint is dropped and added again
        fk_drops: List[SchemaChange] = [
            DropForeignKey(table, fk) for name, fk in old_fks.items()
            if new_fks.get(name) != fk
        ]
        fk_additions: List[SchemaChange] = [
            AddForeignKey(table, fk) for name, fk in new_fks.items()
            if old_fks.get(name) != fk
        ]

        column_drops: List[SchemaChange] = []
        for previous in old.columns:
            if previous.name in matched:
                continue
            if previous.unique:
                drops.append(DropIndex(table, previous.name, True))
            if previous.indexed:
                drops.append(DropIndex(table, previous.name, False))
            column_drops.append(DropColumn(table, _bare(previous)))

        return (
            fk_drops + drops + column_drops + renames + modifications
            + additions + index_additions + fk_additions
        )


def apply_changes(tables: Tables, changes: Iterable[SchemaChange]) -> Tables:
    """
    Apply changes to a copy of a table map.

    Used to reason about what a script does without a database.
    """
    result = copy.deepcopy(tables)
    for change in changes:
        change.apply_to(result)
    return result
