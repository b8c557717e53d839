#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Metadata parser: entity definitions to validated schemas.

Reads the declarative tags on each entity field and builds a Schema.

Supported type tags:
    Numeric:  int, integer, bigint, tinyint, smallint, mediumint,
              decimal, float, double
    String:   varchar, char, text, mediumtext, longtext
    Temporal: datetime, date, time, timestamp, year
    Special:  enum, set, boolean, bool, json, autonumber, uuid
    Binary:   blob, mediumblob, longblob
    Spatial:  point, geometry, linestring, polygon

Modifier tags:
    primary, unique, nullable, unsigned, index,
    default <value>, drop, rename <old_name>

Foreign key tags:
    references <table>.<column>, on_delete <action>, on_update <action>

Usage:
    parser = MetadataParser()
    schema = parser.parse(EntityDefinition(
        table='users',
        fields=[
            FieldDefinition.from_tags('id', 'column', 'autonumber'),
            FieldDefinition.from_tags('username', 'column', 'varchar'),
        ],
    ))
"""

import logging
import re
from typing import List, Optional, Set, Tuple

from schemaledger.errors import MissingTypeError, SchemaValidationError
from schemaledger.schema.entity import EntityDefinition, FieldDefinition, Tag
from schemaledger.schema.model import (
    TIMESTAMP_COLUMNS,
    ColumnSpec,
    ForeignKeySpec,
    Schema,
    SqlType,
    foreign_key_name,
)

logger = logging.getLogger(__name__)

# Tag name -> logical type, in detection order
TYPE_TAGS = {
    'int': SqlType.INT,
    'integer': SqlType.INT,
    'bigint': SqlType.BIGINT,
    'tinyint': SqlType.TINYINT,
    'smallint': SqlType.SMALLINT,
    'mediumint': SqlType.MEDIUMINT,
    'decimal': SqlType.DECIMAL,
    'float': SqlType.FLOAT,
    'double': SqlType.DOUBLE,

    'varchar': SqlType.VARCHAR,
    'char': SqlType.CHAR,
    'text': SqlType.TEXT,
    'mediumtext': SqlType.MEDIUMTEXT,
    'longtext': SqlType.LONGTEXT,

    'datetime': SqlType.DATETIME,
    'date': SqlType.DATE,
    'time': SqlType.TIME,
    'timestamp': SqlType.TIMESTAMP,
    'year': SqlType.YEAR,

    'enum': SqlType.ENUM,
    'set': SqlType.SET,
    'boolean': SqlType.TINYINT,
    'bool': SqlType.TINYINT,
    'json': SqlType.JSON,

    'blob': SqlType.BLOB,
    'mediumblob': SqlType.MEDIUMBLOB,
    'longblob': SqlType.LONGBLOB,

    'point': SqlType.POINT,
    'geometry': SqlType.GEOMETRY,
    'linestring': SqlType.LINESTRING,
    'polygon': SqlType.POLYGON,

    # Convenience pseudo-types
    'autonumber': SqlType.INT,
    'uuid': SqlType.CHAR,
}

DEFAULT_LENGTHS = {
    SqlType.VARCHAR: 255,
    SqlType.CHAR: 255,
    SqlType.INT: 11,
    SqlType.BIGINT: 20,
    SqlType.TINYINT: 4,
    SqlType.SMALLINT: 6,
    SqlType.MEDIUMINT: 9,
}

DEFAULT_DECIMAL = '10,2'

REFERENTIAL_ACTIONS = ('CASCADE', 'SET NULL', 'SET DEFAULT', 'RESTRICT', 'NO ACTION')

IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')
DECIMAL_PATTERN = re.compile(r'^\d+,\d+$')


class MetadataParser:
    """
    Turns entity definitions into validated Schema objects.

    Field-level parsing never raises for cross-field problems; those are
    collected and reported by validate(), which is the single place that
    produces user-facing, actionable messages.

    Example:
        >>> parser = MetadataParser()
        >>> schema = parser.parse(entity)
        >>> schema.primary_key.name
        'id'
    """

    def parse(self, entity: EntityDefinition) -> Schema:
        """
        Parse an entity definition.

        Args:
            entity: Entity with table facts and tagged fields

        Returns:
            Validated Schema

        Raises:
            MissingTypeError: A column field has no type tag
            SchemaValidationError: Any other metadata problem
        """
        columns = []
        foreign_keys = []
        unsigned_requested: Set[str] = set()

        for field_def in entity.fields:
            if field_def.static:
                continue
            if not field_def.has('column'):
                continue

            column, wants_unsigned = self.parse_field(field_def)
            if wants_unsigned:
                unsigned_requested.add(column.name)
            columns.append(column)

            if not column.marked_for_removal:
                fk = self.parse_foreign_key(entity.table, field_def)
                if fk is not None:
                    foreign_keys.append(fk)

        schema = Schema(
            table=entity.table,
            columns=columns,
            timestamps=entity.timestamps,
            foreign_keys=foreign_keys,
        )

        self.validate(schema, entity.label, unsigned_requested)
        logger.debug("Parsed %s: %d columns", entity.label, len(columns))
        return schema

    def parse_field(self, field_def: FieldDefinition) -> Tuple[ColumnSpec, bool]:
        """
        Parse a single field's tags.

        Args:
            field_def: Field carrying a column tag

        Returns:
            Tuple of (column, unsigned_requested). unsigned_requested is
            True when the field asked for unsigned, even if its type
            cannot honor it.
        """
        name = field_def.name

        if field_def.has('drop'):
            return ColumnSpec(name=name, marked_for_removal=True), False

        type_tag = self._detect_type_tag(field_def)
        sql_type = TYPE_TAGS[type_tag.name]
        column = ColumnSpec(name=name, sql_type=sql_type)
        column.length = self._extract_length(name, type_tag, sql_type)

        rename = field_def.get('rename')
        if rename is not None and rename.value:
            column.rename_from = rename.value

        if type_tag.name == 'autonumber':
            column.length = DEFAULT_LENGTHS[SqlType.INT]
            column.unsigned = True
            column.auto_increment = True
            column.primary_key = True
        elif type_tag.name == 'uuid':
            column.length = 36
            column.primary_key = True
        elif type_tag.name in ('boolean', 'bool'):
            column.length = 1
            column.default = '0'

        if field_def.has('primary'):
            column.primary_key = True
        if field_def.has('unique'):
            column.unique = True
        if field_def.has('nullable'):
            column.nullable = True
        if field_def.has('index'):
            column.indexed = True

        wants_unsigned = field_def.has('unsigned')
        if wants_unsigned and sql_type.is_numeric:
            column.unsigned = True

        default = field_def.get('default')
        if default is not None and default.value is not None:
            column.default = default.value

        return column, wants_unsigned

    def parse_foreign_key(self, table: str, field_def: FieldDefinition) -> Optional[ForeignKeySpec]:
        """
        Build the foreign key declared by a references tag, if any.

        Raises:
            SchemaValidationError: Malformed target or referential action
        """
        tag = field_def.get('references')
        if tag is None:
            return None

        name = field_def.name
        target = (tag.value or '').split('.')
        if len(target) != 2 or not all(IDENTIFIER_PATTERN.match(p) for p in target):
            raise SchemaValidationError(
                f"Field '{name}' has invalid reference '{tag.value or ''}'. "
                f"references needs <table>.<column>.",
                error_type='invalid_reference',
                example=f"{name}: [column, int, unsigned, references users.id]",
            )

        return ForeignKeySpec(
            name=foreign_key_name(table, name),
            column=name,
            ref_table=target[0],
            ref_column=target[1],
            on_delete=self._referential_action(field_def, 'on_delete'),
            on_update=self._referential_action(field_def, 'on_update'),
        )

    def _referential_action(self, field_def: FieldDefinition, tag_name: str) -> Optional[str]:
        tag = field_def.get(tag_name)
        if tag is None:
            return None

        action = ' '.join((tag.value or '').upper().split())
        if action not in REFERENTIAL_ACTIONS:
            raise SchemaValidationError(
                f"Field '{field_def.name}' has invalid {tag_name} action "
                f"'{tag.value or ''}'. Use one of: {', '.join(REFERENTIAL_ACTIONS)}.",
                error_type='invalid_referential_action',
                example=f"{field_def.name}: [column, int, references users.id, {tag_name} cascade]",
            )
        # NO ACTION is the database default
        return None if action == 'NO ACTION' else action

    def _detect_type_tag(self, field_def: FieldDefinition) -> Tag:
        type_tags = [t for t in field_def.tags if t.name in TYPE_TAGS]

        if not type_tags:
            raise MissingTypeError(field_def.name)

        if len(type_tags) > 1:
            found = ', '.join(t.name for t in type_tags)
            raise SchemaValidationError(
                f"Field '{field_def.name}' has more than one type tag ({found}). "
                f"Keep exactly one.",
                error_type='multiple_types',
                example=f"{field_def.name}: [column, {type_tags[0].name}]",
            )

        return type_tags[0]

    def _extract_length(self, name: str, tag, sql_type: SqlType):
        """Type-specific value: enum values, decimal p,s or a length."""
        value = tag.value

        if sql_type.takes_values:
            values = tuple(v.strip() for v in (value or '').split(',') if v.strip())
            if not values:
                raise SchemaValidationError(
                    f"Column '{name}' is {tag.name} but has no values. "
                    f"{tag.name} needs comma-separated values.",
                    error_type=f'missing_{tag.name}_values',
                    example=f'{name}: [column, "{tag.name} active,inactive,banned"]',
                )
            return values

        if sql_type is SqlType.DECIMAL:
            return value.replace(' ', '') if value else DEFAULT_DECIMAL

        if sql_type.takes_length:
            if not value:
                return DEFAULT_LENGTHS.get(sql_type)
            try:
                length = int(value)
            except ValueError:
                raise SchemaValidationError(
                    f"Column '{name}' has invalid {tag.name} length '{value}'. "
                    f"Length must be a positive integer.",
                    error_type='invalid_length',
                    example=f"{name}: [column, {tag.name} {DEFAULT_LENGTHS.get(sql_type, 11)}]",
                ) from None
            if length <= 0:
                raise SchemaValidationError(
                    f"Column '{name}' has non-positive {tag.name} length {length}.",
                    error_type='invalid_length',
                    example=f"{name}: [column, {tag.name} {DEFAULT_LENGTHS.get(sql_type, 11)}]",
                )
            return length

        return None

    def validate(
        self,
        schema: Schema,
        entity_label: Optional[str] = None,
        unsigned_requested: Optional[Set[str]] = None,
    ) -> None:
        """
        Validate a parsed schema for common issues.

        Args:
            schema: Parsed schema
            entity_label: Entity name for messages (defaults to table)
            unsigned_requested: Columns whose fields asked for unsigned

        Raises:
            SchemaValidationError: With a fix-it example
        """
        label = entity_label or schema.table
        unsigned_requested = unsigned_requested or set()

        if not IDENTIFIER_PATTERN.match(schema.table or ''):
            raise SchemaValidationError(
                f"Entity '{label}' has invalid table name '{schema.table}'. "
                f"Table names must start with a letter or underscore and contain "
                f"only letters, numbers and underscores.",
                error_type='invalid_table_name',
                example="table: user_accounts",
            )

        if not schema.columns:
            raise SchemaValidationError(
                f"Entity '{label}' has no valid column definitions. "
                f"Add fields with a column tag and a type tag.",
                error_type='no_columns',
                example="username: [column, varchar 255]",
            )

        seen: Set[str] = set()
        for column in schema.columns:
            if column.name in seen:
                raise SchemaValidationError(
                    f"Column '{column.name}' is defined more than once on '{schema.table}'.",
                    error_type='duplicate_column',
                    example=f"Rename one of the '{column.name}' fields.",
                )
            seen.add(column.name)

        primary = [c for c in schema.columns if c.primary_key and not c.marked_for_removal]
        if not primary:
            raise SchemaValidationError(
                f"Table '{schema.table}' has no primary key defined. "
                f"Add a primary key column (usually 'id').",
                error_type='missing_primary_key',
                example="id: [column, primary, autonumber]",
                auto_fixable=True,
                suggested_fix='Add primary key field',
            )
        if len(primary) > 1:
            names = ', '.join(c.name for c in primary)
            raise SchemaValidationError(
                f"Table '{schema.table}' has more than one primary key ({names}). "
                f"Keep the primary tag on one column and use unique on the others.",
                error_type='multiple_primary_keys',
                example=f"{primary[1].name}: [column, {primary[1].type_label.lower()}, unique]",
            )

        if schema.timestamps:
            missing = [n for n in TIMESTAMP_COLUMNS if schema.column(n) is None]
            if missing:
                raise SchemaValidationError(
                    f"Entity '{label}' enables timestamps but is missing: "
                    f"{', '.join(missing)}. Either add the timestamp columns "
                    f"or set timestamps to false.",
                    error_type='missing_timestamps',
                    example='\n'.join(f"{n}: [column, datetime]" for n in missing)
                    + "\n# or\ntimestamps: false",
                    auto_fixable=True,
                    suggested_fix='Add timestamp fields',
                )

        for column in schema.columns:
            if column.marked_for_removal:
                continue
            self._validate_column(column, column.name in unsigned_requested)

    def _validate_column(self, column: ColumnSpec, wants_unsigned: bool) -> None:
        name = column.name

        if not IDENTIFIER_PATTERN.match(name):
            raise SchemaValidationError(
                f"Invalid column name '{name}'. Column names must start with a "
                f"letter or underscore and contain only letters, numbers and "
                f"underscores.",
                error_type='invalid_column_name',
                example="Valid: user_name, email, created_at\n"
                        "Invalid: user-name, 123start, user.name",
            )

        if column.sql_type is None:
            raise MissingTypeError(name)

        if column.sql_type.takes_values and not column.values:
            tag = column.sql_type.value.lower()
            raise SchemaValidationError(
                f"Column '{name}' is {tag} but has no values. "
                f"{tag} needs comma-separated values.",
                error_type=f'missing_{tag}_values',
                example=f'{name}: [column, "{tag} active,inactive,banned"]',
            )

        if column.sql_type is SqlType.DECIMAL:
            if not DECIMAL_PATTERN.match(str(column.length or '')):
                raise SchemaValidationError(
                    f"Column '{name}' has invalid decimal length '{column.length}'. "
                    f"decimal needs precision,scale format.",
                    error_type='invalid_decimal',
                    example=f"{name}: [column, decimal 10,2]  "
                            f"# 10 total digits, 2 after the point",
                )

        if column.sql_type.is_string and not (
            isinstance(column.length, int) and column.length > 0
        ):
            raise SchemaValidationError(
                f"Column '{name}' needs a positive length for "
                f"{column.sql_type.value}.",
                error_type='invalid_length',
                example=f"{name}: [column, {column.sql_type.value.lower()} 255]",
            )

        if (wants_unsigned or column.unsigned) and not column.sql_type.is_numeric:
            raise SchemaValidationError(
                f"Column '{name}' has unsigned but type "
                f"'{column.sql_type.value}' cannot be unsigned. "
                f"Remove the unsigned tag; only numeric types can be unsigned.",
                error_type='invalid_unsigned',
                example=f"{name}: [column, {column.type_label.lower()}]",
            )


def parse_entities(entities: List[EntityDefinition]) -> List[Schema]:
    """Parse several entities, failing on the first invalid one."""
    parser = MetadataParser()
    return [parser.parse(entity) for entity in entities]
