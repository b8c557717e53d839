"""Schema model, entity parsing, diffing and snapshots."""
from .differ import MigrationScripts, SchemaDiffer
from .entity import EntityDefinition, FieldDefinition, Tag, load_entities
from .model import TIMESTAMP_COLUMNS, ColumnSpec, Schema, SqlType
from .parser import MetadataParser
from .snapshot_store import SchemaSnapshot, SchemaSnapshotStore

__all__ = [
    'ColumnSpec',
    'EntityDefinition',
    'FieldDefinition',
    'MetadataParser',
    'MigrationScripts',
    'Schema',
    'SchemaDiffer',
    'SchemaSnapshot',
    'SchemaSnapshotStore',
    'SqlType',
    'TIMESTAMP_COLUMNS',
    'Tag',
    'load_entities',
]
