"""Schema evolution for tag-annotated entity definitions."""
from .database import Database
from .errors import (
    ConfigError,
    DuplicateRecordError,
    ExecutionError,
    MigrationValidationError,
    MissingTypeError,
    NoChangesDetected,
    SchemaLedgerError,
    SchemaValidationError,
)

__version__ = '0.1.0'

__all__ = [
    'ConfigError',
    'Database',
    'DuplicateRecordError',
    'ExecutionError',
    'MigrationValidationError',
    'MissingTypeError',
    'NoChangesDetected',
    'SchemaLedgerError',
    'SchemaValidationError',
]
