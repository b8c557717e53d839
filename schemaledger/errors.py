"""
Exception hierarchy for schema parsing, diffing and migration execution.

Every exception raised on purpose by this package derives from
SchemaLedgerError, allowing catch-all handling at the CLI boundary.
"""

from typing import List, Optional


class SchemaLedgerError(Exception):
    """
    Base exception for schemaledger errors.

    All package exceptions inherit from this base class.
    """
    pass


class ConfigError(SchemaLedgerError):
    """
    Configuration could not be loaded.

    Raised when:
    - Config file is missing or unreadable
    - Config file is not valid YAML/JSON
    - A required key (database_url) is absent
    """
    pass


class SchemaValidationError(SchemaLedgerError):
    """
    Entity metadata is malformed or incomplete.

    Always carries a remediation example so the operator can fix the
    entity definition without guessing.

    Attributes:
        error_type: Machine-readable error kind (e.g. 'missing_primary_key')
        example: Fix-it example shown to the operator
        auto_fixable: Whether a tool could apply the fix unattended
        suggested_fix: One-line description of the fix

    Example:
        >>> raise SchemaValidationError(
        ...     "Table 'users' has no primary key defined.",
        ...     error_type='missing_primary_key',
        ...     example="id: [column, primary, autonumber]",
        ... )
    """

    def __init__(
        self,
        message: str,
        error_type: str = 'error',
        example: Optional[str] = None,
        auto_fixable: bool = False,
        suggested_fix: Optional[str] = None,
    ) -> None:
        self.message = message
        self.error_type = error_type
        self.example = example
        self.auto_fixable = auto_fixable
        self.suggested_fix = suggested_fix

        text = message
        if example:
            text = f"{message}\n\nExample:\n{example}"
        super().__init__(text)


class MissingTypeError(SchemaValidationError):
    """A persisted field carries no type tag."""

    def __init__(self, field_name: str) -> None:
        super().__init__(
            f"Field '{field_name}' has a column tag but no type tag. "
            f"Add a type such as varchar, int, text or datetime.",
            error_type='missing_type',
            example=f"{field_name}: [column, varchar 255]",
        )
        self.field_name = field_name


class NoChangesDetected(SchemaLedgerError):
    """
    Schema diff produced empty up and down scripts.

    Generation is refused so no empty migration artifact is written.
    """

    def __init__(self, message: str = "No schema changes detected") -> None:
        super().__init__(message)


class DuplicateRecordError(SchemaLedgerError):
    """A version was recorded in the ledger twice."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Migration {version} is already recorded as applied")
        self.version = version


class ExecutionError(SchemaLedgerError):
    """
    The SQL collaborator reported a failure.

    Attributes:
        version: Migration unit being executed when the failure happened
        statement: Statement that failed (when known)
        completed: Versions processed successfully earlier in the same run
    """

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        statement: Optional[str] = None,
        completed: Optional[List[str]] = None,
    ) -> None:
        self.message = message
        self.version = version
        self.statement = statement
        self.completed = list(completed or [])

        if version:
            super().__init__(f"Migration {version} failed: {message}")
        else:
            super().__init__(message)


class MigrationValidationError(SchemaLedgerError):
    """
    Pending units failed validation; nothing was applied.

    Attributes:
        errors: ERROR-level ValidationWarning objects, in unit order
    """

    def __init__(self, errors: list) -> None:
        self.errors = list(errors)
        versions = sorted({e.migration_version for e in self.errors})
        super().__init__(
            f"Migrations failed validation: {len(self.errors)} error(s) "
            f"in {', '.join(versions)}"
        )
