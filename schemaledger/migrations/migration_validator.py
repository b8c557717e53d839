#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration validation for safety and compatibility checks.

Validates migrations for destructive operations, SQLite limitations,
syntax errors, and checksum integrity. Provides warnings at different
severity levels (INFO, WARNING, ERROR).
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List

import sqlparse

from schemaledger.migrations.migration import Migration


class WarningLevel(Enum):
    """Severity levels for validation warnings."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ValidationWarning:
    """
    Warning from migration validation.

    Attributes:
        level: Severity level (INFO, WARNING, ERROR)
        message: Human-readable warning message
        migration_version: Migration version that triggered warning
        category: Warning category ('checksum', 'destructive', 'sqlite', 'syntax')

    Example:
        >>> warning = ValidationWarning(
        ...     level=WarningLevel.WARNING,
        ...     message="Migration drops table",
        ...     migration_version='2026_10_18_120000_drop_posts',
        ...     category='destructive'
        ... )
        >>> print(warning)
        [WARNING] Migration 2026_10_18_120000_drop_posts: Migration drops table
    """
    level: WarningLevel
    message: str
    migration_version: str
    category: str  # 'checksum', 'destructive', 'sqlite', 'syntax'

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'level': self.level.value,
            'message': self.message,
            'migration_version': self.migration_version,
            'category': self.category
        }

    def __str__(self) -> str:
        return f"[{self.level.value}] Migration {self.migration_version}: {self.message}"

    __repr__ = __str__


class MigrationValidator:
    """
    Validates migrations for safety and compatibility issues.

    Performs multiple validation checks:
    - Forward script with no executable statements
    - Destructive operations (DROP COLUMN, DROP TABLE, TRUNCATE)
    - SQLite limitations (unsupported ALTER operations)
    - Basic SQL syntax per statement (parentheses, string quotes)
    - Checksum verification (file tampering detection)

    Attributes:
        db_type: Database type ('sqlite', 'mysql', etc.)

    Example:
        >>> validator = MigrationValidator(db_type='sqlite')
        >>> warnings = validator.validate_migration(migration)
        >>> if validator.has_errors(warnings):
        ...     print("Cannot proceed")
    """

    # Compiled regex patterns for performance
    DROP_COLUMN_PATTERN = re.compile(r'\bDROP\s+COLUMN\b', re.IGNORECASE)
    DROP_TABLE_PATTERN = re.compile(r'\bDROP\s+TABLE\b', re.IGNORECASE)
    TRUNCATE_PATTERN = re.compile(r'\bTRUNCATE\s+(TABLE\s+)?\w', re.IGNORECASE)
    ALTER_COLUMN_PATTERN = re.compile(r'\bALTER\s+COLUMN\b', re.IGNORECASE)
    MODIFY_COLUMN_PATTERN = re.compile(r'\bMODIFY\s+COLUMN\b', re.IGNORECASE)
    ADD_CONSTRAINT_PATTERN = re.compile(r'\bADD\s+CONSTRAINT\b', re.IGNORECASE)

    def __init__(self, db_type: str = 'sqlite'):
        self.db_type = db_type.lower()

    def validate_migration(self, migration: Migration) -> List[ValidationWarning]:
        """
        Validate a migration's forward SQL for safety and compatibility.

        Args:
            migration: Migration object to validate

        Returns:
            List of ValidationWarning objects (empty if no issues)
        """
        warnings = []

        warnings.extend(self._check_empty(migration))
        warnings.extend(self._check_destructive_operations(migration))

        if self.db_type == 'sqlite':
            warnings.extend(self._check_sqlite_limitations(migration))

        warnings.extend(self._check_syntax(migration))

        return warnings

    def verify_checksums(
        self,
        migration: Migration,
        stored_checksum: str
    ) -> List[ValidationWarning]:
        """
        Verify migration file checksum matches stored checksum.

        Detects if a migration file was modified after being applied.

        Args:
            migration: Migration object with current checksum
            stored_checksum: Checksum recorded in the ledger

        Returns:
            List with ERROR warning if mismatch, empty list if match
        """
        warnings = []

        # Empty stored checksum means the ledger row predates checksums
        if stored_checksum and migration.checksum != stored_checksum:
            warnings.append(ValidationWarning(
                level=WarningLevel.ERROR,
                message=f"Migration file has been modified (checksum mismatch). "
                        f"Expected: {stored_checksum[:8]}..., Got: {migration.checksum[:8]}...",
                migration_version=migration.version,
                category='checksum'
            ))

        return warnings

    @staticmethod
    def has_errors(warnings: List[ValidationWarning]) -> bool:
        return any(w.level == WarningLevel.ERROR for w in warnings)

    def _check_empty(self, migration: Migration) -> List[ValidationWarning]:
        """A forward script with only comments would be recorded as applied."""
        statements = sqlparse.split(self._strip_comments(migration.up_sql))
        if any(s.strip() for s in statements):
            return []
        return [ValidationWarning(
            level=WarningLevel.ERROR,
            message="UP section has no executable statements.",
            migration_version=migration.version,
            category='syntax'
        )]

    def _check_destructive_operations(self, migration: Migration) -> List[ValidationWarning]:
        """
        Check for destructive SQL operations.

        All generate WARNING level (not ERROR) to allow execution with
        acknowledgment.
        """
        warnings = []
        sql = self._strip_comments(migration.up_sql)

        if self.DROP_COLUMN_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.WARNING,
                message="Migration drops column (potential data loss). "
                        "Ensure column data is no longer needed or backed up.",
                migration_version=migration.version,
                category='destructive'
            ))

        if self.DROP_TABLE_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.WARNING,
                message="Migration drops table (all table data will be deleted). "
                        "Ensure data is backed up or no longer needed.",
                migration_version=migration.version,
                category='destructive'
            ))

        if self.TRUNCATE_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.WARNING,
                message="Migration truncates table (all rows will be deleted). "
                        "Ensure data is backed up or no longer needed.",
                migration_version=migration.version,
                category='destructive'
            ))

        return warnings

    def _check_sqlite_limitations(self, migration: Migration) -> List[ValidationWarning]:
        """
        Check for operations SQLite cannot run in place.

        ALTER/MODIFY COLUMN and ADD CONSTRAINT are rejected by SQLite
        outright; such changes need a table rebuild.
        """
        warnings = []
        sql = self._strip_comments(migration.up_sql)

        if self.DROP_COLUMN_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.INFO,
                message="DROP COLUMN requires SQLite 3.35 or newer and fails "
                        "on indexed or key columns.",
                migration_version=migration.version,
                category='sqlite'
            ))

        if self.ALTER_COLUMN_PATTERN.search(sql) or self.MODIFY_COLUMN_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.ERROR,
                message="SQLite does not support ALTER/MODIFY COLUMN. "
                        "Use table recreation pattern with modified schema.",
                migration_version=migration.version,
                category='sqlite'
            ))

        if self.ADD_CONSTRAINT_PATTERN.search(sql):
            warnings.append(ValidationWarning(
                level=WarningLevel.ERROR,
                message="SQLite does not support ADD CONSTRAINT directly. "
                        "Define constraints in initial CREATE TABLE or use table recreation.",
                migration_version=migration.version,
                category='sqlite'
            ))

        return warnings

    def _check_syntax(self, migration: Migration) -> List[ValidationWarning]:
        """
        Check each statement for basic syntax errors.

        Heuristics only: unmatched parentheses and unterminated strings
        (odd number of single quotes, where '' counts as an escape).
        """
        warnings = []
        sql = self._strip_comments(migration.up_sql)

        for number, statement in enumerate(sqlparse.split(sql), start=1):
            if not statement.strip():
                continue

            open_parens = statement.count('(')
            close_parens = statement.count(')')
            if open_parens != close_parens:
                warnings.append(ValidationWarning(
                    level=WarningLevel.ERROR,
                    message=f"Statement {number}: unmatched parentheses: "
                            f"{open_parens} open, {close_parens} close",
                    migration_version=migration.version,
                    category='syntax'
                ))

            single_quotes = statement.count("'")
            if single_quotes % 2 != 0:
                warnings.append(ValidationWarning(
                    level=WarningLevel.ERROR,
                    message=f"Statement {number}: unterminated string "
                            f"(odd number of single quotes: {single_quotes})",
                    migration_version=migration.version,
                    category='syntax'
                ))

        return warnings

    @staticmethod
    def _strip_comments(sql: str) -> str:
        return sqlparse.format(sql, strip_comments=True)
