"""
Migration data models.

This module defines the core data structures for schema migrations:
- Migration: A migration unit file on disk (forward and inverse SQL)
- AppliedMigration: A ledger row recording that a unit was applied

Versions are file stems of the form YYYY_MM_DD_HHmmss_<name>, so plain
string ordering equals chronological ordering.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Migration:
    """
    Represents a single migration unit with metadata.

    A migration file contains UP and DOWN SQL sections:
    - UP: SQL statements to apply the migration (forward)
    - DOWN: SQL statements to undo the migration (inverse)

    Attributes:
        version: Sortable identifier (e.g., '2026_10_18_120000_create_users')
        name: Descriptive name from filename (e.g., 'create_users')
        filename: Full filename (e.g., '2026_10_18_120000_create_users.sql')
        file_path: Absolute path to migration file
        up_sql: SQL statements for applying migration
        down_sql: SQL statements for rolling back migration
        checksum: SHA-256 hash of file content
        description: Human title from the '-- Migration:' header (optional)
        created_at: Timestamp from the '-- Created:' header (optional)

    Example:
        >>> migration = Migration(
        ...     version='2026_10_18_120000_create_users',
        ...     name='create_users',
        ...     filename='2026_10_18_120000_create_users.sql',
        ...     file_path='/app/database/migrations/2026_10_18_120000_create_users.sql',
        ...     up_sql='CREATE TABLE users (id INTEGER PRIMARY KEY);',
        ...     down_sql='DROP TABLE users;',
        ...     checksum='a1b2c3d4...'
        ... )
        >>> print(migration)
        <Migration(2026_10_18_120000_create_users)>
    """

    version: str
    name: str
    filename: str
    file_path: str
    up_sql: str
    down_sql: str
    checksum: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate migration after initialization."""
        if not self.version:
            raise ValueError("Migration version must not be empty")

        if not self.up_sql.strip():
            raise ValueError(
                f"Migration {self.filename} has empty UP section"
            )

        if not self.down_sql.strip():
            raise ValueError(
                f"Migration {self.filename} has empty DOWN section"
            )

    def __lt__(self, other: 'Migration') -> bool:
        """Allow sorting migrations by version (chronological)."""
        if not isinstance(other, Migration):
            return NotImplemented
        return self.version < other.version

    def __repr__(self) -> str:
        return f"<Migration({self.version})>"


@dataclass
class AppliedMigration:
    """
    A migration that has been applied to the database.

    This corresponds to a row in the ledger table (default 'migrations').

    Attributes:
        id: Monotonic record id (application order)
        version: Migration version
        batch: Batch number the migration was applied in
        checksum: Checksum at time of application
        applied_at: When migration was applied

    Example:
        >>> AppliedMigration(1, '2026_10_18_120000_create_users', 1, 'a1b2...')
        <AppliedMigration(2026_10_18_120000_create_users, batch 1)>
    """

    id: int
    version: str
    batch: int
    checksum: str = ''
    applied_at: Optional[datetime] = None

    def __post_init__(self):
        if self.batch < 1:
            raise ValueError(f"Batch must be >= 1, got {self.batch}")

    def __repr__(self) -> str:
        return f"<AppliedMigration({self.version}, batch {self.batch})>"
