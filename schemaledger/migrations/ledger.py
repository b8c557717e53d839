#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration ledger: the durable record of applied migration units.

Backed by a single tracking table (default ``migrations``):

    id          auto-increment, application order
    version     unique migration identifier
    batch       run number; rollback undoes whole batches
    checksum    SHA-256 of the unit file when applied
    applied_at  when the unit was applied

The ledger talks to any executor exposing execute()/query() (Database or
a TransactionScope), so a record can share the transaction of the SQL
it describes. See using().
"""

import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Union

from schemaledger.errors import DuplicateRecordError
from schemaledger.migrations.migration import AppliedMigration, Migration

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

CREATE_TABLE_SQL = {
    'sqlite': """
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            version VARCHAR(255) NOT NULL UNIQUE,
            batch INTEGER NOT NULL,
            checksum VARCHAR(64) NOT NULL DEFAULT '',
            applied_at TIMESTAMP NOT NULL
        )
    """,
    'mysql': """
        CREATE TABLE IF NOT EXISTS {table} (
            id INT UNSIGNED NOT NULL AUTO_INCREMENT PRIMARY KEY,
            version VARCHAR(255) NOT NULL UNIQUE,
            batch INT NOT NULL,
            checksum VARCHAR(64) NOT NULL DEFAULT '',
            applied_at DATETIME NOT NULL
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    'postgresql': """
        CREATE TABLE IF NOT EXISTS {table} (
            id SERIAL PRIMARY KEY,
            version VARCHAR(255) NOT NULL UNIQUE,
            batch INTEGER NOT NULL,
            checksum VARCHAR(64) NOT NULL DEFAULT '',
            applied_at TIMESTAMP NOT NULL
        )
    """,
}
CREATE_TABLE_SQL['mariadb'] = CREATE_TABLE_SQL['mysql']


def _as_datetime(value) -> Optional[datetime]:
    # SQLite hands timestamps back as text
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class MigrationLedger:
    """
    Tracks which migration units ran, in which batch, in what order.

    Attributes:
        executor: Object with execute(sql, params) and query(sql, params)
        table: Tracking table name
        dialect: SQL dialect used for the tracking table DDL

    Example:
        >>> ledger = MigrationLedger(db)
        >>> ledger.ensure_store()
        >>> batch = ledger.next_batch()
        >>> ledger.record_applied('2026_10_18_120000_create_users', batch)
        >>> ledger.applied()
        ['2026_10_18_120000_create_users']
    """

    def __init__(self, executor, table: str = 'migrations', dialect: Optional[str] = None):
        if not TABLE_NAME_PATTERN.match(table):
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self.executor = executor
        self.table = table
        self.dialect = (dialect or getattr(executor, 'dialect_name', None) or 'sqlite').lower()

    def using(self, executor) -> 'MigrationLedger':
        """Same ledger bound to another executor (e.g. an open transaction)."""
        return MigrationLedger(executor, self.table, self.dialect)

    def ensure_store(self) -> None:
        """Create the tracking table if it does not exist. Idempotent."""
        template = CREATE_TABLE_SQL.get(self.dialect, CREATE_TABLE_SQL['sqlite'])
        self.executor.execute(template.format(table=self.table).strip())
        logger.debug("Ensured ledger table %s exists", self.table)

    def store_exists(self) -> bool:
        table_exists = getattr(self.executor, 'table_exists', None)
        if table_exists is None:
            return True
        return table_exists(self.table)

    def records(self) -> List[AppliedMigration]:
        """All ledger rows in application order. Empty if no store yet."""
        if not self.store_exists():
            return []
        rows = self.executor.query(
            f"SELECT id, version, batch, checksum, applied_at "
            f"FROM {self.table} ORDER BY id ASC"
        )
        return [
            AppliedMigration(
                id=row['id'],
                version=row['version'],
                batch=row['batch'],
                checksum=row['checksum'] or '',
                applied_at=_as_datetime(row['applied_at']),
            )
            for row in rows
        ]

    def applied(self) -> List[str]:
        """Applied versions in the order they were applied."""
        return [record.version for record in self.records()]

    def pending(self, known: Iterable[Union[str, Migration]]) -> list:
        """
        Filter known migrations down to those not yet applied.

        Args:
            known: Version strings or Migration objects, in run order

        Returns:
            The unapplied entries of ``known``, order preserved
        """
        applied = set(self.applied())
        return [
            item for item in known
            if getattr(item, 'version', item) not in applied
        ]

    def next_batch(self) -> int:
        """One past the highest recorded batch (1 when the ledger is empty)."""
        if not self.store_exists():
            return 1
        rows = self.executor.query(f"SELECT MAX(batch) AS batch FROM {self.table}")
        current = rows[0]['batch'] if rows else None
        return (current or 0) + 1

    def record_applied(self, version: str, batch: int, checksum: str = '') -> None:
        """
        Record a version as applied.

        Raises:
            DuplicateRecordError: If the version is already recorded
        """
        existing = self.executor.query(
            f"SELECT id FROM {self.table} WHERE version = :version",
            {'version': version}
        )
        if existing:
            raise DuplicateRecordError(version)

        self.executor.execute(
            f"INSERT INTO {self.table} (version, batch, checksum, applied_at) "
            f"VALUES (:version, :batch, :checksum, :applied_at)",
            {
                'version': version,
                'batch': batch,
                'checksum': checksum or '',
                'applied_at': datetime.now().isoformat(sep=' ', timespec='seconds'),
            }
        )
        logger.debug("Recorded %s in batch %d", version, batch)

    def record_rolled_back(self, version: str) -> None:
        """Remove the record for a version. No-op if absent."""
        removed = self.executor.execute(
            f"DELETE FROM {self.table} WHERE version = :version",
            {'version': version}
        )
        if not removed:
            logger.debug("No ledger record for %s", version)

    def last_batches(self, count: int = 1) -> List[str]:
        """
        Versions in the newest ``count`` batches, newest first.

        Example:
            >>> ledger.last_batches(1)
            ['2026_10_18_120500_add_email', '2026_10_18_120000_create_users']
        """
        if count < 1:
            return []
        records = self.records()
        batches = sorted({r.batch for r in records}, reverse=True)[:count]
        selected = [r for r in records if r.batch in batches]
        return [r.version for r in sorted(selected, key=lambda r: r.id, reverse=True)]

    def clear(self) -> int:
        """Delete every record; returns how many rows were removed."""
        if not self.store_exists():
            return 0
        removed = self.executor.execute(f"DELETE FROM {self.table}")
        logger.info("Cleared %d ledger records", max(removed, 0))
        return max(removed, 0)
