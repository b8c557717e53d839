#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration executor with transaction management and tracking.

Runs a unit's forward or inverse script and the matching ledger write in
one transaction, so a unit is either applied and recorded, or neither.
"""
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from schemaledger.errors import SchemaLedgerError
from schemaledger.migrations.ledger import MigrationLedger
from schemaledger.migrations.migration import Migration


def _split_sql_statements(sql: str) -> List[str]:
    """Split SQL string into individual statements.

    Handles semicolon-separated statements while preserving
    string literals. Whole-line ``--`` comments are dropped. Required for
    SQLite, which executes one statement at a time.

    Args:
        sql: SQL string with one or more statements

    Returns:
        List of individual SQL statements (without trailing semicolons)
    """
    statements = []
    current = []
    in_string = False
    string_char = None

    for line in sql.split('\n'):
        if not in_string and line.strip().startswith('--'):
            continue

        start = 0
        for i, char in enumerate(line):
            if char in ('"', "'", '`') and (i == 0 or line[i - 1] != '\\'):
                if not in_string:
                    in_string = True
                    string_char = char
                elif char == string_char:
                    in_string = False
                    string_char = None

            if char == ';' and not in_string:
                current.append(line[start:i])
                stmt = '\n'.join(current).strip()
                if stmt:
                    statements.append(stmt)
                current = []
                start = i + 1

        remainder = line[start:]
        if remainder.strip().startswith('--') and not in_string:
            continue
        current.append(remainder)

    if current:
        stmt = '\n'.join(current).strip()
        if stmt:
            statements.append(stmt)

    return statements


@dataclass
class MigrationResult:
    """
    Result of migration execution.

    Attributes:
        success: Whether migration completed successfully
        version: Migration version that was executed
        execution_time_ms: Execution time in milliseconds
        error_message: Error message if failed (None if success)
        statement: Statement that failed (None if success or unknown)
    """
    success: bool
    version: str
    execution_time_ms: int
    error_message: Optional[str] = None
    statement: Optional[str] = None


class MigrationExecutor:
    """
    Executes migration units with transaction safety.

    Attributes:
        database: Database collaborator (provides transaction())
        ledger: MigrationLedger recording applied units
        logger: Logger for execution tracking

    Example:
        executor = MigrationExecutor(database, ledger)
        result = executor.apply_migration(migration, batch=3)
        if not result.success:
            print(result.error_message)
    """

    def __init__(self, database, ledger: MigrationLedger):
        self.database = database
        self.ledger = ledger
        self.logger = logging.getLogger(__name__)

    def apply_migration(self, migration: Migration, batch: int) -> MigrationResult:
        """
        Apply migration UP section and record it in the ledger.

        Args:
            migration: Migration to apply
            batch: Batch number to record

        Returns:
            MigrationResult with success status and execution time
        """
        self.logger.info('Applying migration %s', migration.version)
        return self._run(
            migration,
            migration.up_sql,
            lambda ledger: ledger.record_applied(
                migration.version, batch, migration.checksum
            ),
            'apply',
        )

    def rollback_migration(self, migration: Migration) -> MigrationResult:
        """
        Run migration DOWN section and remove its ledger record.

        Returns:
            MigrationResult with success status and execution time
        """
        self.logger.info('Rolling back migration %s', migration.version)
        return self._run(
            migration,
            migration.down_sql,
            lambda ledger: ledger.record_rolled_back(migration.version),
            'rollback',
        )

    def _run(self, migration: Migration, sql: str, record, action: str) -> MigrationResult:
        start_time = time.time()
        statement = None

        try:
            with self.database.transaction() as tx:
                for statement in _split_sql_statements(sql):
                    tx.execute(statement)
                statement = None
                record(self.ledger.using(tx))

        except SchemaLedgerError as e:
            execution_time_ms = int((time.time() - start_time) * 1000)
            error_message = getattr(e, 'message', None) or str(e)

            self.logger.error(
                'Failed to %s migration %s: %s',
                action,
                migration.version,
                error_message
            )

            return MigrationResult(
                success=False,
                version=migration.version,
                execution_time_ms=execution_time_ms,
                error_message=error_message,
                statement=getattr(e, 'statement', None) or statement,
            )

        execution_time_ms = int((time.time() - start_time) * 1000)
        self.logger.info(
            '%s migration %s (%dms)',
            'Applied' if action == 'apply' else 'Rolled back',
            migration.version,
            execution_time_ms
        )

        return MigrationResult(
            success=True,
            version=migration.version,
            execution_time_ms=execution_time_ms,
        )
