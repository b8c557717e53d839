#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration orchestration.

Ties unit storage, the ledger, the executor and the schema pipeline
together:

    apply     ledger.pending(units) -> forward scripts, ascending
    rollback  ledger.last_batches(n) -> inverse scripts, descending
    status    applied vs pending, plus missing and modified unit files
    generate  current schema -> latest snapshot -> diff -> unit + snapshot
    reset     forget everything (ledger rows, unit files, snapshots)

State machine for apply/rollback:

    IDLE -> DISCOVERING -> EXECUTING -> COMMITTED
                                     -> HALTED

The first failing unit halts the run. Units processed before it stay
applied (or rolled back); the failing unit is left unrecorded (or still
recorded) so a fixed version can be retried on the next run.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from schemaledger.errors import ExecutionError, MigrationValidationError, NoChangesDetected
from schemaledger.migrations.ledger import MigrationLedger
from schemaledger.migrations.migration import AppliedMigration, Migration
from schemaledger.migrations.migration_executor import MigrationExecutor, MigrationResult
from schemaledger.migrations.migration_manager import VERSION_FORMAT, MigrationManager
from schemaledger.migrations.migration_validator import (
    MigrationValidator,
    ValidationWarning,
    WarningLevel,
)
from schemaledger.schema.dialects import DIALECTS
from schemaledger.schema.differ import MigrationScripts, SchemaDiffer
from schemaledger.schema.entity import EntityDefinition
from schemaledger.schema.introspection import SchemaIntrospector
from schemaledger.schema.model import Schema
from schemaledger.schema.parser import MetadataParser
from schemaledger.schema.snapshot_store import SchemaSnapshot, SchemaSnapshotStore

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    """Lifecycle of one apply/rollback invocation."""
    IDLE = "idle"
    DISCOVERING = "discovering"
    EXECUTING = "executing"
    COMMITTED = "committed"
    HALTED = "halted"


@dataclass
class BatchResult:
    """
    Outcome of an apply or rollback run.

    Attributes:
        direction: 'up' (apply) or 'down' (rollback)
        batch: Batch number written (apply only, None if nothing ran)
        executed: Versions processed, in execution order
        skipped: Versions skipped because their unit file is missing
        planned: Versions that would run (dry run) or were scheduled
        dry_run: Nothing was executed
        results: Per-unit execution results
        warnings: Non-error validation findings for the planned units
    """
    direction: str
    batch: Optional[int] = None
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)
    dry_run: bool = False
    results: List[MigrationResult] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)

    @property
    def nothing_to_do(self) -> bool:
        return not self.planned


@dataclass
class MigrationStatus:
    """
    Read-only view of ledger vs. unit files.

    Attributes:
        applied: Ledger records in application order
        pending: Unit files not yet applied, ascending
        missing: Applied versions whose unit file no longer exists
        modified: Applied versions whose file changed since application
    """
    applied: List[AppliedMigration] = field(default_factory=list)
    pending: List[Migration] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)

    @property
    def is_current(self) -> bool:
        return not self.pending


@dataclass
class GenerationResult:
    """A newly materialized migration unit and its snapshot."""
    migration: Migration
    snapshot: SchemaSnapshot
    scripts: MigrationScripts
    warnings: List[ValidationWarning] = field(default_factory=list)


@dataclass
class ResetResult:
    """Counts of what reset() removed."""
    ledger_records: int = 0
    migration_files: int = 0
    snapshots: int = 0


class MigrationOrchestrator:
    """
    Discovers, applies, rolls back and generates migration units.

    Attributes:
        database: Database collaborator
        manager: MigrationManager for unit files
        snapshots: SchemaSnapshotStore for baselines
        ledger: MigrationLedger for applied units
        state: Current OrchestratorState

    Example:
        >>> orchestrator = MigrationOrchestrator(db, 'database/migrations', 'database/schemas')
        >>> orchestrator.generate('create_users', entities=[users])
        >>> result = orchestrator.apply()
        >>> result.executed
        ['2026_10_18_120000_create_users']
    """

    def __init__(
        self,
        database,
        migrations_dir: Union[str, Path],
        schemas_dir: Union[str, Path],
        ledger_table: str = 'migrations',
        dialect: Optional[str] = None,
    ):
        self.database = database
        self.logger = logging.getLogger(__name__)

        if dialect is None:
            dialect = database.dialect_name if database.dialect_name in DIALECTS else 'mysql'
        self.dialect = dialect

        self.manager = MigrationManager(Path(migrations_dir))
        self.snapshots = SchemaSnapshotStore(Path(schemas_dir))
        self.ledger = MigrationLedger(database, ledger_table)
        self.executor = MigrationExecutor(database, self.ledger)
        self.validator = MigrationValidator(db_type=database.dialect_name)
        self.parser = MetadataParser()
        self.differ = SchemaDiffer(dialect)

        self.state = OrchestratorState.IDLE

    @classmethod
    def from_config(cls, config, database) -> 'MigrationOrchestrator':
        return cls(
            database,
            config.migrations_dir,
            config.schemas_dir,
            ledger_table=config.ledger_table,
            dialect=config.dialect,
        )

    # ------------------------------------------------------------------
    # apply / rollback
    # ------------------------------------------------------------------

    def apply(self, dry_run: bool = False) -> BatchResult:
        """
        Apply every pending unit, ascending, as one batch.

        Args:
            dry_run: Report the plan without executing anything

        Returns:
            BatchResult

        Raises:
            MigrationValidationError: A pending unit has ERROR-level
                findings; the whole batch is rejected before anything runs
            ExecutionError: On the first failing unit; ``completed`` lists
                the units applied before it
        """
        self.state = OrchestratorState.DISCOVERING
        units = self.manager.discover()
        pending = self.ledger.pending(units)
        result = BatchResult(
            direction='up',
            planned=[m.version for m in pending],
            dry_run=dry_run,
        )

        findings = []
        for migration in pending:
            findings.extend(self.validator.validate_migration(migration))

        # Reject the batch if any unit has validation errors
        if MigrationValidator.has_errors(findings):
            self.state = OrchestratorState.IDLE
            errors = [w for w in findings if w.level == WarningLevel.ERROR]
            for warning in errors:
                self.logger.error("%s", warning)
            raise MigrationValidationError(errors)

        result.warnings = findings
        for warning in findings:
            self.logger.warning("%s", warning)

        if dry_run:
            self.logger.info("Dry run: %d pending migrations", len(pending))
            self.state = OrchestratorState.IDLE
            return result

        if not pending:
            self.logger.info("Nothing to migrate")
            self.state = OrchestratorState.COMMITTED
            return result

        self.ledger.ensure_store()
        result.batch = self.ledger.next_batch()

        self.state = OrchestratorState.EXECUTING
        for migration in pending:
            unit_result = self.executor.apply_migration(migration, result.batch)
            result.results.append(unit_result)
            if not unit_result.success:
                self._halt(unit_result, result.executed)
            result.executed.append(migration.version)

        self.state = OrchestratorState.COMMITTED
        self.logger.info(
            "Applied %d migrations in batch %d", len(result.executed), result.batch
        )
        return result

    def rollback(self, batches: int = 1) -> BatchResult:
        """
        Undo the newest ``batches`` batches, newest unit first.

        Ledger versions whose unit file is missing are skipped with a
        warning and stay recorded.

        Raises:
            ExecutionError: On the first failing unit
            ValueError: If batches < 1
        """
        if batches < 1:
            raise ValueError(f"batches must be >= 1, got {batches}")

        self.state = OrchestratorState.DISCOVERING
        versions = self.ledger.last_batches(batches)
        result = BatchResult(direction='down', planned=list(versions))

        if not versions:
            self.logger.info("Nothing to roll back")
            self.state = OrchestratorState.COMMITTED
            return result

        self.state = OrchestratorState.EXECUTING
        for version in versions:
            try:
                migration = self.manager.find(version)
            except FileNotFoundError:
                self.logger.warning("Migration file not found, skipping: %s", version)
                result.skipped.append(version)
                continue

            unit_result = self.executor.rollback_migration(migration)
            result.results.append(unit_result)
            if not unit_result.success:
                self._halt(unit_result, result.executed)
            result.executed.append(version)

        self.state = OrchestratorState.COMMITTED
        self.logger.info("Rolled back %d migrations", len(result.executed))
        return result

    def _halt(self, unit_result: MigrationResult, completed: List[str]) -> None:
        self.state = OrchestratorState.HALTED
        raise ExecutionError(
            unit_result.error_message or 'unknown error',
            version=unit_result.version,
            statement=unit_result.statement,
            completed=completed,
        )

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def status(self) -> MigrationStatus:
        """Applied vs. pending units. Does not write anything."""
        units = self.manager.discover()
        by_version = {m.version: m for m in units}
        records = self.ledger.records()

        status = MigrationStatus(
            applied=records,
            pending=self.ledger.pending(units),
        )
        for record in records:
            migration = by_version.get(record.version)
            if migration is None:
                status.missing.append(record.version)
            elif self.validator.verify_checksums(migration, record.checksum):
                status.modified.append(record.version)
        return status

    # ------------------------------------------------------------------
    # generate / reset
    # ------------------------------------------------------------------

    def current_schema(
        self,
        entities: Optional[Iterable[EntityDefinition]] = None,
        baseline: Optional[SchemaSnapshot] = None,
    ) -> Dict[str, Schema]:
        """
        The schema to diff against the baseline.

        With entities, the baseline tables are carried over and the
        parsed entity tables replace their counterparts. Without, the
        live database is introspected (ledger table excluded).
        """
        if entities is None:
            introspector = SchemaIntrospector(self.database, exclude=[self.ledger.table])
            return introspector.introspect()

        tables = dict(baseline.tables) if baseline else {}
        for entity in entities:
            schema = self.parser.parse(entity)
            tables[schema.table] = schema
        return tables

    def generate(
        self,
        name: str,
        entities: Optional[Iterable[EntityDefinition]] = None,
    ) -> GenerationResult:
        """
        Diff the current schema against the latest snapshot and write a
        new migration unit plus snapshot under the same version.

        Raises:
            SchemaValidationError: If an entity definition is invalid
            NoChangesDetected: If the diff is empty
        """
        baseline = self.snapshots.latest()
        current = self.current_schema(entities, baseline)

        scripts = self.differ.diff(baseline, current)
        if scripts.is_empty:
            raise NoChangesDetected()

        migration = self.manager.write(name, scripts, self._next_timestamp())
        try:
            snapshot = self.snapshots.save(migration.version, current.values())
        except FileExistsError:
            Path(migration.file_path).unlink()
            raise

        warnings = self.validator.validate_migration(migration)
        for warning in warnings:
            self.logger.warning("%s", warning)

        self.logger.info(
            "Generated %s (%d up, %d down statements)",
            migration.version, len(scripts.up), len(scripts.down)
        )
        return GenerationResult(migration, snapshot, scripts, warnings)

    def _next_timestamp(self) -> datetime:
        # Keep new versions strictly after every existing one
        now = datetime.now().replace(microsecond=0)
        existing = self.snapshots.versions() + [m.version for m in self.manager.discover()]
        if not existing:
            return now
        latest = datetime.strptime(max(existing)[:17], VERSION_FORMAT)
        return max(now, latest + timedelta(seconds=1))

    def reset(self) -> ResetResult:
        """
        Clear ledger records and delete unit files and snapshots.

        Database tables are left untouched.
        """
        result = ResetResult(
            ledger_records=self.ledger.clear(),
            migration_files=self.manager.delete_all(),
            snapshots=self.snapshots.delete_all(),
        )
        self.logger.info(
            "Reset: %d ledger records, %d migration files, %d snapshots removed",
            result.ledger_records, result.migration_files, result.snapshots
        )
        return result
