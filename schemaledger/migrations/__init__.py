"""Migration units, ledger, execution and orchestration."""
from .ledger import MigrationLedger
from .migration import AppliedMigration, Migration
from .migration_executor import MigrationExecutor, MigrationResult
from .migration_manager import MigrationManager
from .migration_validator import MigrationValidator, ValidationWarning, WarningLevel
from .orchestrator import (
    BatchResult,
    GenerationResult,
    MigrationOrchestrator,
    MigrationStatus,
    OrchestratorState,
    ResetResult,
)

__all__ = [
    'AppliedMigration',
    'BatchResult',
    'GenerationResult',
    'Migration',
    'MigrationExecutor',
    'MigrationLedger',
    'MigrationManager',
    'MigrationOrchestrator',
    'MigrationResult',
    'MigrationStatus',
    'MigrationValidator',
    'OrchestratorState',
    'ResetResult',
    'ValidationWarning',
    'WarningLevel',
]
