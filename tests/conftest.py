"""
Global pytest configuration and fixtures for schemaledger tests

Provides:
- In-memory and file-backed SQLite databases
- Migration/snapshot directories under tmp_path
- Entity and schema builders
- A helper for writing migration unit files
"""

import pytest
from pathlib import Path

from schemaledger.database import Database
from schemaledger.migrations.orchestrator import MigrationOrchestrator
from schemaledger.schema.entity import EntityDefinition, FieldDefinition
from schemaledger.schema.model import ColumnSpec, Schema, SqlType


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Databases
# ============================================================================

@pytest.fixture
def database():
    """In-memory SQLite database (one connection per thread)."""
    db = Database('sqlite://')
    yield db
    db.close()


@pytest.fixture
def file_database(tmp_path):
    """File-backed SQLite database."""
    db = Database(f"sqlite:///{tmp_path / 'app.db'}")
    yield db
    db.close()


# ============================================================================
# Storage directories
# ============================================================================

@pytest.fixture
def migrations_dir(tmp_path):
    return tmp_path / "database" / "migrations"


@pytest.fixture
def schemas_dir(tmp_path):
    return tmp_path / "database" / "schemas"


@pytest.fixture
def orchestrator(database, migrations_dir, schemas_dir):
    """Orchestrator over an in-memory SQLite database."""
    return MigrationOrchestrator(database, migrations_dir, schemas_dir)


@pytest.fixture
def write_unit(migrations_dir):
    """Write a migration unit file and return its version."""
    def _write(version: str, up_sql: str, down_sql: str) -> str:
        migrations_dir.mkdir(parents=True, exist_ok=True)
        (migrations_dir / f"{version}.sql").write_text(
            f"-- Migration: {version}\n-- UP\n{up_sql}\n\n-- DOWN\n{down_sql}\n",
            encoding='utf-8'
        )
        return version
    return _write


# ============================================================================
# Schema builders
# ============================================================================

@pytest.fixture
def users_entity():
    """Users entity with an autonumber key and timestamps."""
    return EntityDefinition(
        table='users',
        timestamps=True,
        fields=[
            FieldDefinition.from_tags('id', 'column', 'autonumber'),
            FieldDefinition.from_tags('username', 'column', 'varchar 100', 'unique'),
            FieldDefinition.from_tags('email', 'column', 'varchar', 'nullable'),
            FieldDefinition.from_tags('date_created', 'column', 'datetime'),
            FieldDefinition.from_tags('date_modified', 'column', 'datetime', 'nullable'),
            FieldDefinition.from_tags('cache', static=True),
            FieldDefinition.from_tags('display_name'),
        ],
    )


@pytest.fixture
def users_schema():
    """Plain users table schema."""
    return Schema('users', [
        ColumnSpec('id', SqlType.INT, length=11, unsigned=True,
                   auto_increment=True, primary_key=True),
        ColumnSpec('username', SqlType.VARCHAR, length=100, unique=True),
        ColumnSpec('email', SqlType.VARCHAR, length=255, nullable=True),
    ])
