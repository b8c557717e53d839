"""
Migration unit storage.

This module provides the MigrationManager class which handles:
- Discovery of migration files in the migrations directory
- Parsing of migration files (extracting UP/DOWN SQL sections)
- Checksum computation for tamper detection
- Writing newly generated units to disk

Migration files follow the naming convention: YYYY_MM_DD_HHmmss_name.sql
Example: 2026_10_18_120000_create_users.sql

File format:
    -- Migration: Create Users
    -- Created: 2026-10-18 12:00:00
    -- UP
    CREATE TABLE users (id INTEGER PRIMARY KEY);

    -- DOWN
    DROP TABLE users;
"""

import hashlib
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from .migration import Migration

logger = logging.getLogger(__name__)

CREATED_FORMAT = '%Y-%m-%d %H:%M:%S'
VERSION_FORMAT = '%Y_%m_%d_%H%M%S'


def normalize_name(name: str) -> str:
    """
    Normalize a migration name to [a-z0-9_]+.

    Example:
        >>> normalize_name('AddEmail to-users')
        'add_email_to_users'
    """
    snake = re.sub(r'(?<=[a-z0-9])(?=[A-Z])', '_', name.strip())
    snake = re.sub(r'[^a-z0-9]+', '_', snake.lower()).strip('_')
    if not snake:
        raise ValueError(f"Invalid migration name: {name!r}")
    return snake


class MigrationManager:
    """
    Manages migration file discovery, parsing, and writing.

    Does NOT execute migrations (see MigrationExecutor).

    Example:
        >>> manager = MigrationManager(Path('database/migrations'))
        >>> manager.discover()
        [<Migration(2026_10_18_120000_create_users)>]
    """

    # Migration filename pattern: YYYY_MM_DD_HHmmss_description.sql
    MIGRATION_PATTERN = re.compile(r'^(\d{4}_\d{2}_\d{2}_\d{6})_([a-z0-9_]+)\.sql$')

    # Section markers in migration files
    UP_MARKER = '-- UP'
    DOWN_MARKER = '-- DOWN'

    # Header lines written above the UP marker
    HEADER_PATTERN = re.compile(r'^--\s*(Migration|Created):\s*(.*)$', re.IGNORECASE)

    def __init__(self, migrations_dir: Path):
        self.migrations_dir = Path(migrations_dir)

    def discover(self) -> List[Migration]:
        """
        Discover all migration files.

        Files not matching the naming pattern are skipped with a warning.

        Returns:
            List of Migration objects sorted by version ascending

        Raises:
            ValueError: If two units share a timestamp
        """
        if not self.migrations_dir.exists():
            logger.debug("No migrations directory at %s", self.migrations_dir)
            return []

        migrations = []
        timestamps_seen = set()

        for file_path in sorted(self.migrations_dir.glob('*.sql')):
            match = self.MIGRATION_PATTERN.match(file_path.name)
            if not match:
                logger.warning(
                    "Skipping invalid migration filename: %s", file_path.name
                )
                continue

            # Two units sharing a timestamp have no chronological order
            timestamp, _ = match.groups()
            if timestamp in timestamps_seen:
                raise ValueError(
                    f"Duplicate migration timestamp {timestamp} ({file_path.name})"
                )
            timestamps_seen.add(timestamp)

            try:
                migration = self.parse_migration_file(file_path)
            except ValueError as e:
                logger.error("Failed to parse %s: %s", file_path, e)
                raise
            migrations.append(migration)
            logger.debug("Discovered migration: %s", migration)

        return sorted(migrations)

    def parse_migration_file(self, file_path: Path) -> Migration:
        """
        Parse a migration file and extract header and UP/DOWN sections.

        Args:
            file_path: Path to migration file

        Returns:
            Migration object

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the filename is invalid or a section is missing
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"Migration file not found: {file_path}")

        content = file_path.read_text(encoding='utf-8')

        match = self.MIGRATION_PATTERN.match(file_path.name)
        if not match:
            raise ValueError(f"Invalid migration filename: {file_path.name}")
        _, name = match.groups()

        up_sql, down_sql = self._parse_sections(content, file_path.name)
        description, created_at = self._parse_header(content)

        return Migration(
            version=file_path.stem,
            name=name,
            filename=file_path.name,
            file_path=str(file_path.absolute()),
            up_sql=up_sql,
            down_sql=down_sql,
            checksum=self.compute_checksum(content),
            description=description,
            created_at=created_at,
        )

    def _parse_sections(self, content: str, filename: str) -> Tuple[str, str]:
        """
        Parse UP and DOWN sections from migration file content.

        Raises:
            ValueError: If UP or DOWN marker missing or out of order
        """
        lines = content.split('\n')

        up_start = None
        down_start = None

        for i, line in enumerate(lines):
            line_stripped = line.strip().upper()
            if line_stripped == self.UP_MARKER and up_start is None:
                up_start = i + 1
            elif line_stripped == self.DOWN_MARKER and down_start is None:
                down_start = i + 1

        if up_start is None:
            raise ValueError(
                f"Migration {filename} missing '{self.UP_MARKER}' marker"
            )

        if down_start is None:
            raise ValueError(
                f"Migration {filename} missing '{self.DOWN_MARKER}' marker"
            )

        if up_start >= down_start:
            raise ValueError(
                f"Migration {filename} has '{self.DOWN_MARKER}' before "
                f"'{self.UP_MARKER}' (UP at line {up_start}, "
                f"DOWN at line {down_start})"
            )

        up_sql = '\n'.join(lines[up_start:down_start - 1]).strip()
        down_sql = '\n'.join(lines[down_start:]).strip()

        return up_sql, down_sql

    def _parse_header(self, content: str) -> Tuple[Optional[str], Optional[datetime]]:
        description = None
        created_at = None
        for line in content.split('\n'):
            if line.strip().upper() == self.UP_MARKER:
                break
            match = self.HEADER_PATTERN.match(line.strip())
            if not match:
                continue
            key, value = match.group(1).lower(), match.group(2).strip()
            if key == 'migration':
                description = value or None
            else:
                try:
                    created_at = datetime.strptime(value, CREATED_FORMAT)
                except ValueError:
                    logger.debug("Unparseable Created header: %r", value)
        return description, created_at

    def compute_checksum(self, content: str) -> str:
        """
        Compute SHA-256 checksum of migration file content.

        Returns:
            Hexadecimal SHA-256 hash (64 characters)
        """
        return hashlib.sha256(content.encode('utf-8')).hexdigest()

    def find(self, version: str) -> Migration:
        """
        Find a migration by version.

        Raises:
            FileNotFoundError: If no file exists for the version
        """
        file_path = self.migrations_dir / f"{version}.sql"
        if not file_path.exists():
            raise FileNotFoundError(f"Migration not found: {version}")
        return self.parse_migration_file(file_path)

    def new_version(self, name: str, timestamp: Optional[datetime] = None) -> str:
        """
        Build a version identifier.

        Example:
            >>> manager.new_version('Create Users', datetime(2026, 10, 18, 12))
            '2026_10_18_120000_create_users'
        """
        timestamp = timestamp or datetime.now()
        return f"{timestamp.strftime(VERSION_FORMAT)}_{normalize_name(name)}"

    def render(
        self,
        name: str,
        up_sql: str,
        down_sql: str,
        created_at: Optional[datetime] = None,
    ) -> str:
        """Render migration file content."""
        created_at = created_at or datetime.now()
        title = ' '.join(w.capitalize() for w in normalize_name(name).split('_'))
        return (
            f"-- Migration: {title}\n"
            f"-- Created: {created_at.strftime(CREATED_FORMAT)}\n"
            f"{self.UP_MARKER}\n"
            f"{up_sql.strip()}\n"
            f"\n"
            f"{self.DOWN_MARKER}\n"
            f"{down_sql.strip()}\n"
        )

    def write(self, name: str, scripts, timestamp: Optional[datetime] = None) -> Migration:
        """
        Write a new migration unit.

        Args:
            name: Migration name (normalized to snake case)
            scripts: Object with up_sql/down_sql (e.g. MigrationScripts)
            timestamp: Version timestamp (default now)

        Returns:
            The written Migration

        Raises:
            FileExistsError: If a unit with the same version exists
        """
        timestamp = (timestamp or datetime.now()).replace(microsecond=0)
        version = self.new_version(name, timestamp)
        file_path = self.migrations_dir / f"{version}.sql"
        if file_path.exists():
            raise FileExistsError(f"Migration already exists: {file_path.name}")

        content = self.render(name, scripts.up_sql, scripts.down_sql, timestamp)
        self.migrations_dir.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding='utf-8')
        logger.info("Created migration %s", file_path.name)

        return self.parse_migration_file(file_path)

    def delete_all(self) -> int:
        """Delete every migration unit file; returns how many were removed."""
        if not self.migrations_dir.exists():
            return 0
        count = 0
        for file_path in self.migrations_dir.glob('*.sql'):
            if self.MIGRATION_PATTERN.match(file_path.name):
                file_path.unlink()
                count += 1
        return count
