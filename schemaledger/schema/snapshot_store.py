"""
Schema snapshot storage.

Snapshots are JSON files named after the migration unit they were taken
with (``YYYY_MM_DD_HHmmss_<name>.json``). The file name sorts
chronologically, so the latest snapshot is simply the greatest name.

File format:
    {
        "version": "2026_10_18_120000_create_users",
        "created_at": "2026-10-18T12:00:00",
        "tables": {"users": {"table": "users", "columns": [...], ...}}
    }
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from schemaledger.schema.model import Schema

logger = logging.getLogger(__name__)


@dataclass
class SchemaSnapshot:
    """
    A frozen set of table schemas.

    Attributes:
        version: Sortable timestamp-prefixed identifier
        tables: Table name -> Schema
        created_at: When the snapshot was taken
    """

    version: str
    tables: Dict[str, Schema] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'tables': {name: s.to_dict() for name, s in self.tables.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SchemaSnapshot':
        created_at = data.get('created_at')
        return cls(
            version=data['version'],
            tables={
                name: Schema.from_dict(s)
                for name, s in (data.get('tables') or {}).items()
            },
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )


class SchemaSnapshotStore:
    """
    Persists and retrieves schema snapshots in a directory.

    Example:
        >>> store = SchemaSnapshotStore(Path('database/schemas'))
        >>> baseline = store.latest()   # None on first run
        >>> store.save('2026_10_18_120000_init', schemas)
    """

    SUFFIX = '.json'

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def versions(self) -> List[str]:
        """All snapshot identifiers, oldest first."""
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob(f'*{self.SUFFIX}'))

    def save(self, version: str, schemas: Iterable[Schema]) -> SchemaSnapshot:
        """
        Write a new snapshot.

        Schemas are stored resolved (drop/rename markers applied) so
        the snapshot describes the state after the migration.

        Raises:
            FileExistsError: If a snapshot with this version exists
        """
        path = self._path(version)
        if path.exists():
            raise FileExistsError(f"Snapshot already exists: {path.name}")

        snapshot = SchemaSnapshot(
            version=version,
            tables={s.table: s.resolved() for s in schemas},
            created_at=datetime.now().replace(microsecond=0),
        )

        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(snapshot.to_dict(), indent=4) + '\n', encoding='utf-8'
        )
        logger.info("Saved schema snapshot %s (%d tables)", version, len(snapshot.tables))
        return snapshot

    def load(self, version: str) -> SchemaSnapshot:
        path = self._path(version)
        if not path.exists():
            raise FileNotFoundError(f"Snapshot not found: {version}")
        return SchemaSnapshot.from_dict(json.loads(path.read_text(encoding='utf-8')))

    def latest(self) -> Optional[SchemaSnapshot]:
        """The current baseline, or None when no snapshot exists."""
        versions = self.versions()
        if not versions:
            return None
        return self.load(versions[-1])

    def delete_all(self) -> int:
        """Delete every snapshot file; returns how many were removed."""
        count = 0
        for version in self.versions():
            self._path(version).unlink()
            count += 1
        return count

    def _path(self, version: str) -> Path:
        return self.directory / f"{version}{self.SUFFIX}"
