#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration loading and logging setup.

Config files are YAML (.yaml/.yml) or JSON:

    database_url: sqlite:///app.db
    migrations_dir: database/migrations
    schemas_dir: database/schemas
    ledger_table: migrations
    dialect: sqlite          # optional, defaults to the URL backend
    log_level: info
    entities:
      - entities/users.yaml

Relative paths are resolved against the directory holding the config
file, so commands behave the same from any working directory.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import yaml
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from schemaledger.errors import ConfigError
from schemaledger.schema.dialects import DIALECTS

LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'


class RobustFileHandler(logging.FileHandler):
    """FileHandler that tolerates flush errors on Windows file handles"""

    def flush(self):
        try:
            super().flush()
        except OSError as e:
            # EINVAL: handle in an inconsistent state, nothing left to write
            if e.errno != 22:
                raise


def configure_logger(logger,
                     log_file=None,
                     log_format=LOG_FORMAT,
                     log_level=logging.INFO):
    """Configure a logger with a file or stream handler

    Args:
        logger: Logger instance or logger name string
        log_file: File path string or file-like object (None for stderr)
        log_format: Format string for log messages
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG)

    Returns:
        Configured logger instance
    """
    if isinstance(log_file, (str, Path)):
        handler = RobustFileHandler(
            str(log_file),
            mode='a',
            encoding='utf-8',
            errors='replace'
        )
    else:
        handler = logging.StreamHandler(log_file)

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    handler.setFormatter(logging.Formatter(log_format))
    logger.addHandler(handler)
    logger.setLevel(log_level)

    return logger


def parse_log_level(level: Union[str, int]) -> int:
    """'debug' / 'INFO' / 20 -> logging constant."""
    if isinstance(level, int):
        return level
    value = getattr(logging, str(level).upper(), None)
    if not isinstance(value, int):
        raise ConfigError(f"Invalid log level: {level!r}")
    return value


def configure_logging(level: Union[str, int] = 'info', log_file=None) -> None:
    """Configure the root logger for command-line use."""
    log_level = parse_log_level(level)
    if log_file:
        configure_logger(logging.getLogger(), log_file, LOG_FORMAT, log_level)
    else:
        logging.basicConfig(level=log_level, format=LOG_FORMAT)


@dataclass
class MigrationConfig:
    """
    Resolved configuration.

    Attributes:
        database_url: SQLAlchemy database URL
        migrations_dir: Directory holding migration unit files
        schemas_dir: Directory holding schema snapshots
        ledger_table: Name of the tracking table
        dialect: DDL dialect for generated scripts (None: use the
            connected database's dialect, falling back to MySQL)
        log_level: Logging level name
        log_file: Optional log file path
        entities: Entity definition files used by generate
    """
    database_url: str
    migrations_dir: Path = Path('database/migrations')
    schemas_dir: Path = Path('database/schemas')
    ledger_table: str = 'migrations'
    dialect: Optional[str] = None
    log_level: str = 'info'
    log_file: Optional[Path] = None
    entities: List[Path] = field(default_factory=list)


def _parse_url(url: str) -> URL:
    try:
        return make_url(url)
    except ArgumentError as e:
        raise ConfigError(f"Invalid database_url {url!r}: {e}") from e


def _resolve_dialect(explicit: Optional[str], url: URL) -> Optional[str]:
    """Explicit dialect, else the URL backend when DDL exists for it."""
    if explicit:
        if str(explicit).lower() not in DIALECTS:
            raise ConfigError(
                f"Unknown dialect {explicit!r}. "
                f"Valid dialects: {', '.join(sorted(DIALECTS))}"
            )
        return str(explicit).lower()
    backend = url.get_backend_name()
    return backend if backend in DIALECTS else None


def _resolve(base: Path, value) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base / path


def _resolve_url(base: Path, url: str, parsed: URL) -> str:
    """Anchor relative SQLite file paths at the config directory."""
    database = parsed.database
    if parsed.get_backend_name() != 'sqlite' or not database or database == ':memory:':
        return url
    if Path(database).is_absolute():
        return url
    return parsed.set(database=str(base / database)).render_as_string(hide_password=False)


def load_config(path: Union[str, Path]) -> MigrationConfig:
    """Load configuration from a JSON or YAML file

    Args:
        path: Config file path

    Returns:
        MigrationConfig with paths resolved against the file's directory

    Raises:
        ConfigError: If the file is missing or malformed, lacks or has an
            unparseable database_url, or names an unknown dialect
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as fp:
            if path.suffix.lower() in ('.yaml', '.yml'):
                conf = yaml.safe_load(fp)
            else:
                conf = json.load(fp)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e

    if not isinstance(conf, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    database_url = conf.get('database_url')
    if not database_url:
        raise ConfigError(f"Config file {path} is missing 'database_url'")

    base = path.resolve().parent
    parsed = _parse_url(database_url)
    dialect = _resolve_dialect(conf.get('dialect'), parsed)
    database_url = _resolve_url(base, database_url, parsed)

    entities = conf.get('entities') or []
    if isinstance(entities, str):
        entities = [entities]

    log_file = conf.get('log_file')

    return MigrationConfig(
        database_url=database_url,
        migrations_dir=_resolve(base, conf.get('migrations_dir', 'database/migrations')),
        schemas_dir=_resolve(base, conf.get('schemas_dir', 'database/schemas')),
        ledger_table=conf.get('ledger_table', 'migrations'),
        dialect=dialect,
        log_level=str(conf.get('log_level', 'info')),
        log_file=_resolve(base, log_file) if log_file else None,
        entities=[_resolve(base, e) for e in entities],
    )
