#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command-line interface.

    python -m schemaledger -c config.yaml generate create_users
    python -m schemaledger -c config.yaml apply [--dry-run]
    python -m schemaledger -c config.yaml rollback [batches]
    python -m schemaledger -c config.yaml status
    python -m schemaledger -c config.yaml reset --yes

Exit status is 0 on success and 1 on any error.
"""
import argparse
import logging
import sys
from typing import List, Optional

from schemaledger.config import configure_logging, load_config
from schemaledger.database import Database
from schemaledger.errors import (
    ExecutionError,
    MigrationValidationError,
    NoChangesDetected,
    SchemaLedgerError,
)
from schemaledger.migrations.orchestrator import MigrationOrchestrator
from schemaledger.schema.entity import load_entities

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='schemaledger',
        description='Generate, apply and roll back schema migrations'
    )
    parser.add_argument(
        '-c', '--config',
        default='schemaledger.yaml',
        help='Path to config file (default: schemaledger.yaml)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override the configured logging level'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    generate = commands.add_parser('generate', help='Create a migration from schema changes')
    generate.add_argument('name', help='Migration name, e.g. add_email_to_users')
    generate.add_argument(
        '--entities', nargs='+', metavar='FILE',
        help='Entity definition files (default: entities from config, '
             'or the live database when none are configured)'
    )

    apply = commands.add_parser('apply', help='Apply pending migrations')
    apply.add_argument('--dry-run', action='store_true',
                       help='List pending migrations without running them')

    rollback = commands.add_parser('rollback', help='Roll back the latest batches')
    rollback.add_argument('batches', nargs='?', type=int, default=1,
                          help='Number of batches to roll back (default: 1)')

    commands.add_parser('status', help='Show applied and pending migrations')

    reset = commands.add_parser(
        'reset', help='Forget all migrations (ledger, unit files, snapshots)'
    )
    reset.add_argument('--yes', action='store_true',
                       help='Confirm deletion of every migration artifact')

    return parser


def _generate(orchestrator: MigrationOrchestrator, args, config) -> int:
    files = args.entities or config.entities
    entities = None
    if files:
        entities = []
        for path in files:
            entities.extend(load_entities(path))

    try:
        result = orchestrator.generate(args.name, entities=entities)
    except NoChangesDetected as e:
        print(f"{e}. Nothing generated.")
        return 1

    print(f"Created migration: {result.migration.filename}")
    for warning in result.warnings:
        print(f"  {warning}")
    return 0


def _apply(orchestrator: MigrationOrchestrator, args) -> int:
    result = orchestrator.apply(dry_run=args.dry_run)
    if result.nothing_to_do:
        print("Nothing to migrate.")
        return 0
    if result.dry_run:
        print(f"Would apply {len(result.planned)} migration(s):")
        for version in result.planned:
            print(f"  {version}")
        return 0
    for version in result.executed:
        print(f"Applied: {version}")
    print(f"Batch {result.batch}: {len(result.executed)} migration(s) applied.")
    return 0


def _rollback(orchestrator: MigrationOrchestrator, args) -> int:
    result = orchestrator.rollback(args.batches)
    if result.nothing_to_do:
        print("Nothing to roll back.")
        return 0
    for version in result.executed:
        print(f"Rolled back: {version}")
    for version in result.skipped:
        print(f"Skipped (file not found): {version}")
    print(f"{len(result.executed)} migration(s) rolled back.")
    return 0


def _status(orchestrator: MigrationOrchestrator) -> int:
    status = orchestrator.status()
    print(f"Applied ({len(status.applied)}):")
    for record in status.applied:
        flags = []
        if record.version in status.missing:
            flags.append('missing file')
        if record.version in status.modified:
            flags.append('modified')
        suffix = f" [{', '.join(flags)}]" if flags else ''
        print(f"  [batch {record.batch}] {record.version}{suffix}")
    print(f"Pending ({len(status.pending)}):")
    for migration in status.pending:
        print(f"  {migration.version}")
    return 0


def _reset(orchestrator: MigrationOrchestrator, args) -> int:
    if not args.yes:
        print("Refusing to reset without --yes.", file=sys.stderr)
        return 1
    result = orchestrator.reset()
    print(
        f"Removed {result.ledger_records} ledger record(s), "
        f"{result.migration_files} migration file(s), "
        f"{result.snapshots} snapshot(s)."
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        configure_logging(args.log_level or config.log_level, config.log_file)

        database = Database(config.database_url)
        try:
            orchestrator = MigrationOrchestrator.from_config(config, database)

            if args.command == 'generate':
                return _generate(orchestrator, args, config)
            if args.command == 'apply':
                return _apply(orchestrator, args)
            if args.command == 'rollback':
                return _rollback(orchestrator, args)
            if args.command == 'status':
                return _status(orchestrator)
            return _reset(orchestrator, args)
        finally:
            database.close()

    except ExecutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        for version in e.completed:
            print(f"  completed before failure: {version}", file=sys.stderr)
        return 1
    except MigrationValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        for warning in e.errors:
            print(f"  {warning}", file=sys.stderr)
        return 1
    except (SchemaLedgerError, ValueError, FileExistsError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
