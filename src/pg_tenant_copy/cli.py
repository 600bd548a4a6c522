#!/usr/bin/env python3
"""
PostgreSQL Tenant Copy Tool
Move a single tenant's rows between PostgreSQL databases through a
replayable SQL artifact.
"""

import argparse
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Tuple, Union

from .config import (DatabaseSettings, ExtractionConfig, ImportConfig, SSHSettings,
                     TableFilter, create_sample_config, load_config_file)
from .database import connect
from .errors import ArtifactMissing, ConfigurationError, QueryFailure, TenantCopyError
from .extract import ExtractionEngine
from .replay import ReplayEngine
from .tenants import TenantResolver
from .transfer import compress_file, copy_to_server, import_instructions

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

COMMANDS = ('export', 'import', 'list-tenants', 'validate')


def banner(title: str):
    logger.info("=" * 50)
    logger.info(title)
    logger.info("=" * 50)


def split_tables(values: Optional[List[str]]) -> Tuple[str, ...]:
    """Accept both ``--tables a b`` and ``--tables a,b``"""
    names = []
    for value in values or ():
        names.extend(part.strip() for part in value.split(',') if part.strip())
    return tuple(names)


def build_settings(args) -> Tuple[DatabaseSettings, DatabaseSettings]:
    """Source and target settings: CLI flag > config file > environment > default"""
    source = DatabaseSettings.from_env()
    target = None

    if args.config:
        config = load_config_file(args.config)
        source = DatabaseSettings.from_dict(config.get('source', {}), base=source)
        if config.get('target'):
            target = DatabaseSettings.from_dict(config['target'], base=source)

    source = source.with_overrides(
        host=args.host, port=args.port, database=args.database,
        user=args.user, password=args.password,
    )
    if args.ssh_host:
        source = replace(source, ssh=SSHSettings(
            host=args.ssh_host, port=args.ssh_port,
            username=args.ssh_user, private_key_path=args.ssh_key,
        ))

    target = (target or source).with_overrides(
        host=args.target_host, port=args.target_port, database=args.target_database,
        user=args.target_user, password=args.target_password,
    )
    return source, target


def tenant_reference(args) -> str:
    """How the target server should name the tenant once the artifact is imported"""
    if args.remap_tenant_id is not None:
        return f"--tenant-id {args.remap_tenant_id}"
    if args.tenant_id is not None:
        return f"--tenant-id {args.tenant_id}"
    return f'--tenant-name "{args.tenant_name}"'


def require_tenant(args) -> Tuple[Union[int, str], bool]:
    """Return the tenant identifier and whether it is a name; ids are checked before any I/O"""
    if args.tenant_id is None and not args.tenant_name:
        raise ConfigurationError("Either --tenant-id or --tenant-name is required")
    if args.tenant_id is not None and args.tenant_id <= 0:
        raise ConfigurationError(f"--tenant-id must be a positive integer, got {args.tenant_id}")
    if args.remap_tenant_id is not None and args.remap_tenant_id <= 0:
        raise ConfigurationError(
            f"--remap-tenant-id must be a positive integer, got {args.remap_tenant_id}"
        )
    if args.tenant_id is not None:
        return args.tenant_id, False
    return args.tenant_name, True


def default_output(tenant_id: int) -> str:
    return f"tenant_{tenant_id}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.sql"


def run_export(args, source: DatabaseSettings) -> int:
    identifier, by_name = require_tenant(args)
    table_filter = TableFilter(include=split_tables(args.include_tables),
                               exclude=split_tables(args.exclude_tables))
    engine = ExtractionEngine()
    engine.check_filter(table_filter)

    def build_config(tenant_id: int) -> ExtractionConfig:
        return ExtractionConfig(
            tenant_id=tenant_id,
            table_filter=table_filter,
            include_optional_tables=not args.no_enterprise,
            remap_tenant_id=args.remap_tenant_id,
            dry_run=args.dry_run,
        )

    if args.dry_run and args.tenant_id is not None:
        banner("DRY RUN: EXPORT")
        for line in engine.plan(build_config(args.tenant_id)).summary_lines():
            print(line)
        print(f"  - Compress output: {args.compress}")
        return 0

    with connect(source, read_only=True) as conn:
        tenant_id = TenantResolver(conn).resolve(identifier, by_name=by_name)
        config = build_config(tenant_id)

        if config.dry_run:
            banner("DRY RUN: EXPORT")
            for line in engine.plan(config).summary_lines():
                print(line)
            print(f"  - Compress output: {args.compress}")
            return 0

        output = args.output or default_output(tenant_id)
        banner(f"EXPORTING TENANT {tenant_id}")
        logger.info(f"Source: {source.describe()}")
        logger.info(f"Output file: {output}")

        try:
            with open(output, 'w', encoding='utf-8') as sink:
                result = engine.extract(config, conn, sink)
        except QueryFailure:
            logger.warning(f"Partial artifact {output} is not valid input for import; discard it")
            raise

    if args.compress:
        output = compress_file(output)

    banner("EXPORT COMPLETED SUCCESSFULLY")
    logger.info(f"Artifact: {output}")
    logger.info("Export statistics:")
    for table, count in result.row_counts.items():
        logger.info(f"  {table}: {count} rows")
    if result.skipped_tables:
        logger.info(f"  Skipped (not in schema): {', '.join(result.skipped_tables)}")
    logger.info(f"  Total: {result.total_rows} rows")

    if args.target_server:
        banner("TRANSFERRING TO TARGET SERVER")
        remote_path = copy_to_server(output, args.target_server)
        print("")
        for line in import_instructions(remote_path, args.target_server, tenant_reference(args)):
            print(line)
    return 0


def run_import(args, target: DatabaseSettings) -> int:
    if not args.input:
        raise ConfigurationError("--input is required for import")
    if not os.path.isfile(args.input):
        raise ArtifactMissing(args.input)

    config = ImportConfig(
        input_path=args.input,
        backup_before_import=not args.no_backup,
        backup_dir=args.backup_dir,
        dry_run=args.dry_run,
    )
    engine = ReplayEngine(target)

    if config.dry_run:
        banner("DRY RUN: IMPORT")
        result = engine.replay(config)
        summary = result.summary
        print(f"File to import: {config.input_path}")
        print(f"Tenant ID in artifact: {summary.remap_tenant_id or summary.tenant_id or 'unknown'}")
        print(f"Target database: {target.describe()}")
        print(f"Create backup first: {config.backup_before_import}")
        print(f"Complete BEGIN/COMMIT envelope: {summary.has_envelope}")
        for table, count in summary.statements.items():
            print(f"  {table}: {count} rows")
        if not summary.has_envelope:
            logger.error(f"{config.input_path} is truncated; importing it would fail")
            return 1
        return 0

    banner("IMPORTING ARTIFACT")
    logger.info(f"Input file: {config.input_path}")
    logger.info(f"Target: {target.describe()}")
    with connect(target, autocommit=True) as conn:
        result = engine.replay(config, conn)

    banner("IMPORT COMPLETED SUCCESSFULLY")
    logger.info(f"Applied {result.summary.total_statements} rows "
                f"across {len(result.summary.statements)} tables")
    if result.backup_file:
        logger.info(f"Backup of target taken before import: {result.backup_file}")
    return 0


def run_list_tenants(args, source: DatabaseSettings) -> int:
    with connect(source, read_only=True) as conn:
        tenants = TenantResolver(conn).list_tenants()

    row_format = "%-6s %-30s %-20s %-10s %-8s %-8s %-8s %-12s"
    print(row_format % ("ID", "Name", "Domain", "Status", "Users", "Inboxes", "Conv.", "Created"))
    print("-" * 100)
    for tenant in tenants:
        created = str(tenant.created_at)[:10] if tenant.created_at else 'N/A'
        print(row_format % (
            tenant.id, (tenant.name or '')[:30], tenant.domain or 'N/A', tenant.status,
            tenant.user_count, tenant.inbox_count, tenant.conversation_count, created,
        ))
    return 0


def run_validate(args, source: DatabaseSettings) -> int:
    identifier, by_name = require_tenant(args)
    engine = ExtractionEngine()

    with connect(source, read_only=True) as conn:
        resolver = TenantResolver(conn)
        tenant_id = resolver.resolve(identifier, by_name=by_name)
        config = ExtractionConfig(
            tenant_id=tenant_id,
            include_optional_tables=not args.no_enterprise,
            table_filter=TableFilter(include=split_tables(args.include_tables),
                                     exclude=split_tables(args.exclude_tables)),
        )
        banner(f"VALIDATING TENANT {tenant_id}")
        report = resolver.validate(tenant_id, engine.resolve_tables(config))

    if report.ok:
        logger.info("Validation completed. No problems found.")
    else:
        logger.warning(f"Found {len(report.errors)} problems:")
        for error in report.errors:
            logger.warning(f"  - {error}")

    print("Row counts:")
    for table, count in report.stats.items():
        print(f"  {table}: {count} rows")
    if report.missing_tables:
        print(f"Missing tables: {', '.join(report.missing_tables)}")
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pg-tenant-copy',
        description='PostgreSQL Tenant Copy Tool - Move one tenant\'s rows between databases',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  export        Write one tenant's rows to a replayable SQL file
  import        Apply an exported file to the target database
  list-tenants  List every tenant with user/inbox/conversation counts
  validate      Report row counts and dangling references for a tenant

Examples:
  # Export tenant 1, compressed
  pg-tenant-copy export --tenant-id 1 --compress

  # Export by name and copy the file to the target server
  pg-tenant-copy export --tenant-name "Acme Inc" --compress --target-server deploy@db2.example.com

  # Export only some tables, giving the tenant a new id
  pg-tenant-copy export --tenant-id 1 --include-tables accounts inboxes --remap-tenant-id 42

  # Show what an export would do
  pg-tenant-copy export --tenant-id 1 --dry-run

  # Import into the target database (takes a pg_dump backup first)
  pg-tenant-copy import --input /tmp/tenant_1_20240101_120000.sql.gz --config config.json

  # Show sample config
  pg-tenant-copy --sample-config
        """
    )

    parser.add_argument('command', nargs='?', choices=COMMANDS, help='Command to run')
    parser.add_argument('--config', type=str, help='Path to JSON config file')

    parser.add_argument('--tenant-id', type=int, help='ID of the tenant (account)')
    parser.add_argument('--tenant-name', type=str, help='Exact name of the tenant (account)')
    parser.add_argument('--output', type=str, help='Output file for export (default: tenant_<id>_<timestamp>.sql)')
    parser.add_argument('--input', type=str, help='Input file for import')
    parser.add_argument('--compress', action='store_true', help='Gzip the exported file')
    parser.add_argument('--include-tables', nargs='+', help='Only export these tables')
    parser.add_argument('--exclude-tables', nargs='+', help='Do not export these tables')
    parser.add_argument('--no-enterprise', action='store_true', help='Skip enterprise-only tables')
    parser.add_argument('--remap-tenant-id', type=int, help='Write this tenant id into every account_id column')
    parser.add_argument('--target-server', type=str, help='Copy the export to USER@HOST:/tmp/ with scp')
    parser.add_argument('--no-backup', action='store_true', help='Do not pg_dump the target before import')
    parser.add_argument('--backup-dir', type=str, default='.', help='Directory for the pre-import backup (default: .)')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be done without doing it')

    parser.add_argument('--host', type=str, help='Source database host')
    parser.add_argument('--port', type=int, help='Source database port (default: 5432)')
    parser.add_argument('--database', type=str, help='Source database name')
    parser.add_argument('--user', type=str, help='Source database user')
    parser.add_argument('--password', type=str, help='Source database password')
    parser.add_argument('--ssh-host', type=str, help='Reach the source database through this SSH server')
    parser.add_argument('--ssh-port', type=int, default=22, help='SSH port (default: 22)')
    parser.add_argument('--ssh-user', type=str, default=None, help='SSH username (optional, uses SSH config if not specified)')
    parser.add_argument('--ssh-key', type=str, help='SSH private key path')

    parser.add_argument('--target-host', type=str, help='Target database host (default: source host)')
    parser.add_argument('--target-port', type=int, help='Target database port')
    parser.add_argument('--target-database', type=str, help='Target database name')
    parser.add_argument('--target-user', type=str, help='Target database user')
    parser.add_argument('--target-password', type=str, help='Target database password')

    parser.add_argument('--sample-config', action='store_true', help='Print sample configuration')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger('pg_tenant_copy').setLevel(logging.DEBUG)

    if args.sample_config:
        create_sample_config()
        return 0

    if not args.command:
        parser.print_help()
        return 1

    try:
        source, target = build_settings(args)
        if args.command == 'export':
            return run_export(args, source)
        if args.command == 'import':
            return run_import(args, target)
        if args.command == 'list-tenants':
            return run_list_tenants(args, source)
        return run_validate(args, source)

    except TenantCopyError as err:
        logger.error(str(err))
        return 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 1
    except Exception as err:
        logger.error(f"Unexpected error: {err}", exc_info=True)
        return 1


if __name__ == '__main__':
    sys.exit(main())
