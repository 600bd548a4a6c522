"""
Extraction engine: streams one tenant's rows into a replayable SQL artifact.

The artifact is written table by table in registry order. Each row is
serialized and written as soon as it is fetched, so memory use does not
grow with the size of the tenant.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, TextIO

import psycopg

from . import __version__
from .config import ExtractionConfig, TableFilter
from .database import count_rows, table_exists
from .errors import ConfigurationError, QueryFailure, TenantNotFound
from .registry import DEFAULT_REGISTRY, TableDescriptor, TableRegistry, resolve_predicate
from .serializer import quote_identifier, serialize_row
from .tenants import TenantResolver

logger = logging.getLogger(__name__)

GENERATOR = f"pg-tenant-copy {__version__}"
FETCH_SIZE = 2000


@dataclass
class ExtractionPlan:
    """What an export would do; printed by dry runs"""
    config: ExtractionConfig
    tables: List[str]
    ignored: List[str] = field(default_factory=list)

    def summary_lines(self) -> List[str]:
        config = self.config
        lines = ["Tables to export:"]
        lines.extend(f"  - {name}" for name in self.tables)
        lines.append("")
        lines.append("Configuration:")
        lines.append(f"  - Tenant ID: {config.tenant_id}")
        lines.append(f"  - Include optional tables: {config.include_optional_tables}")
        if config.remap_tenant_id is not None:
            lines.append(f"  - Remap tenant ID to: {config.remap_tenant_id}")
        if config.table_filter.include:
            lines.append(f"  - Only tables: {', '.join(config.table_filter.include)}")
        elif config.table_filter.exclude:
            lines.append(f"  - Excluded tables: {', '.join(config.table_filter.exclude)}")
        if self.ignored:
            lines.append(f"  - Ignored (optional tables disabled): {', '.join(self.ignored)}")
        return lines


@dataclass
class ExtractionResult:
    tenant_id: int
    remap_tenant_id: Optional[int] = None
    row_counts: Dict[str, int] = field(default_factory=dict)
    skipped_tables: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_rows(self) -> int:
        return sum(self.row_counts.values())


class ExtractionEngine:
    """Produce a tenant artifact from a source database connection"""

    def __init__(self, registry: TableRegistry = DEFAULT_REGISTRY):
        self.registry = registry

    def check_filter(self, table_filter: TableFilter):
        """Reject table names the registry does not know; runs before any I/O"""
        unknown = [name for name in table_filter.names() if name not in self.registry]
        if unknown:
            raise ConfigurationError(f"Unknown tables: {', '.join(unknown)}")

    def plan(self, config: ExtractionConfig) -> ExtractionPlan:
        """Resolve the effective, ordered table set for ``config``"""
        self.check_filter(config.table_filter)
        if config.table_filter.include and config.table_filter.exclude:
            logger.warning("Both inclusion and exclusion lists given; "
                           f"ignoring exclusions: {', '.join(config.table_filter.exclude)}")

        candidates = self.registry.all_core_tables()
        if config.include_optional_tables:
            candidates += self.registry.all_optional_tables()

        table_filter = config.table_filter
        if table_filter.include:
            selected = [d for d in candidates if d.name in table_filter.include]
        elif table_filter.exclude:
            selected = [d for d in candidates if d.name not in table_filter.exclude]
        else:
            selected = candidates

        selected_names = {d.name for d in selected}
        ignored = [name for name in table_filter.include if name not in selected_names]
        for name in ignored:
            logger.warning(f"Table '{name}' is optional and optional tables are disabled; skipping")

        return ExtractionPlan(config=config, tables=[d.name for d in selected], ignored=ignored)

    def resolve_tables(self, config: ExtractionConfig) -> List[TableDescriptor]:
        return [self.registry.lookup(name) for name in self.plan(config).tables]

    def extract(self, config: ExtractionConfig, conn, sink: Optional[TextIO],
                generated_at: Optional[datetime] = None) -> ExtractionResult:
        """Write the artifact for ``config.tenant_id`` to ``sink``.

        In dry-run mode only the table set is resolved; neither ``conn`` nor
        ``sink`` is used. Any query error aborts the run with QueryFailure
        and leaves an incomplete, invalid artifact behind.
        """
        tables = self.resolve_tables(config)
        result = ExtractionResult(
            tenant_id=config.tenant_id,
            remap_tenant_id=config.remap_tenant_id,
            dry_run=config.dry_run,
        )
        if config.dry_run:
            return result

        try:
            exists = TenantResolver(conn).exists(config.tenant_id)
        except psycopg.Error as err:
            raise QueryFailure(f"Tenant lookup failed: {err}") from err
        if not exists:
            raise TenantNotFound(config.tenant_id)

        self.write_header(sink, config, generated_at)
        for descriptor in tables:
            logger.debug(f"Exporting table: {descriptor.name}")
            try:
                count = self.export_table(conn, sink, descriptor, config)
            except psycopg.Error as err:
                raise QueryFailure(str(err).strip(), table=descriptor.name) from err
            if count is None:
                result.skipped_tables.append(descriptor.name)
            else:
                result.row_counts[descriptor.name] = count
        self.write_footer(sink)
        return result

    def export_table(self, conn, sink: TextIO, descriptor: TableDescriptor,
                     config: ExtractionConfig) -> Optional[int]:
        """Stream one table's tenant rows into ``sink``.

        Returns the number of rows written, or None if the table does not
        exist in the connected schema.
        """
        table = descriptor.name
        if not table_exists(conn, table):
            logger.warning(f"Table {table} does not exist, skipping")
            return None

        predicate = resolve_predicate(descriptor, config.tenant_id)
        from_clause = f"FROM {quote_identifier(table)} WHERE {predicate}"

        expected = count_rows(conn, f"SELECT COUNT(*) {from_clause}")
        if expected == 0:
            logger.debug(f"Table {table}: no rows")
            return 0

        sink.write(f"-- Data for table: {table}\n")
        sink.write(f"-- Rows: {expected}\n")

        written = 0
        with conn.cursor(name=f"export_{table}") as cursor:
            cursor.itersize = FETCH_SIZE
            cursor.execute(f"SELECT * {from_clause} ORDER BY 1")
            columns = [desc[0] for desc in cursor.description]
            for row in cursor:
                sink.write(serialize_row(table, columns, row, config.remap_tenant_id) + "\n")
                written += 1
        sink.write("\n")

        if written != expected:
            raise QueryFailure(f"Counted {expected} rows but fetched {written}", table=table)
        logger.info(f"Exported {written} rows from {table}")
        return written

    @staticmethod
    def write_header(sink: TextIO, config: ExtractionConfig, generated_at: Optional[datetime] = None):
        generated_at = generated_at or datetime.now(timezone.utc)
        sink.write("-- Tenant data export\n")
        sink.write(f"-- Tenant ID: {config.tenant_id}\n")
        if config.remap_tenant_id is not None:
            sink.write(f"-- Remapped tenant ID: {config.remap_tenant_id}\n")
        sink.write(f"-- Date: {generated_at.isoformat()}\n")
        sink.write(f"-- Generated by: {GENERATOR}\n")
        sink.write("\n")
        sink.write("SET session_replication_role = replica;\n")
        sink.write("BEGIN;\n")
        sink.write("\n")

    @staticmethod
    def write_footer(sink: TextIO):
        sink.write("\n")
        sink.write("COMMIT;\n")
        sink.write("SET session_replication_role = DEFAULT;\n")
        sink.write("-- End of export\n")
