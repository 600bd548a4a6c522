"""
Tenant lookups: resolving names to ids, existence checks, listing and
validating a tenant's data.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import psycopg

from .database import count_rows, table_exists
from .errors import ConfigurationError, QueryFailure, TenantAmbiguous, TenantNotFound
from .registry import (TENANT_NAME_COLUMN, TENANT_TABLE, TableDescriptor,
                       integrity_query, resolve_predicate)
from .serializer import quote_identifier

logger = logging.getLogger(__name__)

LIST_TENANTS_QUERY = """
    SELECT
      a.id,
      a.name,
      a.domain,
      a.status,
      a.created_at,
      COUNT(DISTINCT au.user_id) AS user_count,
      COUNT(DISTINCT i.id) AS inbox_count,
      COUNT(DISTINCT c.id) AS conversation_count
    FROM accounts a
    LEFT JOIN account_users au ON a.id = au.account_id
    LEFT JOIN inboxes i ON a.id = i.account_id
    LEFT JOIN conversations c ON a.id = c.account_id
    GROUP BY a.id, a.name, a.domain, a.status, a.created_at
    ORDER BY a.id
"""


@dataclass
class TenantSummary:
    id: int
    name: str
    domain: Optional[str]
    status: Optional[str]
    created_at: object
    user_count: int
    inbox_count: int
    conversation_count: int


@dataclass
class ValidationReport:
    tenant_id: int
    stats: Dict[str, int] = field(default_factory=dict)
    missing_tables: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def parse_tenant_id(identifier: Union[int, str]) -> Optional[int]:
    """Return the numeric id an identifier stands for, or None for a name"""
    if isinstance(identifier, bool):
        return None
    if isinstance(identifier, int):
        return identifier if identifier > 0 else None
    text = str(identifier).strip()
    if text.isdigit() and int(text) > 0:
        return int(text)
    return None


class TenantResolver:
    """Tenant queries against one open connection"""

    def __init__(self, conn):
        self.conn = conn

    def resolve(self, identifier: Union[int, str], by_name: bool = False) -> int:
        """Map an id or an exact tenant name to the tenant id.

        Numeric ids pass through unchecked; names must match exactly one
        tenant. With ``by_name`` the identifier is always looked up as a
        name, even when it is all digits.
        """
        if by_name:
            return self.resolve_name(str(identifier))
        if isinstance(identifier, int) and not isinstance(identifier, bool):
            if identifier <= 0:
                raise ConfigurationError(f"Tenant id must be a positive integer, got {identifier}")
            return identifier

        tenant_id = parse_tenant_id(identifier)
        if tenant_id is not None:
            return tenant_id
        return self.resolve_name(str(identifier))

    def resolve_name(self, name: str) -> int:
        """Exact-match lookup of a tenant name"""
        try:
            rows = self.conn.execute(
                f"SELECT id FROM {TENANT_TABLE} WHERE {TENANT_NAME_COLUMN} = %s",
                (name,)
            ).fetchall()
        except psycopg.Error as err:
            raise QueryFailure(f"Tenant lookup failed: {err}", table=TENANT_TABLE) from err

        if not rows:
            raise TenantNotFound(name)
        if len(rows) > 1:
            raise TenantAmbiguous(name, len(rows))

        tenant_id = int(rows[0][0])
        logger.info(f"Resolved tenant '{name}' to ID {tenant_id}")
        return tenant_id

    def exists(self, tenant_id: int) -> bool:
        row = self.conn.execute(
            f"SELECT 1 FROM {TENANT_TABLE} WHERE id = %s", (tenant_id,)
        ).fetchone()
        return row is not None

    def list_tenants(self) -> List[TenantSummary]:
        try:
            rows = self.conn.execute(LIST_TENANTS_QUERY).fetchall()
        except psycopg.Error as err:
            raise QueryFailure(f"Could not list tenants: {err}", table=TENANT_TABLE) from err
        return [TenantSummary(*row) for row in rows]

    def validate(self, tenant_id: int, tables: Sequence[TableDescriptor]) -> ValidationReport:
        """Count a tenant's rows per table and look for dangling references.

        A failing count or integrity query is reported as an error rather
        than raised, so one broken table does not hide the others.
        """
        if not self.exists(tenant_id):
            raise TenantNotFound(tenant_id)

        report = ValidationReport(tenant_id=tenant_id)
        for descriptor in tables:
            table = descriptor.name
            if not table_exists(self.conn, table):
                logger.warning(f"Table {table} does not exist, skipping")
                report.missing_tables.append(table)
                continue

            predicate = resolve_predicate(descriptor, tenant_id)
            try:
                report.stats[table] = count_rows(
                    self.conn, f"SELECT COUNT(*) FROM {quote_identifier(table)} WHERE {predicate}"
                )
                check = integrity_query(descriptor, tenant_id)
                dangling = count_rows(self.conn, check) if check else 0
            except psycopg.Error as err:
                self._recover()
                report.errors.append(f"{table}: query failed: {str(err).strip()}")
                continue

            if dangling:
                report.errors.append(
                    f"{table}: {dangling} references from {descriptor.strategy.depends_on[0]} "
                    f"point to missing rows"
                )
        return report

    def _recover(self):
        """Clear an aborted transaction so later queries can run"""
        try:
            self.conn.rollback()
        except psycopg.Error as err:
            logger.warning(f"Rollback after failed query failed too: {err}")
