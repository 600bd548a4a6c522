"""
PostgreSQL Tenant Copy Tool - Move one tenant's rows between PostgreSQL databases

This package provides a CLI tool to export a single tenant (account) of a shared,
multi-tenant PostgreSQL database into a replayable SQL file, and to import that
file into another database.

Main features:
- Tenant-scoped export driven by a static table registry
- Streaming export inside one consistent read-only snapshot
- Optional tenant id remapping at export time
- All-or-nothing import inside the file's own transaction
- pg_dump safety backup before import
- SSH tunnelling, gzip compression and scp transfer
- Config file, environment variable or command-line settings

Usage:
    pg-tenant-copy export --tenant-id 1 --compress
    pg-tenant-copy import --input tenant_1_20240101_120000.sql.gz
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .extract import ExtractionEngine
from .registry import DEFAULT_REGISTRY, TableRegistry
from .replay import ReplayEngine
from .tenants import TenantResolver

__all__ = [
    "DEFAULT_REGISTRY",
    "ExtractionEngine",
    "ReplayEngine",
    "TableRegistry",
    "TenantResolver",
]
