"""
Exception types raised by the tenant copy tool.

Every fatal condition aborts the current command. ``TableNotFound`` is the
only one the engines treat as non-fatal: the table is skipped with a warning.
"""

from typing import Optional


class TenantCopyError(Exception):
    """Base class for all errors raised by pg-tenant-copy"""


class ConfigurationError(TenantCopyError):
    """Invalid configuration, detected before any database I/O"""


class TenantNotFound(TenantCopyError):
    """No tenant matches the given identifier or name"""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"Tenant '{identifier}' does not exist")


class TenantAmbiguous(TenantCopyError):
    """More than one tenant matches the given name"""

    def __init__(self, name: str, matches: int):
        self.name = name
        self.matches = matches
        super().__init__(f"Found {matches} tenants named '{name}'; use --tenant-id instead")


class TableNotFound(TenantCopyError):
    """Table is not registered, or does not exist in the connected schema"""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Table '{table}' not found")


class QueryFailure(TenantCopyError):
    """A database query failed; carries the table being processed, if any"""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        if table:
            message = f"[{table}] {message}"
        super().__init__(message)


class SerializationError(QueryFailure):
    """A row value cannot be written as a SQL literal"""


class ArtifactMissing(TenantCopyError):
    """The artifact given to import does not exist"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Input file not found: {path}")


class BackupFailure(TenantCopyError):
    """The safety backup taken before import could not be produced"""


class TransferFailure(TenantCopyError):
    """Copying the artifact to the target server failed"""


class ArtifactIncomplete(TenantCopyError):
    """The artifact lacks its BEGIN/COMMIT envelope, so it was cut short"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"{path} has no complete BEGIN/COMMIT envelope; refusing to import it")
