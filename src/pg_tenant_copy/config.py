"""
Configuration values for a single run.

Connection settings come from a JSON config file, the ``DATABASE_*``
environment variables, or command-line overrides. Run configuration is
immutable once built and is passed explicitly to each operation.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432

ENV_DEFAULTS = {
    'host': ('DATABASE_HOST', 'localhost'),
    'port': ('DATABASE_PORT', DEFAULT_PORT),
    'database': ('DATABASE_NAME', 'chatwoot_development'),
    'user': ('DATABASE_USERNAME', 'chatwoot'),
    'password': ('DATABASE_PASSWORD', ''),
}


@dataclass(frozen=True)
class SSHSettings:
    host: str
    port: int = 22
    username: Optional[str] = None
    private_key_path: Optional[str] = None


@dataclass(frozen=True)
class DatabaseSettings:
    host: str = 'localhost'
    port: int = DEFAULT_PORT
    database: str = ''
    user: str = ''
    password: str = ''
    ssh: Optional[SSHSettings] = None

    @classmethod
    def from_env(cls, environ=None) -> 'DatabaseSettings':
        environ = os.environ if environ is None else environ
        values = {key: environ.get(var, default) for key, (var, default) in ENV_DEFAULTS.items()}
        return cls.from_dict(values)

    @classmethod
    def from_dict(cls, config: Dict[str, Any], base: Optional['DatabaseSettings'] = None) -> 'DatabaseSettings':
        """Build settings from a config file section, on top of ``base``.

        Accepts ``user`` or ``username`` and an optional ``ssh`` section.
        """
        base = base or cls()
        ssh = base.ssh
        ssh_config = config.get('ssh')
        if ssh_config:
            if not ssh_config.get('host'):
                raise ConfigurationError("SSH section requires a 'host'")
            ssh = SSHSettings(
                host=ssh_config['host'],
                port=int(ssh_config.get('port') or 22),
                username=ssh_config.get('username'),
                private_key_path=ssh_config.get('private_key_path'),
            )

        try:
            port = int(config.get('port') or base.port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid database port: {config.get('port')!r}") from None

        return cls(
            host=config.get('host') or base.host,
            port=port,
            database=config.get('database') or base.database,
            user=config.get('user') or config.get('username') or base.user,
            password=config.get('password', base.password) or '',
            ssh=ssh,
        )

    def with_overrides(self, **overrides) -> 'DatabaseSettings':
        """Return a copy with every non-empty override applied"""
        return replace(self, **{k: v for k, v in overrides.items() if v not in (None, '')})

    def describe(self) -> str:
        via = f" via SSH {self.ssh.host}" if self.ssh else ''
        return f"{self.user}@{self.host}:{self.port}/{self.database}{via}"


@dataclass(frozen=True)
class TableFilter:
    """Inclusion or exclusion list; both empty means all tables"""
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()

    def __post_init__(self):
        conflicting = sorted(set(self.include) & set(self.exclude))
        if conflicting:
            raise ConfigurationError(
                f"Tables both included and excluded: {', '.join(conflicting)}"
            )

    @property
    def is_all(self) -> bool:
        return not self.include and not self.exclude

    def names(self) -> Tuple[str, ...]:
        return self.include + self.exclude


@dataclass(frozen=True)
class ExtractionConfig:
    tenant_id: int
    table_filter: TableFilter = field(default_factory=TableFilter)
    include_optional_tables: bool = True
    remap_tenant_id: Optional[int] = None
    dry_run: bool = False

    def __post_init__(self):
        if isinstance(self.tenant_id, bool) or not isinstance(self.tenant_id, int) or self.tenant_id <= 0:
            raise ConfigurationError(f"Tenant id must be a positive integer, got {self.tenant_id!r}")
        if self.remap_tenant_id is not None and (
                isinstance(self.remap_tenant_id, bool)
                or not isinstance(self.remap_tenant_id, int)
                or self.remap_tenant_id <= 0):
            raise ConfigurationError(
                f"Remap tenant id must be a positive integer, got {self.remap_tenant_id!r}"
            )


@dataclass(frozen=True)
class ImportConfig:
    input_path: str
    backup_before_import: bool = True
    backup_dir: str = '.'
    dry_run: bool = False


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from JSON file"""
    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        logger.error(f"Config file not found: {config_path}")
        raise ConfigurationError(f"Config file not found: {config_path}") from None
    except json.JSONDecodeError as err:
        logger.error(f"Invalid JSON in config file: {err}")
        raise ConfigurationError(f"Invalid JSON in config file {config_path}: {err}") from None


def create_sample_config() -> Dict[str, Any]:
    """Print sample configuration"""
    sample = {
        "source": {
            "host": "source-db.example.com",
            "port": 5432,
            "user": "chatwoot",
            "password": "password",
            "database": "chatwoot_production",
            "ssh": {
                "host": "source-server.example.com",
                "port": 22,
                "username": "ssh_user",
                "private_key_path": "~/.ssh/id_rsa"
            }
        },
        "target": {
            "host": "target-db.example.com",
            "port": 5432,
            "user": "chatwoot",
            "password": "password",
            "database": "chatwoot_production"
        }
    }

    print(json.dumps(sample, indent=2))
    return sample
