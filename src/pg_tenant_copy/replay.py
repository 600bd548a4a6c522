"""
Replay engine: applies a previously exported artifact to a target database.

The artifact carries its own ``BEGIN``/``COMMIT``; the engine executes it
as one batch on an autocommit connection and adds no transaction of its
own. On failure it rolls the open transaction back, so no rows persist.
"""

import gzip
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

import psycopg

from .config import DatabaseSettings, ImportConfig
from .database import PgDumpTool
from .errors import ArtifactIncomplete, ArtifactMissing, BackupFailure, QueryFailure

logger = logging.getLogger(__name__)

_TABLE_MARKER = re.compile(r'^-- Data for table: (\S+)$')
_TENANT_MARKER = re.compile(r'^-- Tenant ID: (\d+)$')
_REMAP_MARKER = re.compile(r'^-- Remapped tenant ID: (\d+)$')


@dataclass
class ArtifactSummary:
    tenant_id: Optional[int] = None
    remap_tenant_id: Optional[int] = None
    statements: Dict[str, int] = field(default_factory=dict)
    has_envelope: bool = False

    @property
    def total_statements(self) -> int:
        return sum(self.statements.values())


@dataclass
class ReplayResult:
    input_path: str
    summary: ArtifactSummary
    backup_file: Optional[str] = None
    applied: bool = False
    dry_run: bool = False


def read_artifact(path: str) -> str:
    """Read a plain or gzip-compressed artifact"""
    if not os.path.isfile(path):
        raise ArtifactMissing(path)
    if path.endswith('.gz'):
        with gzip.open(path, 'rt', encoding='utf-8') as f:
            return f.read()
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def summarize_artifact(text: str) -> ArtifactSummary:
    """Count INSERT statements per table from the artifact's table markers"""
    summary = ArtifactSummary()
    current = None
    opened = closed = False
    for line in text.splitlines():
        if line == 'BEGIN;':
            opened = True
        elif line == 'COMMIT;':
            closed = opened
        elif line.startswith('INSERT INTO ') and current:
            summary.statements[current] += 1
        elif line.startswith('--'):
            match = _TABLE_MARKER.match(line)
            if match:
                current = match.group(1)
                summary.statements.setdefault(current, 0)
                continue
            match = _TENANT_MARKER.match(line)
            if match:
                summary.tenant_id = int(match.group(1))
                continue
            match = _REMAP_MARKER.match(line)
            if match:
                summary.remap_tenant_id = int(match.group(1))
    summary.has_envelope = opened and closed
    return summary


class ReplayEngine:
    """Apply artifacts to a target database"""

    def __init__(self, target: DatabaseSettings, backup_tool=PgDumpTool):
        self.target = target
        self.backup_tool = backup_tool

    def backup(self, config: ImportConfig) -> str:
        """Take the safety dump of the target; raises BackupFailure"""
        if not self.backup_tool.check_pg_tools():
            raise BackupFailure("pg_dump is not available; refusing to import without a backup")
        os.makedirs(config.backup_dir, exist_ok=True)
        backup_file = self.backup_tool.backup_filename(config.backup_dir)
        logger.info(f"Creating backup: {backup_file}")
        return self.backup_tool.dump_database(self.target, backup_file)

    def replay(self, config: ImportConfig, conn=None) -> ReplayResult:
        """Apply the artifact at ``config.input_path`` through ``conn``.

        ``conn`` must be in autocommit mode. Dry runs only read and
        summarize the artifact; ``conn`` may be None for them. An artifact
        without its BEGIN/COMMIT envelope is rejected before the backup
        and before any statement runs.
        """
        text = read_artifact(config.input_path)
        summary = summarize_artifact(text)
        result = ReplayResult(input_path=config.input_path, summary=summary, dry_run=config.dry_run)

        if config.dry_run:
            return result
        if not summary.has_envelope:
            raise ArtifactIncomplete(config.input_path)

        if config.backup_before_import:
            result.backup_file = self.backup(config)

        logger.info(f"Applying {summary.total_statements} statements "
                    f"for {len(summary.statements)} tables")
        try:
            conn.execute(text)
        except psycopg.Error as err:
            self._rollback(conn)
            raise QueryFailure(f"Import failed, no rows were applied: {str(err).strip()}") from err

        result.applied = True
        return result

    @staticmethod
    def _rollback(conn):
        try:
            conn.execute("ROLLBACK")
        except psycopg.Error as err:
            logger.warning(f"Rollback after failed import failed: {err}")
