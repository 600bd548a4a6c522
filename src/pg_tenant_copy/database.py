"""
Database access: connections (psycopg), SSH tunnels, schema lookups and
the pg_dump safety backup.
"""

import logging
import os
import socket
import subprocess
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List

import psycopg
from psycopg.types.string import TextLoader

from .config import DatabaseSettings, SSHSettings
from .errors import BackupFailure, QueryFailure

logger = logging.getLogger(__name__)

TUNNEL_STARTUP_SECONDS = 1


def free_local_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


class SSHTunnel:
    """``ssh -N -L`` forward from a local port to a database host behind ``ssh.host``"""

    def __init__(self, ssh: SSHSettings, db_host: str, db_port: int):
        self.ssh = ssh
        self.db_host = db_host
        self.db_port = db_port
        self.process = None

    def command(self, local_port: int) -> List[str]:
        remote = f"{self.ssh.username}@{self.ssh.host}" if self.ssh.username else self.ssh.host
        cmd = ['ssh', '-N', '-L', f'{local_port}:{self.db_host}:{self.db_port}',
               '-p', str(self.ssh.port or 22)]
        if self.ssh.private_key_path:
            cmd.extend(['-i', os.path.expanduser(self.ssh.private_key_path)])
        cmd.append(remote)
        return cmd

    def open(self) -> int:
        """Start the forward and return the local port; raises QueryFailure"""
        local_port = free_local_port()
        logger.info(f"Opening SSH tunnel via {self.ssh.host}: "
                    f"localhost:{local_port} -> {self.db_host}:{self.db_port}")
        try:
            self.process = subprocess.Popen(self.command(local_port), stdout=subprocess.DEVNULL,
                                            stderr=subprocess.PIPE, stdin=subprocess.DEVNULL)
        except FileNotFoundError:
            raise QueryFailure("ssh command not found. Please install OpenSSH client.") from None

        time.sleep(TUNNEL_STARTUP_SECONDS)
        if self.process.poll() is not None:
            stderr = self.process.stderr.read().decode('utf-8', errors='ignore').strip()
            raise QueryFailure(f"SSH tunnel via {self.ssh.host} failed: {stderr}")
        return local_port

    def close(self):
        if not self.process:
            return
        self.process.terminate()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self.process.kill()
            logger.warning("SSH tunnel forcefully terminated")


@contextmanager
def reachable(settings: DatabaseSettings) -> Iterator[DatabaseSettings]:
    """Yield settings pointing at the database, through an SSH tunnel if configured"""
    if not settings.ssh:
        yield settings
        return

    tunnel = SSHTunnel(settings.ssh, settings.host, settings.port)
    try:
        local_port = tunnel.open()
        yield settings.with_overrides(host='127.0.0.1', port=local_port)
    finally:
        tunnel.close()


@contextmanager
def connect(settings: DatabaseSettings, read_only: bool = False,
            autocommit: bool = False) -> Iterator[psycopg.Connection]:
    """Open one connection for one top-level command, closing it on exit.

    Read-only connections run in a single REPEATABLE READ transaction so
    that every query of an export sees the same snapshot. JSON and interval
    columns are fetched as text so they are written back verbatim.
    """
    with reachable(settings) as target:
        logger.debug(f"Connecting to {target.describe()}")
        try:
            conn = psycopg.connect(
                host=target.host,
                port=target.port,
                dbname=target.database,
                user=target.user,
                password=target.password or None,
                autocommit=autocommit,
            )
        except psycopg.Error as err:
            raise QueryFailure(f"Could not connect to {settings.describe()}: {err}") from err

        try:
            conn.adapters.register_loader('json', TextLoader)
            conn.adapters.register_loader('jsonb', TextLoader)
            conn.adapters.register_loader('interval', TextLoader)
            if read_only:
                conn.isolation_level = psycopg.IsolationLevel.REPEATABLE_READ
                conn.read_only = True
            yield conn
        finally:
            conn.close()


def table_exists(conn, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM information_schema.tables WHERE table_name = %s",
        (table,)
    ).fetchone()
    return row is not None


def count_rows(conn, query: str) -> int:
    row = conn.execute(query).fetchone()
    return int(row[0]) if row else 0


class PgDumpTool:
    """Handle pg_dump safety backups"""

    @staticmethod
    def check_pg_tools() -> bool:
        """Check if pg_dump is available"""
        try:
            subprocess.run(['pg_dump', '--version'], capture_output=True, timeout=5)
        except (FileNotFoundError, subprocess.TimeoutExpired):
            logger.error("Missing required tool: pg_dump")
            logger.error("Please install PostgreSQL client tools: apt-get install postgresql-client")
            return False
        return True

    @staticmethod
    def backup_filename(backup_dir: str) -> str:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        return os.path.join(backup_dir, f"backup_before_import_{timestamp}.sql")

    @staticmethod
    def build_command(settings: DatabaseSettings, output_file: str):
        return [
            'pg_dump',
            '-h', settings.host,
            '-p', str(settings.port),
            '-U', settings.user,
            '-d', settings.database,
            '-f', output_file,
            '--clean',
            '--if-exists',
        ]

    @staticmethod
    def dump_database(settings: DatabaseSettings, output_file: str) -> str:
        """Take a full logical dump of the database into ``output_file``.

        Raises BackupFailure if pg_dump is missing, fails, or writes nothing.
        """
        logger.info(f"Dumping database '{settings.database}' from {settings.host}:{settings.port}")
        env = dict(os.environ)
        if settings.password:
            env['PGPASSWORD'] = settings.password

        with reachable(settings) as target:
            cmd = PgDumpTool.build_command(target, output_file)
            logger.debug(f"Executing pg_dump command: {' '.join(cmd)}")
            try:
                process = subprocess.run(cmd, capture_output=True, env=env, stdin=subprocess.DEVNULL)
            except FileNotFoundError:
                raise BackupFailure(
                    "pg_dump command not found. Install with: apt-get install postgresql-client"
                ) from None

        if process.returncode != 0:
            error_msg = process.stderr.decode('utf-8', errors='ignore')
            logger.error(f"pg_dump error: {error_msg}")
            raise BackupFailure(f"pg_dump exited with status {process.returncode}: {error_msg.strip()}")

        if not os.path.exists(output_file) or os.path.getsize(output_file) == 0:
            raise BackupFailure(f"Backup file {output_file} is empty")

        logger.info(f"Database dump completed. File size: {os.path.getsize(output_file):,} bytes")
        return output_file
