"""
Moving artifacts around: gzip compression and scp transfer to the
server that will run the import.
"""

import gzip
import logging
import os
import shutil
import subprocess
from typing import List

from .errors import TransferFailure

logger = logging.getLogger(__name__)

REMOTE_DIR = '/tmp/'


def compress_file(path: str) -> str:
    """Gzip ``path`` to ``path.gz`` and remove the original, like ``gzip FILE``"""
    compressed = f"{path}.gz"
    logger.info("Compressing artifact...")
    with open(path, 'rb') as src, gzip.open(compressed, 'wb') as dst:
        shutil.copyfileobj(src, dst)
    os.remove(path)
    logger.info(f"Compressed artifact: {compressed} ({os.path.getsize(compressed):,} bytes)")
    return compressed


def build_scp_command(path: str, target_server: str, remote_dir: str = REMOTE_DIR) -> List[str]:
    return ['scp', path, f"{target_server}:{remote_dir}"]


def copy_to_server(path: str, target_server: str, remote_dir: str = REMOTE_DIR) -> str:
    """Copy an artifact to ``user@host:remote_dir`` and return the remote path"""
    cmd = build_scp_command(path, target_server, remote_dir)
    logger.info(f"Transferring artifact to {target_server}...")
    logger.debug(f"Executing: {' '.join(cmd)}")
    try:
        process = subprocess.run(cmd, capture_output=True, stdin=subprocess.DEVNULL)
    except FileNotFoundError:
        raise TransferFailure("scp command not found. Please install OpenSSH client.") from None

    if process.returncode != 0:
        error_msg = process.stderr.decode('utf-8', errors='ignore').strip()
        raise TransferFailure(f"scp to {target_server} failed: {error_msg}")

    remote_path = os.path.join(remote_dir, os.path.basename(path))
    logger.info(f"Artifact transferred: {target_server}:{remote_path}")
    return remote_path


def import_instructions(remote_path: str, target_server: str, tenant_ref: str) -> List[str]:
    """Commands the operator runs on the target server to finish the move"""
    return [
        "# Connect to the target server:",
        f"ssh {target_server}",
        "",
        "# Import the artifact:",
        f"pg-tenant-copy import --input {remote_path}",
        "",
        "# Validate after importing:",
        f"pg-tenant-copy validate {tenant_ref}",
    ]
