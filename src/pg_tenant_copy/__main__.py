#!/usr/bin/env python3
"""
Entry point for the pg-tenant-copy CLI command.
This allows the package to be run as: python -m pg_tenant_copy
"""

import sys

from .cli import main

if __name__ == '__main__':
    sys.exit(main())
