#!/usr/bin/env python3
"""
Setup script for pg-tenant-copy package.
"""

import os
from setuptools import setup, find_packages

# Read README for long description
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name="pg-tenant-copy",
    version="1.0.0",
    description="PostgreSQL Tenant Copy Tool - Move one tenant's rows between databases through a replayable SQL file",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Utilities"
    ],
    python_requires=">=3.8",
    install_requires=[
        "psycopg[binary]>=3.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        'console_scripts': [
            'pg-tenant-copy=pg_tenant_copy.cli:main',
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
