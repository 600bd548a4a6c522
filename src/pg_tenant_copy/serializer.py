"""
Row serializer: turns one result row into a replayable INSERT statement.

All escaping for the artifact lives here. Text literals are single-quoted
with embedded quotes doubled; backslashes and newlines are written as-is,
which is correct while ``standard_conforming_strings`` is on (the
PostgreSQL default).
"""

import datetime
import decimal
import json
import math
import re
import uuid
from typing import Any, Optional, Sequence

from .errors import SerializationError
from .registry import TENANT_COLUMN

_PLAIN_IDENTIFIER = re.compile(r'^[a-z_][a-z0-9_$]*$')

# Reserved words that cannot appear unquoted as a table or column name
RESERVED_WORDS = frozenset([
    'all', 'analyse', 'analyze', 'and', 'any', 'array', 'as', 'asc', 'asymmetric',
    'both', 'case', 'cast', 'check', 'collate', 'column', 'constraint', 'create',
    'current_catalog', 'current_date', 'current_role', 'current_time',
    'current_timestamp', 'current_user', 'default', 'deferrable', 'desc',
    'distinct', 'do', 'else', 'end', 'except', 'false', 'fetch', 'for', 'foreign',
    'from', 'grant', 'group', 'having', 'in', 'initially', 'intersect', 'into',
    'lateral', 'leading', 'limit', 'localtime', 'localtimestamp', 'not', 'null',
    'offset', 'on', 'only', 'or', 'order', 'placing', 'primary', 'references',
    'returning', 'select', 'session_user', 'some', 'symmetric', 'table', 'then',
    'to', 'trailing', 'true', 'union', 'unique', 'user', 'using', 'variadic',
    'when', 'where', 'window', 'with',
])


def quote_identifier(name: str) -> str:
    """Return ``name`` bare when it is a plain identifier, double-quoted otherwise"""
    if _PLAIN_IDENTIFIER.match(name) and name not in RESERVED_WORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_text(text: str) -> str:
    if '\x00' in text:
        raise SerializationError("Text value contains a NUL byte, which PostgreSQL cannot store")
    return "'" + text.replace("'", "''") + "'"


def _number(value) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "'NaN'"
        return "'Infinity'" if value > 0 else "'-Infinity'"
    if isinstance(value, decimal.Decimal) and not value.is_finite():
        if value.is_nan():
            return "'NaN'"
        return "'Infinity'" if value > 0 else "'-Infinity'"
    return str(value)


def _array_element(value) -> str:
    if value is None:
        return 'NULL'
    if isinstance(value, (list, tuple)):
        return _array_literal(value)
    text = _as_text(value)
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _array_literal(values) -> str:
    return '{' + ','.join(_array_element(v) for v in values) + '}'


def _as_text(value) -> str:
    """Text form of a non-NULL value, as PostgreSQL accepts it for input"""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return f"{value.total_seconds()} seconds"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return '\\x' + bytes(value).hex()
    if isinstance(value, dict):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return _array_literal(value)
    return str(value)


def quote_value(value: Any) -> str:
    """Render a single value as a SQL literal"""
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, (int, float, decimal.Decimal)):
        return _number(value)
    if isinstance(value, uuid.UUID):
        return f"'{value}'"
    return quote_text(_as_text(value))


def serialize_row(table: str, columns: Sequence[str], values: Sequence[Any],
                  remap_tenant_id: Optional[int] = None,
                  tenant_column: str = TENANT_COLUMN) -> str:
    """Build the INSERT statement for one row.

    When ``remap_tenant_id`` is given and the row has ``tenant_column``, that
    column's value is replaced. Primary keys and every other column are
    written unchanged.
    """
    if len(columns) != len(values):
        raise SerializationError(
            f"Row has {len(values)} values for {len(columns)} columns", table=table
        )

    values = list(values)
    if remap_tenant_id is not None and tenant_column in columns:
        values[list(columns).index(tenant_column)] = remap_tenant_id

    try:
        rendered = [quote_value(v) for v in values]
    except SerializationError as err:
        raise SerializationError(str(err), table=table) from err

    column_list = ', '.join(quote_identifier(c) for c in columns)
    return f"INSERT INTO {quote_identifier(table)} ({column_list}) VALUES ({', '.join(rendered)});"
