"""
Shared fixtures.

The engines are exercised against in-memory SQLite databases wrapped in a
small adapter that speaks the subset of the psycopg connection API they use:
``execute`` with ``%s`` placeholders, named cursors, ``rollback`` and the
``information_schema.tables`` lookup.
"""

import sqlite3
import sys
from pathlib import Path

import psycopg
import pytest

# Add the src directory to the path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

SCHEMA = """
CREATE TABLE accounts (id INTEGER PRIMARY KEY, name TEXT, domain TEXT, status TEXT, created_at TEXT);
CREATE TABLE account_users (id INTEGER PRIMARY KEY, account_id INTEGER, user_id INTEGER, role TEXT);
CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email TEXT);
CREATE TABLE inboxes (id INTEGER PRIMARY KEY, account_id INTEGER, channel_id INTEGER, name TEXT);
CREATE TABLE channels (id INTEGER PRIMARY KEY, name TEXT);
CREATE TABLE contacts (id INTEGER PRIMARY KEY, account_id INTEGER, name TEXT, email TEXT);
CREATE TABLE contact_inboxes (id INTEGER PRIMARY KEY, contact_id INTEGER, inbox_id INTEGER, source_id TEXT);
CREATE TABLE conversations (id INTEGER PRIMARY KEY, account_id INTEGER, inbox_id INTEGER, contact_id INTEGER, status TEXT);
CREATE TABLE messages (id INTEGER PRIMARY KEY, account_id INTEGER, conversation_id INTEGER, content TEXT, rating REAL);
CREATE TABLE attachments (id INTEGER PRIMARY KEY, account_id INTEGER, message_id INTEGER, file_type TEXT);
CREATE TABLE labels (id INTEGER PRIMARY KEY, account_id INTEGER, title TEXT, show_on_sidebar INTEGER);
CREATE TABLE custom_roles (id INTEGER PRIMARY KEY, account_id INTEGER, name TEXT);
"""

DATA = """
INSERT INTO accounts VALUES (1, 'Acme', 'acme.example.com', 'active', '2024-01-01');
INSERT INTO accounts VALUES (2, 'Globex', NULL, 'active', '2024-02-01');

INSERT INTO users VALUES (1, 'Alice', 'alice@acme.example.com');
INSERT INTO users VALUES (2, 'Bob', 'bob@globex.example.com');
INSERT INTO users VALUES (3, 'Carol', 'carol@example.com');
INSERT INTO account_users VALUES (1, 1, 1, 'administrator');
INSERT INTO account_users VALUES (2, 2, 2, 'administrator');
INSERT INTO account_users VALUES (3, 1, 3, 'agent');
INSERT INTO account_users VALUES (4, 2, 3, 'agent');

INSERT INTO channels VALUES (1, 'acme web widget');
INSERT INTO channels VALUES (2, 'globex email');
INSERT INTO inboxes VALUES (1, 1, 1, 'Website');
INSERT INTO inboxes VALUES (2, 2, 2, 'Support');

INSERT INTO contacts VALUES (1, 1, 'Pat O''Brien', 'pat@customer.example.com');
INSERT INTO contacts VALUES (2, 2, 'Sam', NULL);
INSERT INTO contact_inboxes VALUES (1, 1, 1, 'src-1');
INSERT INTO contact_inboxes VALUES (2, 2, 2, 'src-2');

INSERT INTO conversations VALUES (1, 1, 1, 1, 'open');
INSERT INTO conversations VALUES (2, 2, 2, 2, 'resolved');
INSERT INTO messages VALUES (1, 1, 1, 'Hello, it''s Pat', 4.5);
INSERT INTO messages VALUES (2, 1, 1, 'path C:\\temp\\new
second line', NULL);
INSERT INTO messages VALUES (3, 2, 2, 'Globex only', 3.0);
INSERT INTO attachments VALUES (1, 1, 1, 'image');
INSERT INTO attachments VALUES (2, 2, 3, 'file');

INSERT INTO labels VALUES (1, 1, 'vip', 1);
INSERT INTO custom_roles VALUES (1, 1, 'supervisor');
INSERT INTO custom_roles VALUES (2, 2, 'auditor');
"""


class SQLiteCursor:
    """Named-cursor stand-in: iterable, with ``description`` and ``itersize``"""

    def __init__(self, conn):
        self._conn = conn
        self._cursor = None
        self.itersize = 100

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self._cursor = self._conn.execute(query, params)
        return self

    @property
    def description(self):
        return self._cursor.description

    def __iter__(self):
        return iter(self._cursor)


class SQLiteConnection:
    """Adapter giving a sqlite3 connection the psycopg calls the engines make"""

    def __init__(self, schema=SCHEMA, data=None):
        self.raw = sqlite3.connect(':memory:', isolation_level=None)
        self.raw.executescript(schema)
        if data:
            self.raw.executescript(data)
        self.queries = []
        self.cursor_names = []

    def execute(self, query, params=None):
        self.queries.append(query)
        if query.startswith("SELECT 1 FROM information_schema.tables"):
            query = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = %s"
        try:
            if params is None and query.count(';') > 1:
                script = "\n".join(
                    line for line in query.splitlines()
                    if not line.startswith('SET session_replication_role')
                )
                self.raw.executescript(script)
                return self.raw.cursor()
            return self.raw.execute(query.replace('%s', '?'), params or ())
        except sqlite3.Error as err:
            raise psycopg.DatabaseError(str(err)) from err

    def cursor(self, name=None):
        self.cursor_names.append(name)
        return SQLiteCursor(self)

    def rollback(self):
        if self.raw.in_transaction:
            self.raw.execute("ROLLBACK")

    def rows(self, table):
        return self.raw.execute(f"SELECT * FROM {table} ORDER BY id").fetchall()

    def close(self):
        self.raw.close()


@pytest.fixture
def source_db():
    conn = SQLiteConnection(data=DATA)
    yield conn
    conn.close()


@pytest.fixture
def empty_db():
    conn = SQLiteConnection()
    yield conn
    conn.close()
