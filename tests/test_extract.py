"""
Tests for the extraction engine, run against an in-memory SQLite source.
"""

import io
import re
from datetime import datetime, timezone

import pytest

from pg_tenant_copy.config import ExtractionConfig, TableFilter
from pg_tenant_copy.errors import ConfigurationError, QueryFailure, TenantNotFound
from pg_tenant_copy.extract import GENERATOR, ExtractionEngine

FIXED_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def export(conn, **options):
    config = ExtractionConfig(**options)
    sink = io.StringIO()
    result = ExtractionEngine().extract(config, conn, sink, generated_at=FIXED_TIME)
    return result, sink.getvalue()


def inserts_for(artifact, table):
    prefix = f"INSERT INTO {table} ("
    return [line for line in artifact.splitlines() if line.startswith(prefix)]


def test_artifact_envelope(source_db):
    _, artifact = export(source_db, tenant_id=1)
    lines = artifact.splitlines()
    assert lines[:5] == [
        "-- Tenant data export",
        "-- Tenant ID: 1",
        f"-- Date: {FIXED_TIME.isoformat()}",
        f"-- Generated by: {GENERATOR}",
        "",
    ]
    assert lines[5:7] == ["SET session_replication_role = replica;", "BEGIN;"]
    assert lines[-3:] == ["COMMIT;", "SET session_replication_role = DEFAULT;", "-- End of export"]


def test_table_sections_have_counts(source_db):
    _, artifact = export(source_db, tenant_id=1)
    assert "-- Data for table: messages\n-- Rows: 2\n" in artifact
    assert "-- Data for table: contacts\n-- Rows: 1\n" in artifact


def test_row_set_isolation(source_db):
    result, artifact = export(source_db, tenant_id=1)

    assert result.row_counts['accounts'] == 1
    assert result.row_counts['account_users'] == 2
    assert result.row_counts['users'] == 2
    assert result.row_counts['channels'] == 1
    assert result.row_counts['contact_inboxes'] == 1
    assert result.row_counts['attachments'] == 1
    assert result.row_counts['custom_roles'] == 1

    assert "Globex" not in artifact
    assert "Bob" not in artifact
    assert "globex email" not in artifact
    for line in artifact.splitlines():
        match = re.search(r"\(id, account_id, .*\) VALUES \(\d+, (\d+),", line)
        if match:
            assert match.group(1) == '1'


def test_derived_tables_follow_their_parents(source_db):
    _, artifact = export(source_db, tenant_id=2)
    assert inserts_for(artifact, 'users') == [
        "INSERT INTO users (id, name, email) VALUES (2, 'Bob', 'bob@globex.example.com');",
        "INSERT INTO users (id, name, email) VALUES (3, 'Carol', 'carol@example.com');",
    ]
    assert inserts_for(artifact, 'attachments') == [
        "INSERT INTO attachments (id, account_id, message_id, file_type) VALUES (2, 2, 3, 'file');",
    ]


def test_missing_tables_are_skipped(source_db):
    result, artifact = export(source_db, tenant_id=1)
    assert 'teams' in result.skipped_tables
    assert 'sla_policies' in result.skipped_tables
    assert 'teams' not in result.row_counts
    assert "-- Data for table: teams" not in artifact


def test_empty_tables_emit_no_section(source_db):
    result, artifact = export(source_db, tenant_id=2)
    assert result.row_counts['labels'] == 0
    assert "-- Data for table: labels" not in artifact


def test_escaping_survives_extraction(source_db):
    _, artifact = export(source_db, tenant_id=1)
    assert "'Pat O''Brien'" in artifact
    assert "'Hello, it''s Pat'" in artifact
    assert "'path C:\\temp\\new\nsecond line'" in artifact


def test_remap_rewrites_tenant_column_only(source_db):
    _, plain = export(source_db, tenant_id=1)
    _, remapped = export(source_db, tenant_id=1, remap_tenant_id=99)

    assert "-- Remapped tenant ID: 99" in remapped
    assert inserts_for(remapped, 'inboxes') == [
        "INSERT INTO inboxes (id, account_id, channel_id, name) VALUES (1, 99, 1, 'Website');",
    ]
    # the tenant row itself keeps its primary key
    assert inserts_for(remapped, 'accounts') == inserts_for(plain, 'accounts')
    assert inserts_for(remapped, 'users') == inserts_for(plain, 'users')
    for line in inserts_for(remapped, 'messages'):
        assert re.match(r"INSERT INTO messages \(id, account_id, .*\) VALUES \(\d+, 99, ", line)


def test_inclusion_list_touches_only_those_tables(source_db):
    result, artifact = export(
        source_db, tenant_id=1, include_optional_tables=True,
        table_filter=TableFilter(include=('inboxes', 'custom_roles')),
    )
    assert list(result.row_counts) == ['inboxes', 'custom_roles']
    assert result.skipped_tables == []
    sections = re.findall(r"^-- Data for table: (\S+)$", artifact, re.MULTILINE)
    assert sections == ['inboxes', 'custom_roles']
    assert source_db.cursor_names == ['export_inboxes', 'export_custom_roles']


def test_exclusion_list(source_db):
    result, _ = export(source_db, tenant_id=1, table_filter=TableFilter(exclude=('messages',)))
    assert 'messages' not in result.row_counts
    assert 'attachments' in result.row_counts


def test_optional_tables_can_be_disabled(source_db):
    result, _ = export(source_db, tenant_id=1, include_optional_tables=False)
    assert 'custom_roles' not in result.row_counts
    assert 'custom_roles' not in result.skipped_tables


def test_included_optional_table_ignored_when_disabled():
    config = ExtractionConfig(tenant_id=1, include_optional_tables=False,
                              table_filter=TableFilter(include=('inboxes', 'custom_roles')))
    plan = ExtractionEngine().plan(config)
    assert plan.tables == ['inboxes']
    assert plan.ignored == ['custom_roles']


def test_unknown_table_in_filter_is_rejected():
    config = ExtractionConfig(tenant_id=1, table_filter=TableFilter(include=('nope',)))
    with pytest.raises(ConfigurationError):
        ExtractionEngine().plan(config)


def test_unknown_tenant_fails_before_writing(source_db):
    sink = io.StringIO()
    with pytest.raises(TenantNotFound):
        ExtractionEngine().extract(ExtractionConfig(tenant_id=404), source_db, sink)
    assert sink.getvalue() == ""


def test_dry_run_touches_nothing():
    conn = object()
    sink = io.StringIO()
    result = ExtractionEngine().extract(ExtractionConfig(tenant_id=1, dry_run=True), conn, sink)
    assert result.dry_run
    assert result.row_counts == {}
    assert sink.getvalue() == ""


def test_dry_run_plan_summary():
    config = ExtractionConfig(tenant_id=1, remap_tenant_id=5, dry_run=True,
                              table_filter=TableFilter(exclude=('messages',)))
    lines = ExtractionEngine().plan(config).summary_lines()
    assert "  - accounts" in lines
    assert "  - messages" not in lines
    assert "  - Remap tenant ID to: 5" in lines
    assert "  - Excluded tables: messages" in lines


def test_query_failure_names_the_table(source_db):
    source_db.raw.execute("DROP TABLE messages")
    source_db.raw.execute("CREATE TABLE messages (id INTEGER PRIMARY KEY, content TEXT)")
    with pytest.raises(QueryFailure) as excinfo:
        export(source_db, tenant_id=1)
    assert excinfo.value.table == 'messages'


def test_extraction_is_reproducible(source_db):
    _, first = export(source_db, tenant_id=1)
    _, second = export(source_db, tenant_id=1)
    assert first == second


def test_rows_are_written_in_key_order(source_db):
    source_db.raw.executescript("""
        DROP TABLE labels;
        CREATE TABLE labels (id INTEGER, account_id INTEGER, title TEXT, show_on_sidebar INTEGER);
        INSERT INTO labels VALUES (3, 1, 'late', 0);
        INSERT INTO labels VALUES (1, 1, 'early', 1);
    """)
    _, artifact = export(source_db, tenant_id=1, table_filter=TableFilter(include=('labels',)))
    assert inserts_for(artifact, 'labels') == [
        "INSERT INTO labels (id, account_id, title, show_on_sidebar) VALUES (1, 1, 'early', 1);",
        "INSERT INTO labels (id, account_id, title, show_on_sidebar) VALUES (3, 1, 'late', 0);",
    ]
