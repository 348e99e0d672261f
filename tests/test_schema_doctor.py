# tests/test_schema_doctor.py
"""Tests for schema diagnostics and the nodes table repair."""
import base64
from pathlib import Path

import pytest

from unfold_store.exceptions import ErrorCode, SchemaError, ValidationError
from unfold_store.models.db_models import init_db
from unfold_store.models.schema import DEFAULT_SPACE_ID, Node
from unfold_store.storage.schema_doctor import NODE_COLUMNS, SchemaDoctor
from unfold_store.storage.tree_repository import TreeRepository

LEGACY_NODES_DDL = """
    CREATE TABLE nodes (
        id TEXT PRIMARY KEY NOT NULL,
        space_id TEXT NOT NULL,
        parent_id TEXT,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        content TEXT,
        is_open INTEGER NOT NULL DEFAULT 0,
        {extra}
        sort_order INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (space_id) REFERENCES spaces(id) ON DELETE CASCADE,
        FOREIGN KEY (parent_id) REFERENCES nodes(id) ON DELETE CASCADE
    )
"""

LEGACY_ROWS = [
    # id, parent_id, name, type, content, sort_order
    ("root", None, "Root", "folder", None, 0),
    ("child", "root", "Child", "note", "child body", 0),
    ("grandchild", "child", "Grandchild", "note", "deep", 0),
    ("other", None, "Other", "note", "other body", 1),
]


def _build_legacy_store(raw_engine, with_pinned=True, dangling=False):
    """Create a store whose nodes table predates the ledger and still has 'type'."""
    extra = "is_pinned INTEGER NOT NULL DEFAULT 0," if with_pinned else ""
    with raw_engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE spaces (id TEXT PRIMARY KEY NOT NULL, "
            "name TEXT NOT NULL, sort_order INTEGER NOT NULL DEFAULT 0)"
        )
        conn.exec_driver_sql(
            "INSERT INTO spaces (id, name, sort_order) VALUES (?, 'mine', 0)",
            (DEFAULT_SPACE_ID,),
        )
        conn.exec_driver_sql(LEGACY_NODES_DDL.format(extra=extra))
        rows = list(LEGACY_ROWS)
        if dangling:
            rows.append(("orphan", "missing-parent", "Orphan", "note", None, 0))
        for node_id, parent_id, name, node_type, content, sort_order in rows:
            conn.exec_driver_sql(
                "INSERT INTO nodes (id, space_id, parent_id, name, type, content, sort_order) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (node_id, DEFAULT_SPACE_ID, parent_id, name, node_type, content, sort_order),
            )


def _columns(engine, table="nodes"):
    with engine.connect() as conn:
        rows = conn.exec_driver_sql(f"PRAGMA table_info({table})").fetchall()
    return [row[1] for row in rows]


def _node_rows(engine):
    with engine.connect() as conn:
        rows = conn.exec_driver_sql(
            "SELECT id, parent_id, name, content, sort_order, created_at "
            "FROM nodes ORDER BY id"
        ).fetchall()
    return [tuple(row) for row in rows]


def _nodes_schema(engine):
    with engine.connect() as conn:
        rows = conn.exec_driver_sql(
            "SELECT type, name, sql FROM sqlite_master "
            "WHERE tbl_name = 'nodes' ORDER BY type, name"
        ).fetchall()
    return [tuple(row) for row in rows]


@pytest.fixture
def legacy_engine(database_path, raw_engine):
    """A migrated store whose nodes table still carries the obsolete column."""
    _build_legacy_store(raw_engine)
    engine = init_db(database_path)
    yield engine
    engine.dispose()


@pytest.fixture
def legacy_doctor(legacy_engine, images_dir):
    return SchemaDoctor(legacy_engine, images_dir=images_dir)


class TestInspectTable:
    """Tests for comparing live tables with expected columns."""

    def test_existing_table(self, schema_doctor):
        report = schema_doctor.inspect_table(
            "images", required=("file_path", "nope"), obsolete=("type",)
        )
        assert report.exists
        assert "file_path" in report.columns
        assert report.missing == ["nope"]
        assert report.obsolete == []
        assert not report.ok

    def test_missing_table(self, schema_doctor):
        report = schema_doctor.inspect_table("nothing", required=("id",))
        assert not report.exists
        assert report.missing == ["id"]


class TestCheckDatabaseSchema:
    """Tests for the images table verdict."""

    def test_correct_schema(self, schema_doctor, database_path):
        verdict = schema_doctor.check_database_schema()
        assert verdict.startswith("✓ Database schema is correct")
        assert str(database_path) in verdict

    def test_missing_images_table(self, schema_doctor, engine):
        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE images")
        assert schema_doctor.check_database_schema().startswith(
            "✗ Images table does not exist"
        )

    def test_images_table_without_file_path(self, schema_doctor, engine):
        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE images")
            conn.exec_driver_sql(
                "CREATE TABLE images (id TEXT PRIMARY KEY, note_id TEXT, filename TEXT)"
            )
        verdict = schema_doctor.check_database_schema()
        assert verdict.startswith("✗ Images table exists but missing 'file_path' column")
        assert "note_id" in verdict


class TestCheckNodesSchema:
    """Tests for the nodes table report."""

    def test_current_schema(self, schema_doctor):
        report = schema_doctor.check_nodes_schema()
        assert "contains 'type': False" in report
        assert "'updated_at'" in report

    def test_legacy_schema(self, legacy_doctor):
        assert "contains 'type': True" in legacy_doctor.check_nodes_schema()


class TestRepairNodesSchema:
    """Tests for the shadow-table rebuild."""

    def test_repair_is_noop_on_current_schema(self, schema_doctor, engine):
        before = _nodes_schema(engine)
        assert schema_doctor.repair_nodes_schema() == "nodes schema OK (no 'type' column)"
        assert _nodes_schema(engine) == before

    def test_legacy_schema_rejects_new_nodes(self, legacy_engine):
        repo = TreeRepository(engine=legacy_engine)
        with pytest.raises(ValidationError):
            repo.create_node(Node(space_id=DEFAULT_SPACE_ID, name="New"))

    def test_repair_drops_type_and_keeps_rows(self, legacy_doctor, legacy_engine):
        rows_before = _node_rows(legacy_engine)

        result = legacy_doctor.repair_nodes_schema()

        assert result == "Repaired nodes schema (removed 'type' column)"
        assert _columns(legacy_engine) == list(NODE_COLUMNS)
        assert _node_rows(legacy_engine) == rows_before
        assert "contains 'type': False" in legacy_doctor.check_nodes_schema()

    def test_repair_twice_is_stable(self, legacy_doctor, legacy_engine):
        legacy_doctor.repair_nodes_schema()
        after_first = _nodes_schema(legacy_engine)
        assert legacy_doctor.repair_nodes_schema() == "nodes schema OK (no 'type' column)"
        assert _nodes_schema(legacy_engine) == after_first

    def test_repair_restores_indexes_and_triggers(self, legacy_doctor, legacy_engine):
        legacy_doctor.repair_nodes_schema()
        names = {name for _, name, _ in _nodes_schema(legacy_engine)}
        assert {
            "idx_nodes_space_id",
            "idx_nodes_parent_id",
            "nodes_set_timestamps_on_insert",
            "nodes_touch_updated_at",
        } <= names

    def test_store_works_after_repair(self, legacy_doctor, legacy_engine):
        legacy_doctor.repair_nodes_schema()
        repo = TreeRepository(engine=legacy_engine)

        node = repo.create_node(Node(space_id=DEFAULT_SPACE_ID, parent_id="root", name="New"))
        assert node.created_at is not None
        # Cascade references survive the rebuild
        assert repo.delete_node("root") == 4
        assert [n.id for n in repo.list_nodes(DEFAULT_SPACE_ID)] == ["other"]

        with legacy_engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1

    def test_repair_adds_missing_canonical_columns(self, database_path, raw_engine, images_dir):
        _build_legacy_store(raw_engine, with_pinned=False)
        engine = init_db(database_path)
        try:
            SchemaDoctor(engine, images_dir=images_dir).repair_nodes_schema()
            assert _columns(engine) == list(NODE_COLUMNS)
            node = TreeRepository(engine=engine).get_node("child")
            assert node.is_pinned is False
            assert node.content == "child body"
        finally:
            engine.dispose()

    def test_failed_repair_rolls_back(self, database_path, raw_engine, images_dir):
        _build_legacy_store(raw_engine, dangling=True)
        engine = init_db(database_path)
        try:
            schema_before = _nodes_schema(engine)
            rows_before = _node_rows(engine)

            with pytest.raises(SchemaError) as exc_info:
                SchemaDoctor(engine, images_dir=images_dir).repair_nodes_schema()
            assert exc_info.value.code == ErrorCode.SCHEMA_REPAIR_FAILED

            assert _nodes_schema(engine) == schema_before
            assert _node_rows(engine) == rows_before
            assert "type" in _columns(engine)
            with engine.connect() as conn:
                assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        finally:
            engine.dispose()


class TestCheckAttachments:
    """Tests for the blob/row consistency report."""

    def test_consistent_store(self, schema_doctor, attachment_store):
        attachment_store.upload("n1", "a.png", base64.b64encode(b"img").decode(), "image/png", 3)
        assert schema_doctor.check_attachments().startswith("✓ 1 attachments consistent")

    def test_reports_both_kinds_of_divergence(self, schema_doctor, attachment_store, images_dir):
        payload = base64.b64encode(b"img").decode()
        lost = attachment_store.upload("n1", "a.png", payload, "image/png", 3)
        kept = attachment_store.upload("n1", "b.png", payload, "image/png", 3)
        Path(lost.path).unlink()
        stray = images_dir / "stray.png"
        stray.write_bytes(b"stray")

        report = schema_doctor.check_attachments()

        assert report.startswith("✗ Attachment store diverged")
        assert lost.id in report
        assert kept.id not in report
        assert "stray.png" in report
        # Read-only
        assert stray.exists()
        assert attachment_store.fetch(lost.id) == lost.path
