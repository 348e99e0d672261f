"""Common test fixtures for the Unfold note store."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine

from unfold_store.config import config
from unfold_store.models.db_models import init_db
from unfold_store.observability import metrics
from unfold_store.storage.attachment_store import AttachmentStore
from unfold_store.storage.schema_doctor import SchemaDoctor
from unfold_store.storage.tree_repository import TreeRepository


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and image blobs."""
    with tempfile.TemporaryDirectory() as data_dir:
        with tempfile.TemporaryDirectory() as local_dir:
            yield Path(data_dir), Path(local_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    data_dir, local_dir = temp_dirs
    monkeypatch.setattr(config, "app_data_dir", data_dir)
    monkeypatch.setattr(config, "app_local_data_dir", local_dir)
    monkeypatch.setattr(config, "channel", "test")
    monkeypatch.setattr(config, "database_name", None)
    yield config


@pytest.fixture
def database_path(test_config):
    """Path of the test store file."""
    return test_config.get_database_path()


@pytest.fixture
def engine(database_path):
    """A fully migrated store."""
    engine = init_db(database_path)
    yield engine
    engine.dispose()


@pytest.fixture
def raw_engine(database_path):
    """Plain engine on the test store file, for building legacy schemas by hand."""
    engine = create_engine(f"sqlite:///{database_path}")
    yield engine
    engine.dispose()


@pytest.fixture
def tree_repository(engine):
    """Create a test tree repository."""
    return TreeRepository(engine=engine)


@pytest.fixture
def images_dir(test_config):
    """Blob directory of the test store."""
    return test_config.get_images_dir()


@pytest.fixture
def attachment_store(engine, images_dir):
    """Create a test attachment store."""
    return AttachmentStore(engine=engine, images_dir=images_dir)


@pytest.fixture
def schema_doctor(engine, images_dir):
    """Create a test schema doctor."""
    return SchemaDoctor(engine, images_dir=images_dir)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep metrics from leaking between tests."""
    metrics.reset()
    yield
    metrics.reset()
