"""Shared pytest fixtures for trellis tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tests._engine_factory import blog_catalog, make_engine
from trellis.config import DB_FILENAME, TRELLIS_DIR_NAME, default_config, write_config
from trellis.datalayer import SQLiteDataLayer
from trellis.engine import Engine
from trellis.schema import SchemaCatalog
from trellis.store import TemplateStore


@pytest.fixture
def catalog() -> SchemaCatalog:
    return blog_catalog()


@pytest.fixture
def store(catalog: SchemaCatalog) -> TemplateStore:
    return TemplateStore(catalog)


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """Engine over the blog catalog with a fresh SQLite data layer."""
    e = make_engine(tmp_path)
    yield e
    e.close()


@pytest.fixture
def data_layer(engine: Engine) -> SQLiteDataLayer:
    assert isinstance(engine.data_layer, SQLiteDataLayer)
    return engine.data_layer


@pytest.fixture
def trellis_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a trellis project (.trellis/ with config + db).

    Returns the project root (parent of .trellis/).
    """
    trellis_dir = tmp_path / TRELLIS_DIR_NAME
    trellis_dir.mkdir()
    write_config(trellis_dir, default_config())
    with SQLiteDataLayer(trellis_dir / DB_FILENAME) as d:
        d.initialize()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_trellis_logger() -> Generator[None, None, None]:
    """Drop file handlers added by setup_logging so tests don't leak them."""
    yield
    logger = logging.getLogger("trellis")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
