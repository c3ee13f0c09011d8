"""Pytest configuration and fixtures."""

import io
import os
import sys
import tempfile
from pathlib import Path

import pytest
from loguru import logger

# Add src to Python path for testing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))


def pytest_configure(config):
    """Force test environment for all pytest runs"""
    os.environ["CADGIS_ENVIRONMENT"] = "test"
    os.environ.setdefault("CADGIS_CONFIG_DIR", tempfile.mkdtemp(prefix="cadgis_config_"))


@pytest.fixture(autouse=True)
def loguru_capture():
    stream = io.StringIO()
    logger.remove()
    logger.add(stream, level="DEBUG", format="{level}: {message}")
    yield stream
    logger.remove()


@pytest.fixture
def surface():
    from cadgis.render.surface import InMemoryDrawingSurface

    return InMemoryDrawingSurface(document_id="C:/Drawings/site.dwg")


@pytest.fixture
def ledger(tmp_path):
    from cadgis.pipeline.ledger import LayerLedger

    return LayerLedger(tmp_path / "pg_layer_metadata.json")


@pytest.fixture
def make_feature():
    from cadgis.core.feature import FeatureRecord
    from cadgis.core.geometry import make_point

    def _make(x=None, y=None, **attributes):
        geometry = make_point(x, y) if x is not None else None
        return FeatureRecord.from_raw(attributes, geometry)

    return _make
