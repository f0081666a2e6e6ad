"""
Shared fixtures: an in-memory DuckDB cache, a small DuckDB warehouse and a
manager wired to the reference duckdb backend.
"""

import shutil
import threading
import time
import uuid
from pathlib import Path

import duckdb
import pytest

from semcache.core import Backend, CacheEngineClient, ExportLocation, Manifest, PreAggregationManager
from semcache.core.backends import DuckDBDialectConverter, DuckDBExportService, ManifestPlanner

CATALOG = 'canner'
SCHEMA = 'sales'


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.02):
    """Poll predicate until it returns truthy; fail the test on timeout."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    pytest.fail(f"Condition not met within {timeout}s")


def make_manifest(*definitions, catalog: str = CATALOG, schema: str = SCHEMA) -> Manifest:
    return Manifest.from_dict({
        'catalog': catalog,
        'schema': schema,
        'preAggregations': list(definitions),
    })


class GatedExportService:
    """Wraps an export service; materialize blocks while the gate is closed."""

    def __init__(self, delegate):
        self.delegate = delegate
        self.gate = threading.Event()
        self.gate.set()
        self.entered = threading.Event()

    def materialize(self, catalog, schema, name, native_sql):
        self.entered.set()
        self.gate.wait(timeout=30)
        return self.delegate.materialize(catalog, schema, name, native_sql)

    def release(self, location):
        self.delegate.release(location)


class RecordingExportService:
    """
    Export service double.

    materialize() creates an empty export directory (or returns None when
    server_side is set); release() records each call and removes the directory.
    """

    def __init__(self, root: Path, server_side: bool = False, release_delay: float = 0.0):
        self.root = Path(root)
        self.server_side = server_side
        self.release_delay = release_delay
        self.released = []
        self._lock = threading.Lock()

    def materialize(self, catalog, schema, name, native_sql):
        if self.server_side:
            return None
        target = self.root / f"{name}_{uuid.uuid4().hex}"
        target.mkdir(parents=True)
        return ExportLocation(str(target), '*.parquet')

    def release(self, location):
        time.sleep(self.release_delay)
        with self._lock:
            self.released.append(location)
        shutil.rmtree(location.path, ignore_errors=True)


@pytest.fixture
def cache_engine():
    engine = CacheEngineClient(':memory:', threads=2)
    yield engine
    engine.close()


@pytest.fixture
def warehouse():
    connection = duckdb.connect(':memory:')
    connection.execute("""
        CREATE TABLE orders AS
        SELECT * FROM (VALUES
            (1, 'alice', 10.5::DOUBLE, TIMESTAMP '2023-01-01 00:00:01.0005'),
            (2, 'bob',   20.0::DOUBLE, TIMESTAMP '2023-01-02 12:30:00'),
            (3, 'alice',  4.5::DOUBLE, TIMESTAMP '2023-01-03 08:15:00')
        ) AS t(id, customer, amount, created_at)
    """)
    yield connection
    connection.close()


@pytest.fixture
def export_dir(tmp_path):
    path = tmp_path / 'exports'
    path.mkdir()
    return path


@pytest.fixture
def gated_export(warehouse, export_dir):
    return GatedExportService(DuckDBExportService(warehouse, export_dir))


@pytest.fixture
def backend(gated_export):
    return Backend(
        planner=ManifestPlanner(),
        converter=DuckDBDialectConverter(),
        export_service=gated_export,
    )


@pytest.fixture
def manager(cache_engine, backend):
    manager = PreAggregationManager(cache_engine, backend, refresh_workers=2, manager_workers=8)
    yield manager
    manager.shutdown()
