#!/usr/bin/env python3
"""
Backend capabilities - planner, dialect converter and export service

The manager only talks to these three interfaces. One implementation set per
warehouse is selected once at startup by create_backend(config).

Reference backend "duckdb":
- ManifestPlanner: inlines the definition's query as a derived table
- DuckDBDialectConverter: validates the statement with DuckDB's parser
- DuckDBExportService: runs the query on a source DuckDB warehouse and has
  DuckDB COPY the result to Parquet (snappy), so every DuckDB column type
  (INTERVAL, UUID, ...) survives the round trip into the cache
"""

import logging
import re
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import duckdb

try:
    from .cache_engine import quote_identifier, quote_literal
    from .errors import ConfigurationError
    from .models import ExportLocation, Manifest, SessionContext
except ImportError:
    from cache_engine import quote_identifier, quote_literal
    from errors import ConfigurationError
    from models import ExportLocation, Manifest, SessionContext

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


class Planner(Protocol):
    def rewrite(self, query: str, session_context: SessionContext, manifest: Manifest) -> str:
        ...


class DialectConverter(Protocol):
    def convert(self, sql: str, session_context: SessionContext) -> str:
        ...


class ExportService(Protocol):
    def materialize(self, catalog: str, schema: str, name: str, native_sql: str) -> Optional[ExportLocation]:
        ...

    def release(self, location: ExportLocation):
        ...


class ManifestPlanner:
    """
    Resolves "select * from <pre-aggregation>" against the manifest.

    Only the shape issued by the pre-aggregation manager is understood; the
    full semantic planner lives outside this package.
    """

    _SELECT_ALL = re.compile(r'^\s*select\s+\*\s+from\s+"?([^"\s;]+)"?\s*;?\s*$', re.IGNORECASE)

    def rewrite(self, query: str, session_context: SessionContext, manifest: Manifest) -> str:
        match = self._SELECT_ALL.match(query)
        if not match:
            raise ValueError(f"Unsupported pre-aggregation query: {query}")

        name = match.group(1)
        definition = manifest.get_pre_aggregation(name)
        if definition is None:
            raise ValueError(f"Pre-aggregation {name} not found in "
                             f"{session_context.catalog}.{session_context.schema}")

        source = definition.sql.strip().rstrip(';')
        return f"SELECT * FROM ({source}) AS {quote_identifier(name)}"


class DuckDBDialectConverter:
    """Neutral SQL is DuckDB-compatible; conversion is validation only."""

    def convert(self, sql: str, session_context: SessionContext) -> str:
        statements = duckdb.extract_statements(sql)
        if len(statements) != 1:
            raise ValueError(f"Expected exactly one statement, got {len(statements)}")
        return sql.strip().rstrip(';').strip()


class DuckDBExportService:
    """
    Exports query results from a DuckDB warehouse to Parquet.

    Directory structure:
        export_dir/
            <catalog>/<schema>/<name>_<uuid>/
                part-00000.parquet
    """

    FILE_PATTERN = '*.parquet'

    def __init__(self, connection: duckdb.DuckDBPyConnection, export_dir: Path):
        """
        Args:
            connection: Connection to the DuckDB warehouse
            export_dir: Root directory for intermediate exports
        """
        self.export_dir = Path(export_dir)
        self.export_dir.mkdir(parents=True, exist_ok=True)
        self._connection = connection

    @classmethod
    def open(cls, source_database: str, export_dir: Path) -> 'DuckDBExportService':
        """Connect to a warehouse database file (read-only) and export under export_dir."""
        connection = duckdb.connect(source_database, read_only=source_database != ':memory:')
        logger.info(f"DuckDB export service: {source_database} → {export_dir}")
        return cls(connection, export_dir)

    def materialize(self, catalog: str, schema: str, name: str, native_sql: str) -> Optional[ExportLocation]:
        start_time = time.time()

        target = self.export_dir / catalog / schema / f"{name}_{uuid.uuid4().hex}"
        target.mkdir(parents=True, exist_ok=True)
        output_path = target / 'part-00000.parquet'

        try:
            with self._connection.cursor() as cursor:
                result = cursor.execute(
                    f"COPY ({native_sql}) TO {quote_literal(str(output_path))} "
                    f"(FORMAT parquet, COMPRESSION snappy)"
                ).fetchone()
        except Exception:
            shutil.rmtree(target, ignore_errors=True)
            raise
        rows = result[0] if result else 0

        file_size_kb = output_path.stat().st_size / 1024
        logger.info(f"Exported {name}: {rows:,} rows, {file_size_kb:.1f} KB "
                    f"in {(time.time() - start_time) * 1000:.1f}ms")

        return ExportLocation(str(target), self.FILE_PATTERN)

    def release(self, location: ExportLocation):
        shutil.rmtree(location.path)
        logger.debug(f"Removed export {location.path}")


@dataclass
class Backend:
    """Capability set for one warehouse type."""
    planner: Planner
    converter: DialectConverter
    export_service: ExportService


def create_backend(config) -> Backend:
    """
    Select the backend implementation named by config.backend.

    Args:
        config: PreAggregationConfig

    Returns:
        Backend with planner, converter and export service wired up
    """
    if config.backend == 'duckdb':
        if not config.source_database:
            raise ConfigurationError("duckdb backend requires source_database")
        return Backend(
            planner=ManifestPlanner(),
            converter=DuckDBDialectConverter(),
            export_service=DuckDBExportService.open(config.source_database, config.export_dir),
        )
    raise ConfigurationError(f"Unsupported backend: {config.backend}")
