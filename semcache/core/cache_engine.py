#!/usr/bin/env python3
"""
Cache Engine Client - DuckDB database holding materialized pre-aggregations

All pre-aggregation tables live in one DuckDB database. The client owns the
connection; every operation runs on its own cursor (a duplicate connection),
so refresh workers and query readers can use the engine concurrently.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple

import duckdb

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class CacheEngineClient:
    """
    Thin DDL/DML surface over the embedded DuckDB cache.

    Tuned with an explicit thread count and memory limit, set once when the
    connection opens.
    """

    def __init__(
        self,
        database: str = ':memory:',
        threads: Optional[int] = None,
        memory_limit: Optional[str] = None
    ):
        """
        Open the cache engine.

        Args:
            database: DuckDB file path, or ":memory:" for an ephemeral cache
            threads: DuckDB worker threads (engine default if None)
            memory_limit: DuckDB memory limit, e.g. "4GB" (engine default if None)
        """
        self.database = database
        self._connection = duckdb.connect(database)

        if threads:
            self._connection.execute(f"PRAGMA threads={int(threads)}")
        if memory_limit:
            self._connection.execute(f"PRAGMA memory_limit={quote_literal(memory_limit)}")

        logger.info(f"Cache engine opened: {database} (threads={threads or 'default'}, "
                    f"memory_limit={memory_limit or 'default'})")

    @classmethod
    def from_config(cls, config) -> 'CacheEngineClient':
        return cls(config.cache_database, threads=config.duckdb_threads, memory_limit=config.memory_limit)

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """New cursor on the cache database; the caller closes it."""
        return self._connection.cursor()

    def execute_ddl(self, sql: str):
        logger.debug(f"Executing DDL: {sql}")
        with self.cursor() as cursor:
            cursor.execute(sql)

    def fetch_all(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> List[Tuple]:
        with self.cursor() as cursor:
            if parameters:
                cursor.execute(sql, list(parameters))
            else:
                cursor.execute(sql)
            return cursor.fetchall()

    def drop_table_quietly(self, table_name: str):
        """Drop a table if it exists. Never raises."""
        try:
            self.execute_ddl(f"DROP TABLE IF EXISTS {quote_identifier(table_name)}")
        except Exception as e:
            logger.warning(f"Failed to drop table {table_name}: {e}", exc_info=True)

    def load_from_files(self, path: str, table_name: str) -> str:
        """
        DDL that materializes exported Parquet files as a cache table.

        Args:
            path: Glob selecting the exported files (e.g. "/exports/x/*.parquet")
            table_name: Physical table to create

        Returns:
            CREATE TABLE ... AS SELECT statement
        """
        return (f"CREATE TABLE {quote_identifier(table_name)} AS "
                f"SELECT * FROM read_parquet({quote_literal(path)})")

    def table_exists(self, table_name: str) -> bool:
        rows = self.fetch_all(
            "SELECT count(*) FROM information_schema.tables WHERE table_name = ?",
            [table_name])
        return rows[0][0] > 0

    def list_tables(self) -> List[str]:
        rows = self.fetch_all("SELECT table_name FROM information_schema.tables ORDER BY table_name")
        return [row[0] for row in rows]

    def close(self):
        self._connection.close()
        logger.info(f"Cache engine closed: {self.database}")
