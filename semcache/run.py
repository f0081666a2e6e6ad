#!/usr/bin/env python3
"""
Run pre-aggregations for a manifest and query the cache

This script:
1. Loads a manifest (JSON) describing the pre-aggregations of one schema
2. Materializes every pre-aggregation into the DuckDB cache
3. Prints per-pre-aggregation outcomes
4. Optionally runs a query against the cache and writes the result to CSV
5. Optionally keeps refreshing on schedule until interrupted (--serve)
"""

import argparse
import csv
import logging
import sys
import time
from pathlib import Path

from semcache.core import Manifest, PreAggregationConfig, PreAggregationError, PreAggregationManager

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Materialize pre-aggregations into the DuckDB cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build all pre-aggregations once and print the outcome
  semcache-run --manifest manifest.json --source-database warehouse.duckdb

  # Build, then query a cache table and write CSV
  semcache-run --manifest manifest.json --source-database warehouse.duckdb \\
      --sql 'SELECT * FROM "revenue_..."' --output revenue.csv

  # Keep refreshing on schedule until Ctrl-C
  semcache-run --manifest manifest.json --source-database warehouse.duckdb --serve

  # Any setting can come from the environment instead (flags win)
  SEMCACHE_SOURCE_DATABASE=warehouse.duckdb semcache-run --manifest manifest.json
        """
    )
    parser.add_argument('--manifest', type=Path, required=True,
                        help='Manifest JSON describing the pre-aggregations')
    parser.add_argument('--source-database', dest='source_database', default=None,
                        help='DuckDB warehouse database the pre-aggregations read from')
    parser.add_argument('--cache-database', dest='cache_database', default=None,
                        help='DuckDB database holding the cache (default: in-memory)')
    parser.add_argument('--export-dir', dest='export_dir', type=Path, default=None,
                        help='Directory for intermediate exports (default: /tmp/semcache-exports)')
    parser.add_argument('--backend', default=None,
                        help='Warehouse backend (default: duckdb)')
    parser.add_argument('--refresh-workers', dest='refresh_workers', type=int, default=None,
                        help='Threads running scheduled refreshes (default: 5)')
    parser.add_argument('--memory-limit', dest='memory_limit', default=None,
                        help='DuckDB memory limit for the cache (default: 4GB)')
    parser.add_argument('--sql', default=None,
                        help='Query to run against the cache after the refresh')
    parser.add_argument('--output', type=Path, default=None,
                        help='CSV file for --sql results (default: stdout)')
    parser.add_argument('--serve', action='store_true',
                        help='Keep refreshing on schedule until interrupted')
    return parser


def write_rows(reader, output: Path = None) -> int:
    """Write a reader's rows as CSV; returns the row count."""
    handle = open(output, 'w', newline='') if output else sys.stdout
    try:
        writer = csv.writer(handle)
        writer.writerow(reader.column_names)
        count = 0
        for row in reader:
            writer.writerow(row)
            count += 1
        return count
    finally:
        if output:
            handle.close()


def main(argv=None):
    args = build_parser().parse_args(argv)

    print("="*70)
    print("PRE-AGGREGATION REFRESH")
    print("="*70)
    print()
    print(f"Manifest:        {args.manifest}")

    try:
        manifest = Manifest.load(args.manifest)
        config = PreAggregationConfig.from_args(args, base=PreAggregationConfig.from_env())
    except PreAggregationError as e:
        logger.error(str(e))
        sys.exit(2)

    print(f"Source database: {config.source_database}")
    print()

    logger.info(f"Loaded manifest {manifest.catalog}.{manifest.schema} "
                f"({len(manifest.pre_aggregations)} pre-aggregations)")

    try:
        manager = PreAggregationManager.from_config(config)
    except PreAggregationError as e:
        logger.error(f"Failed to start pre-aggregation manager: {e}")
        sys.exit(2)

    exit_code = 0
    try:
        start = time.time()
        info = manager.create_task_and_wait(manifest)
        elapsed = time.time() - start

        print()
        print("="*70)
        print("REFRESH SUMMARY")
        print("="*70)
        bindings = manager.list_bindings(manifest.catalog, manifest.schema)
        for table in info.pre_aggregation_tables:
            binding = bindings.get(table.name)
            if table.error_message:
                print(f"❌ {table.name}: {table.error_message}")
                exit_code = 1
            else:
                print(f"✅ {table.name} → {binding.table_name if binding else '?'} "
                      f"(refresh every {table.refresh_time})")
        print()
        print(f"Task {info.task_id}: {info.status.value} in {elapsed:.2f}s")
        print("="*70)

        if args.sql:
            with manager.query(args.sql) as reader:
                count = write_rows(reader, args.output)
            logger.info(f"✅ Query returned {count} rows" + (f" → {args.output}" if args.output else ""))

        if args.serve:
            logger.info("Serving scheduled refreshes; press Ctrl-C to stop")
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                logger.info("Interrupted, shutting down")
    except PreAggregationError as e:
        logger.error(str(e))
        exit_code = 1
    finally:
        manager.shutdown()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
