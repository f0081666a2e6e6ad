#!/usr/bin/env python3
"""
Pre-Aggregation Manager - builds, refreshes and tears down cache tables

For every pre-aggregation in a manifest the manager runs a materialization
pipeline:
1. Pick a fresh physical table name (<definition>_<uuid>)
2. Rewrite "select * from <definition>" through the planner and converter
3. Export the result from the backend warehouse
4. Load the exported files into DuckDB, then delete the export
5. Publish the new table (or the error) in the table mapping registry

Key features:
- Failures are contained per definition: a failed pipeline publishes an
  error binding and never disturbs its siblings or the owning cycle
- Each definition keeps refreshing on a fixed delay after its first run
- One full refresh per schema at a time, guarded by the task registry
- Intermediate exports are tracked so shutdown can remove stragglers

Thread pools:
- refresh scheduler: small fixed pool for recurring refreshes
- manager pool: initial materializations, cycle orchestration, task reads
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

try:
    from .backends import Backend, DialectConverter, ExportService, Planner, create_backend
    from .cache_engine import CacheEngineClient
    from .errors import PreAggregationError, StandardErrorCode
    from .models import ExportLocation, Manifest, PhysicalTableBinding, PreAggregationDefinition, SchemaKey
    from .result_reader import CacheResultReader
    from .scheduler import FixedDelayScheduler, ScheduledRefreshHandle
    from .table_mapping import TableMappingRegistry
    from .tasks import PreAggregationTable, TaskInfo, TaskRegistry
except ImportError:
    from backends import Backend, DialectConverter, ExportService, Planner, create_backend
    from cache_engine import CacheEngineClient
    from errors import PreAggregationError, StandardErrorCode
    from models import ExportLocation, Manifest, PhysicalTableBinding, PreAggregationDefinition, SchemaKey
    from result_reader import CacheResultReader
    from scheduler import FixedDelayScheduler, ScheduledRefreshHandle
    from table_mapping import TableMappingRegistry
    from tasks import PreAggregationTable, TaskInfo, TaskRegistry

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def all_of(futures: Sequence[Future]) -> Future:
    """
    Future that completes once every future in `futures` has completed.

    Fails with the first failure (in input order) if any of them failed.
    Completion is driven by done-callbacks, so no thread blocks waiting.
    """
    combined = Future()
    if not futures:
        combined.set_result(None)
        return combined

    remaining = [len(futures)]
    lock = threading.Lock()

    def on_done(_):
        with lock:
            remaining[0] -= 1
            if remaining[0]:
                return
        for f in futures:
            if f.cancelled():
                combined.set_exception(RuntimeError("Pre-aggregation run was cancelled"))
                return
            if f.exception() is not None:
                combined.set_exception(f.exception())
                return
        combined.set_result(None)

    for f in futures:
        f.add_done_callback(on_done)
    return combined


def _transfer(target: Future, source: Future):
    if source.cancelled():
        target.set_exception(RuntimeError("Pre-aggregation cycle was cancelled"))
    elif source.exception() is not None:
        target.set_exception(source.exception())
    else:
        target.set_result(source.result())


class PreAggregationManager:
    """
    Orchestrates pre-aggregation pipelines for every manifest it is given.

    Usage:
        manager = PreAggregationManager(cache_engine, backend)
        info = manager.create_task_and_wait(manifest)
        with manager.query('SELECT * FROM "revenue_1a2b..."') as reader:
            for row in reader:
                ...
        manager.shutdown()
    """

    def __init__(
        self,
        cache_engine: CacheEngineClient,
        backend: Backend,
        refresh_workers: int = 5,
        manager_workers: int = 32,
        table_mapping: Optional[TableMappingRegistry] = None
    ):
        """
        Args:
            cache_engine: DuckDB cache holding the physical tables
            backend: Planner, dialect converter and export service of the warehouse
            refresh_workers: Worker threads for recurring refreshes
            manager_workers: Worker threads for one-shot work
            table_mapping: Registry to publish into (a new one if None)
        """
        self._cache_engine = cache_engine
        self._planner: Planner = backend.planner
        self._converter: DialectConverter = backend.converter
        self._export_service: ExportService = backend.export_service
        self.table_mapping = table_mapping or TableMappingRegistry()

        self._tasks = TaskRegistry()
        self._scheduled: Dict[SchemaKey, ScheduledRefreshHandle] = {}
        self._export_locations: Set[ExportLocation] = set()
        self._generations: Dict[Tuple[str, str], int] = {}  # bumped on every schema teardown

        self._refresh_lock = threading.Lock()     # check-then-launch of a full refresh
        self._state_lock = threading.Lock()       # scheduled handles, generations, publish vs teardown
        self._locations_lock = threading.Lock()

        self._owns_cache_engine = False
        self._refresh_scheduler = FixedDelayScheduler(refresh_workers, 'pre-aggregation-refresh')
        self._executor = ThreadPoolExecutor(max_workers=manager_workers, thread_name_prefix='pre-aggregation-manager')

        logger.info(f"Pre-aggregation manager started ({refresh_workers} refresh workers, "
                    f"{manager_workers} manager workers)")

    @classmethod
    def from_config(cls, config, cache_engine: Optional[CacheEngineClient] = None) -> 'PreAggregationManager':
        """Wire a manager from PreAggregationConfig (opens the cache engine unless one is given)."""
        backend = create_backend(config)
        manager = cls(
            cache_engine or CacheEngineClient.from_config(config),
            backend,
            refresh_workers=config.refresh_workers,
            manager_workers=config.manager_workers,
        )
        manager._owns_cache_engine = cache_engine is None
        return manager

    # ------------------------------------------------------------------
    # Full-schema refresh
    # ------------------------------------------------------------------

    def refresh(self, manifest: Manifest) -> Future:
        """
        Tear down the schema's pre-aggregations and rebuild them all.

        Raises PreAggregationError (user error) right away if a refresh of
        the same schema is still running; the current tables stay untouched.

        Returns:
            Future resolving to the DONE TaskInfo of this refresh
        """
        info = self._start_refresh(manifest)
        return self._tasks.completion(info.task_id)

    def _start_refresh(self, manifest: Manifest) -> TaskInfo:
        with self._refresh_lock:
            if self._tasks.list(manifest.catalog, manifest.schema, in_progress=True):
                raise PreAggregationError(
                    StandardErrorCode.GENERIC_USER_ERROR,
                    f"Pre-aggregation is already running; catalogName: {manifest.catalog}, "
                    f"schemaName: {manifest.schema}")
            info = self._tasks.register(manifest.catalog, manifest.schema)

        cycle = Future()
        cycle.add_done_callback(partial(self._complete_task, info))
        try:
            self._executor.submit(self._teardown_and_run, manifest, cycle)
        except RuntimeError as e:
            cycle.set_exception(e)
            raise PreAggregationError(StandardErrorCode.GENERIC_INTERNAL_ERROR,
                                      f"Pre-aggregation manager is shut down: {e}")

        logger.info(f"Refresh task {info.task_id} started for {manifest.catalog}.{manifest.schema} "
                    f"({len(manifest.pre_aggregations)} pre-aggregations)")
        return info

    def _teardown_and_run(self, manifest: Manifest, cycle: Future):
        try:
            self.remove_schema(manifest.catalog, manifest.schema)
            initial_runs = self.run_all(manifest)
        except Exception as e:
            cycle.set_exception(e)
            return
        initial_runs.add_done_callback(partial(_transfer, cycle))

    def _complete_task(self, info: TaskInfo, cycle: Future):
        tables = []
        try:
            if cycle.exception() is not None:
                logger.error(f"Failed to do pre-aggregation for {info.catalog}.{info.schema}",
                             exc_info=cycle.exception())
            tables = [
                PreAggregationTable(
                    name=binding.definition.name,
                    error_message=binding.error_message,
                    refresh_time=binding.definition.refresh_time,
                    create_time=datetime.fromtimestamp(binding.create_time, tz=timezone.utc),
                )
                for _, binding in sorted(
                    self.table_mapping.entries_for_schema(info.catalog, info.schema),
                    key=lambda entry: entry[0].name)
            ]
        finally:
            self._tasks.complete(info.task_id, tables)

        failed = sum(1 for t in tables if t.error_message)
        logger.info(f"✅ Refresh task {info.task_id} done: {len(tables) - failed} ready, {failed} failed")

    def run_all(self, manifest: Manifest) -> Future:
        """
        Start one pipeline per definition of the manifest.

        Each definition gets a recurring fixed-delay refresh once its first
        run completes.

        Returns:
            Future completing when every initial run has completed
        """
        generation = self._generation(manifest.catalog, manifest.schema)
        initial_runs = []
        for definition in manifest.pre_aggregations:
            run = self._executor.submit(self._materialize, manifest, definition, generation)
            run.add_done_callback(partial(self._install_schedule, manifest, definition, generation))
            initial_runs.append(run)
        return all_of(initial_runs)

    def _install_schedule(self, manifest: Manifest, definition: PreAggregationDefinition,
                          generation: int, initial_run: Future):
        if initial_run.cancelled() or initial_run.exception() is not None:
            return

        key = SchemaKey(manifest.catalog, manifest.schema, definition.name)
        with self._state_lock:
            if self._generations.get((manifest.catalog, manifest.schema), 0) != generation:
                return
            try:
                handle = self._refresh_scheduler.schedule_with_fixed_delay(
                    partial(self._materialize, manifest, definition, generation),
                    definition.refresh_time,
                    definition.refresh_time,
                    name=str(key))
            except RuntimeError as e:
                logger.warning(f"Could not schedule refresh for {key}: {e}")
                return
            previous = self._scheduled.get(key)
            self._scheduled[key] = handle

        if previous is not None:
            previous.cancel()
        logger.debug(f"Scheduled refresh of {key} every {definition.refresh_time}")

    # ------------------------------------------------------------------
    # Single materialization pipeline
    # ------------------------------------------------------------------

    def _materialize(self, manifest: Manifest, definition: PreAggregationDefinition,
                     generation: int) -> PhysicalTableBinding:
        key = SchemaKey(manifest.catalog, manifest.schema, definition.name)
        table_name = f"{definition.name}_{uuid.uuid4().hex}"
        create_time = time.time()

        logger.info(f"Materializing {key} into {table_name}")
        try:
            session_context = manifest.session_context
            rewritten = self._planner.rewrite(f"select * from {definition.name}", session_context, manifest)
            native_sql = self._converter.convert(rewritten, session_context)

            location = self._export_service.materialize(
                manifest.catalog, manifest.schema, definition.name, native_sql)
            if location is not None:
                self._track(location)
                try:
                    self._cache_engine.execute_ddl(self._cache_engine.load_from_files(location.glob, table_name))
                finally:
                    self.release_one(location)

            binding = PhysicalTableBinding.succeeded(definition, table_name, create_time)
            logger.info(f"✅ {key}: {table_name} ready in {time.time() - create_time:.2f}s")
        except Exception as e:
            self._cache_engine.drop_table_quietly(table_name)
            error_message = f"Failed to do pre-aggregation for {definition.name}; caused by {e}"
            logger.error(error_message, exc_info=True)
            binding = PhysicalTableBinding.failed(definition, error_message, create_time)

        self._publish(key, binding, generation)
        return binding

    def _publish(self, key: SchemaKey, binding: PhysicalTableBinding, generation: int):
        previous = None
        with self._state_lock:
            stale = self._generations.get((key.catalog, key.schema), 0) != generation
            if not stale:
                previous = self.table_mapping.put(key, binding)

        if stale:
            # Schema was torn down while this run was in flight
            logger.info(f"Discarding result for {key}: schema was removed during refresh")
            if binding.table_name:
                self._cache_engine.drop_table_quietly(binding.table_name)
            return

        if previous is not None and previous.table_name and previous.table_name != binding.table_name:
            self._cache_engine.drop_table_quietly(previous.table_name)

    def _generation(self, catalog: str, schema: str) -> int:
        with self._state_lock:
            return self._generations.get((catalog, schema), 0)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def remove_schema(self, catalog: str, schema: str):
        """
        Cancel scheduled refreshes, drop tables and forget bindings of a schema.

        Runs synchronously on the caller's thread (the DROP TABLEs included).
        Safe to call when nothing exists for the schema.
        """
        if catalog is None or schema is None:
            raise ValueError("catalog and schema are required")

        with self._state_lock:
            schema_id = (catalog, schema)
            self._generations[schema_id] = self._generations.get(schema_id, 0) + 1

            keys = [key for key in self._scheduled if key.in_schema(catalog, schema)]
            handles = [self._scheduled.pop(key) for key in keys]

            entries = self.table_mapping.entries_for_schema(catalog, schema)
            for key, _ in entries:
                self.table_mapping.remove(key)

        for handle in handles:
            handle.cancel()
        for _, binding in entries:
            if binding.table_name:
                self._cache_engine.drop_table_quietly(binding.table_name)

        if handles or entries:
            logger.info(f"Removed {catalog}.{schema}: {len(handles)} scheduled refreshes cancelled, "
                        f"{len(entries)} bindings cleared")

    def scheduled_refresh_exists(self, key: SchemaKey) -> bool:
        with self._state_lock:
            return key in self._scheduled

    # ------------------------------------------------------------------
    # Temp artifacts
    # ------------------------------------------------------------------

    def _track(self, location: ExportLocation):
        with self._locations_lock:
            self._export_locations.add(location)

    def tracked_locations(self) -> List[ExportLocation]:
        with self._locations_lock:
            return list(self._export_locations)

    def release_one(self, location: ExportLocation) -> bool:
        """
        Delete one export location; no-op if it was already released.

        Returns:
            True if this call deleted the location
        """
        with self._locations_lock:
            if location not in self._export_locations:
                return False
            self._export_locations.discard(location)

        try:
            self._export_service.release(location)
        except Exception as e:
            logger.error(f"Failed to remove export {location.path}: {e}", exc_info=True)
        return True

    def clean_all(self) -> int:
        """
        Delete every tracked export location.

        Returns:
            Number of locations this call released
        """
        released = 0
        for location in self.tracked_locations():
            if self.release_one(location):
                released += 1
        if released:
            logger.info(f"Cleaned {released} export locations")
        return released

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, manifest: Manifest) -> TaskInfo:
        """Start a full refresh; returns its RUNNING TaskInfo immediately."""
        return self._start_refresh(manifest)

    def create_task_and_wait(self, manifest: Manifest) -> TaskInfo:
        """Start a full refresh and block until it is DONE."""
        info = self._start_refresh(manifest)
        completion = self._tasks.completion(info.task_id)
        if completion is None:
            raise PreAggregationError(StandardErrorCode.NOT_FOUND, f"Failed to create task {info.task_id}")
        completion.result()

        done = self._tasks.get(info.task_id)
        if done is None:
            raise PreAggregationError(StandardErrorCode.NOT_FOUND, f"Failed to create task {info.task_id}")
        return done

    def list_tasks(
        self,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
        in_progress: Optional[bool] = None
    ) -> Future:
        """Future resolving to the tasks matching every given filter."""
        return self._executor.submit(self._tasks.list, catalog, schema, in_progress)

    def get_task(self, task_id: str) -> Future:
        """Future resolving to the TaskInfo of task_id, or None if unknown."""
        if task_id is None:
            raise ValueError("task_id is required")
        return self._executor.submit(self._tasks.get, task_id)

    # ------------------------------------------------------------------
    # Bindings & queries
    # ------------------------------------------------------------------

    def get_binding(self, key: SchemaKey) -> Optional[PhysicalTableBinding]:
        return self.table_mapping.get(key)

    def list_bindings(self, catalog: str, schema: str) -> Dict[str, PhysicalTableBinding]:
        return {key.name: binding for key, binding in self.table_mapping.entries_for_schema(catalog, schema)}

    def query(self, sql: str, parameters: Optional[Sequence[Any]] = None) -> CacheResultReader:
        """Run sql directly against the cache engine, synchronously on the caller's thread."""
        return CacheResultReader.open(self._cache_engine, sql, parameters)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self):
        """Stop refreshing and remove leftover exports. Called once at process exit."""
        self._refresh_scheduler.shutdown()
        self._executor.shutdown(wait=False)
        try:
            self.clean_all()
        except Exception as e:
            logger.error(f"Failed to clean export locations: {e}", exc_info=True)
        if self._owns_cache_engine:
            self._cache_engine.close()
        logger.info("Pre-aggregation manager stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
