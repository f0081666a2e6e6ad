#!/usr/bin/env python3
"""
Refresh tasks - one record per full-schema refresh cycle

A task is RUNNING from the moment its refresh passes the "already running"
guard until every initial materialization of the cycle has completed, then
DONE, whatever the individual outcomes. Tasks stay in memory for inspection
for the lifetime of the process.
"""

import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional


class TaskStatus(Enum):
    RUNNING = 'RUNNING'
    DONE = 'DONE'


@dataclass(frozen=True)
class PreAggregationTable:
    """Outcome of one definition at the end of a cycle."""
    name: str
    error_message: Optional[str]
    refresh_time: timedelta
    create_time: datetime


@dataclass
class TaskInfo:
    task_id: str
    catalog: str
    schema: str
    status: TaskStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    pre_aggregation_tables: List[PreAggregationTable] = field(default_factory=list)

    @property
    def in_progress(self) -> bool:
        return self.status is TaskStatus.RUNNING

    def snapshot(self) -> 'TaskInfo':
        return replace(self, pre_aggregation_tables=list(self.pre_aggregation_tables))


class TaskRegistry:
    """Thread-safe store of TaskInfo records; reads return snapshots."""

    def __init__(self):
        self._tasks: Dict[str, TaskInfo] = {}
        self._done: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def register(self, catalog: str, schema: str) -> TaskInfo:
        """Create a RUNNING task for catalog.schema."""
        info = TaskInfo(
            task_id=str(uuid.uuid4()),
            catalog=catalog,
            schema=schema,
            status=TaskStatus.RUNNING,
            start_time=datetime.now(timezone.utc),
        )
        with self._lock:
            self._tasks[info.task_id] = info
            self._done[info.task_id] = Future()
            return info.snapshot()

    def complete(self, task_id: str, tables: List[PreAggregationTable]) -> TaskInfo:
        """Record the cycle outcome and mark the task DONE (terminal)."""
        with self._lock:
            info = self._tasks[task_id]
            info.pre_aggregation_tables = list(tables)
            info.end_time = datetime.now(timezone.utc)
            info.status = TaskStatus.DONE
            snapshot = info.snapshot()
            done = self._done[task_id]
        if not done.done():
            done.set_result(snapshot)
        return snapshot

    def completion(self, task_id: str) -> Optional[Future]:
        """Future resolving to the DONE snapshot of task_id."""
        with self._lock:
            return self._done.get(task_id)

    def get(self, task_id: str) -> Optional[TaskInfo]:
        with self._lock:
            info = self._tasks.get(task_id)
            return info.snapshot() if info else None

    def list(
        self,
        catalog: Optional[str] = None,
        schema: Optional[str] = None,
        in_progress: Optional[bool] = None
    ) -> List[TaskInfo]:
        """
        Tasks matching every given filter, oldest first.

        Args:
            catalog: Only tasks of this catalog (None/"" = any)
            schema: Only tasks of this schema (None/"" = any)
            in_progress: True = RUNNING only, False = DONE only, None = both
        """
        with self._lock:
            tasks = [
                info.snapshot()
                for info in self._tasks.values()
                if (not catalog or info.catalog == catalog)
                and (not schema or info.schema == schema)
                and (in_progress is None or info.in_progress == in_progress)
            ]
        return sorted(tasks, key=lambda t: t.start_time)

    def __len__(self):
        with self._lock:
            return len(self._tasks)
