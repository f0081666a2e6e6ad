#!/usr/bin/env python3
"""
Fixed-delay scheduler for recurring pre-aggregation refreshes

A single dispatcher thread keeps a heap of due jobs and hands them to a small
fixed worker pool. Each job is re-queued only after its run completes, with
the next run due `delay` later, so slow refreshes never overlap or pile up.

Cancelled handles are purged from the heap immediately (remove-on-cancel).
A run already executing when its handle is cancelled finishes, but is never
rescheduled.
"""

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Callable, List, Optional, Union

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

Delay = Union[float, timedelta]


def _seconds(delay: Delay) -> float:
    if isinstance(delay, timedelta):
        return delay.total_seconds()
    return float(delay)


class ScheduledRefreshHandle:
    """Handle to one recurring job."""

    def __init__(self, scheduler: 'FixedDelayScheduler', fn: Callable[[], None], delay: float, name: str):
        self._scheduler = scheduler
        self.fn = fn
        self.delay = delay
        self.name = name
        self.runs = 0
        self._cancelled = threading.Event()
        self._running = threading.Lock()

    def cancel(self) -> bool:
        """
        Stop future runs and drop the job from the scheduler queue.

        Returns:
            False if the handle was already cancelled
        """
        if self._cancelled.is_set():
            return False
        self._cancelled.set()
        self._scheduler._purge(self)
        return True

    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def running(self) -> bool:
        return self._running.locked()

    def __repr__(self):
        state = 'cancelled' if self.cancelled() else 'scheduled'
        return f"ScheduledRefreshHandle({self.name}, every {self.delay}s, runs={self.runs}, {state})"


class FixedDelayScheduler:
    """
    Runs recurring jobs with fixed-delay semantics on a bounded worker pool.

    Usage:
        scheduler = FixedDelayScheduler(workers=5)
        handle = scheduler.schedule_with_fixed_delay(job, initial_delay=60, delay=60)
        ...
        handle.cancel()
        scheduler.shutdown()
    """

    def __init__(self, workers: int = 5, thread_name_prefix: str = 'pre-aggregation-refresh'):
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=thread_name_prefix)
        self._queue: List = []          # heap of (due, seq, handle)
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._shutdown = False

        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name=f"{thread_name_prefix}-dispatcher",
            daemon=True
        )
        self._dispatcher.start()

    def schedule_with_fixed_delay(
        self,
        fn: Callable[[], None],
        initial_delay: Delay,
        delay: Delay,
        name: Optional[str] = None
    ) -> ScheduledRefreshHandle:
        """
        Run fn after initial_delay, then again `delay` after each run completes.

        Args:
            fn: Job to run; exceptions are logged and do not stop the schedule
            initial_delay: Seconds (or timedelta) before the first run
            delay: Seconds (or timedelta) between the end of one run and the next start
            name: Label for logging

        Returns:
            Handle used to cancel the job
        """
        delay_seconds = _seconds(delay)
        if delay_seconds <= 0:
            raise ValueError(f"delay must be positive, got {delay}")

        handle = ScheduledRefreshHandle(self, fn, delay_seconds, name or getattr(fn, '__name__', 'job'))
        with self._condition:
            if self._shutdown:
                raise RuntimeError("Scheduler has been shut down")
            self._push(handle, time.monotonic() + _seconds(initial_delay))
        return handle

    def queued(self) -> int:
        """Number of jobs waiting for their next run."""
        with self._condition:
            return len(self._queue)

    def _push(self, handle: ScheduledRefreshHandle, due: float):
        heapq.heappush(self._queue, (due, next(self._sequence), handle))
        self._condition.notify()

    def _purge(self, handle: ScheduledRefreshHandle):
        with self._condition:
            remaining = [entry for entry in self._queue if entry[2] is not handle]
            if len(remaining) != len(self._queue):
                heapq.heapify(remaining)
                self._queue = remaining
                self._condition.notify()

    def _dispatch_loop(self):
        while True:
            with self._condition:
                while not self._shutdown:
                    if not self._queue:
                        self._condition.wait()
                        continue
                    due = self._queue[0][0]
                    now = time.monotonic()
                    if due <= now:
                        break
                    self._condition.wait(due - now)
                if self._shutdown:
                    return
                _, _, handle = heapq.heappop(self._queue)

            if handle.cancelled():
                continue
            try:
                self._executor.submit(self._run, handle)
            except RuntimeError:
                # Executor shut down between the check and submit
                return

    def _run(self, handle: ScheduledRefreshHandle):
        with handle._running:
            if handle.cancelled():
                return
            try:
                handle.fn()
            except Exception as e:
                logger.error(f"Scheduled job {handle.name} failed: {e}", exc_info=True)
            finally:
                handle.runs += 1

        with self._condition:
            if not handle.cancelled() and not self._shutdown:
                self._push(handle, time.monotonic() + handle.delay)

    def shutdown(self, wait: bool = False):
        """Stop dispatching; queued jobs never run again."""
        with self._condition:
            if self._shutdown:
                return
            self._shutdown = True
            pending = [entry[2] for entry in self._queue]
            self._queue = []
            self._condition.notify_all()

        for handle in pending:
            handle._cancelled.set()
        self._executor.shutdown(wait=wait)
        self._dispatcher.join(timeout=1.0)
        logger.info(f"Refresh scheduler stopped ({len(pending)} pending jobs discarded)")
