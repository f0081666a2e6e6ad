"""Fixed-delay scheduler behaviour."""

import threading
import time
from datetime import timedelta

import pytest

from semcache.core.scheduler import FixedDelayScheduler
from conftest import wait_for


@pytest.fixture
def scheduler():
    scheduler = FixedDelayScheduler(workers=2, thread_name_prefix='test-refresh')
    yield scheduler
    scheduler.shutdown()


def test_job_repeats(scheduler):
    calls = []
    handle = scheduler.schedule_with_fixed_delay(lambda: calls.append(1), 0.01, 0.02, name='repeat')

    wait_for(lambda: len(calls) >= 3)
    assert handle.runs >= 3
    assert not handle.cancelled()


def test_timedelta_delays_accepted(scheduler):
    ran = threading.Event()
    scheduler.schedule_with_fixed_delay(ran.set, timedelta(milliseconds=10), timedelta(seconds=1))
    assert ran.wait(timeout=5)


def test_runs_never_overlap(scheduler):
    active = []
    overlaps = []
    lock = threading.Lock()

    def slow_job():
        with lock:
            active.append(1)
            if len(active) > 1:
                overlaps.append(len(active))
        time.sleep(0.03)
        with lock:
            active.pop()

    handle = scheduler.schedule_with_fixed_delay(slow_job, 0, 0.001)
    wait_for(lambda: handle.runs >= 5)
    assert overlaps == []


def test_cancel_purges_queue(scheduler):
    calls = []
    handle = scheduler.schedule_with_fixed_delay(lambda: calls.append(1), 60, 60)
    assert scheduler.queued() == 1

    assert handle.cancel() is True
    assert scheduler.queued() == 0
    assert handle.cancelled()
    assert handle.cancel() is False
    assert calls == []


def test_cancelled_job_is_not_rescheduled(scheduler):
    started = threading.Event()
    release = threading.Event()

    def job():
        started.set()
        release.wait(timeout=5)

    handle = scheduler.schedule_with_fixed_delay(job, 0, 0.01)
    assert started.wait(timeout=5)
    assert handle.running()

    handle.cancel()
    release.set()

    wait_for(lambda: not handle.running())
    time.sleep(0.05)
    assert handle.runs == 1
    assert scheduler.queued() == 0


def test_failing_job_keeps_its_schedule(scheduler):
    attempts = []

    def flaky():
        attempts.append(1)
        raise RuntimeError("boom")

    scheduler.schedule_with_fixed_delay(flaky, 0, 0.01)
    wait_for(lambda: len(attempts) >= 3)


def test_non_positive_delay_rejected(scheduler):
    with pytest.raises(ValueError):
        scheduler.schedule_with_fixed_delay(lambda: None, 0, 0)


def test_shutdown_rejects_new_jobs():
    scheduler = FixedDelayScheduler(workers=1)
    pending = scheduler.schedule_with_fixed_delay(lambda: None, 60, 60)

    scheduler.shutdown()
    scheduler.shutdown()

    assert pending.cancelled()
    assert scheduler.queued() == 0
    with pytest.raises(RuntimeError):
        scheduler.schedule_with_fixed_delay(lambda: None, 1, 1)
