"""Tests for the delayed task scheduler."""

import threading
import time

import pytest

from peer.scheduler import Scheduler


@pytest.fixture
def scheduler():
    s = Scheduler(workers=2)
    yield s
    s.shutdown(wait=True)


def test_runs_after_delay(scheduler):
    done = threading.Event()
    started = time.monotonic()
    scheduler.schedule(0.1, done.set)

    assert done.wait(5.0)
    assert time.monotonic() - started >= 0.1


def test_passes_arguments(scheduler):
    results = []
    done = threading.Event()

    def record(a, b):
        results.append((a, b))
        done.set()

    scheduler.schedule(0, record, 1, 'x')
    assert done.wait(5.0)
    assert results == [(1, 'x')]


def test_cancel_before_start(scheduler):
    ran = threading.Event()
    task = scheduler.schedule(0.2, ran.set)

    assert task.cancel()
    assert task.cancelled
    assert not ran.wait(0.4)
    assert scheduler.pending_count() == 0


def test_failing_task_does_not_break_scheduler(scheduler):
    def boom():
        raise ValueError("boom")

    done = threading.Event()
    scheduler.schedule(0, boom)
    scheduler.schedule(0.05, done.set)
    assert done.wait(5.0)


def test_shutdown_cancels_pending_and_rejects_new():
    s = Scheduler(workers=1)
    ran = threading.Event()
    s.schedule(0.3, ran.set)
    s.shutdown(wait=True)

    assert not ran.wait(0.5)
    with pytest.raises(RuntimeError):
        s.schedule(0, ran.set)
