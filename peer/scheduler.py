"""Cancellable delayed tasks for timed protocol replies."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Set

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle of a delayed task."""

    def __init__(self, scheduler: 'Scheduler', delay: float, fn: Callable, args: tuple):
        self._scheduler = scheduler
        self._fn = fn
        self._args = args
        self._lock = threading.Lock()
        self._cancelled = False
        self._started = False
        self._timer = threading.Timer(delay, self._submit)
        self._timer.daemon = True

    def cancel(self) -> bool:
        """
        Prevent the task from running.

        Returns:
            True if the task had not started yet
        """
        with self._lock:
            if self._started:
                return False
            self._cancelled = True
        self._timer.cancel()
        self._scheduler._discard(self)
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _start_timer(self) -> None:
        self._timer.start()

    def _submit(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._started = True
        try:
            self._scheduler._executor.submit(self._run)
        except RuntimeError:
            logger.debug("Scheduler shut down, dropping task")
            self._scheduler._discard(self)

    def _run(self) -> None:
        try:
            self._fn(*self._args)
        except Exception as e:
            logger.error(f"Scheduled task {getattr(self._fn, '__name__', self._fn)} failed: {e}", exc_info=True)
        finally:
            self._scheduler._discard(self)


class Scheduler:
    """
    Runs tasks after a delay on a bounded worker pool.

    The timer only hands the task over; the work itself never runs on a
    timer thread, so long replies cannot delay other timers.
    """

    def __init__(self, workers: int, name: str = "scheduler"):
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._pending: Set[ScheduledTask] = set()
        self._closed = False

    def schedule(self, delay: float, fn: Callable, *args) -> ScheduledTask:
        """
        Run fn(*args) after delay seconds.

        Returns:
            Handle that can cancel the task before it starts

        Raises:
            RuntimeError: If the scheduler was shut down
        """
        task = ScheduledTask(self, max(0.0, delay), fn, args)
        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler is shut down")
            self._pending.add(task)
        task._start_timer()
        return task

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _discard(self, task: ScheduledTask) -> None:
        with self._lock:
            self._pending.discard(task)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            pending = list(self._pending)
        for task in pending:
            task.cancel()
        self._executor.shutdown(wait=wait)
