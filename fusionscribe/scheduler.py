"""
Cancellable delayed actions.

Silence timeouts and recognizer restarts are scheduled through a Scheduler
so that every pending callback has a handle that stop() can cancel.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional


class ScheduledTask:
    """
    Handle for a delayed callback.

    cancel() is idempotent. Once cancelled the callback never runs, even if
    its timer thread has already woken up.
    """

    def __init__(self, fn: Callable[[], None]):
        self._fn = fn
        self._lock = threading.Lock()
        self._cancelled = False
        self._fired = False
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    def run(self) -> None:
        """Run the callback unless cancelled or already run."""
        with self._lock:
            if self._cancelled or self._fired:
                return
            self._fired = True
        try:
            self._fn()
        except Exception as e:
            print(f"[Scheduler] Task error: {e}")


class Scheduler(ABC):
    """Schedules callbacks to run after a delay."""

    @abstractmethod
    def schedule(self, delay: float, fn: Callable[[], None]) -> ScheduledTask:
        """
        Run `fn` after `delay` seconds.

        Returns:
            A ScheduledTask that can be cancelled
        """
        pass


class ThreadingScheduler(Scheduler):
    """Scheduler backed by daemon threading.Timer threads."""

    def schedule(self, delay: float, fn: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(fn)
        timer = threading.Timer(max(0.0, delay), task.run)
        timer.daemon = True
        task._timer = timer
        timer.start()
        return task
