"""
Shared fakes for deterministic timing tests.
"""

from typing import Callable, List, Tuple

import pytest

from fusionscribe.scheduler import ScheduledTask, Scheduler


class FakeClock:
    """Monotonic clock driven by the test. Kept in whole milliseconds."""

    def __init__(self, start_ms: int = 1_000_000):
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms / 1000

    def advance_ms(self, ms: int) -> None:
        self.now_ms += ms


class ManualScheduler(Scheduler):
    """Scheduler whose tasks run only when the test advances it."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.tasks: List[Tuple[int, ScheduledTask]] = []

    def schedule(self, delay: float, fn: Callable[[], None]) -> ScheduledTask:
        task = ScheduledTask(fn)
        self.tasks.append((self.clock.now_ms + round(delay * 1000), task))
        return task

    @property
    def pending(self) -> List[ScheduledTask]:
        return [task for _, task in self.tasks if not task.cancelled and not task.fired]

    def advance_ms(self, ms: int) -> None:
        """Move the clock forward, running every task that comes due in order."""
        target = self.clock.now_ms + ms
        while True:
            due = [
                (when, i) for i, (when, task) in enumerate(self.tasks)
                if when <= target and not task.cancelled and not task.fired
            ]
            if not due:
                break
            when, i = min(due)
            self.clock.now_ms = max(self.clock.now_ms, when)
            self.tasks[i][1].run()
        self.clock.now_ms = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)
