"""
Scheduling for the Ennoblement Watcher pipeline.

Poll cycles are triggered at the fire times of a standard five-field cron
expression (minute hour day-of-month month day-of-week), computed with
croniter. A trigger that arrives while a cycle is still running is
discarded.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set

from croniter import CroniterError, croniter

from ennoblement_watcher.models import FilterConfig
from ennoblement_watcher.pipeline import PollCycle
from ennoblement_watcher.utils import get_logger


# Module logger
logger = get_logger("schedule")

DEFAULT_CRON_EXPRESSION = "*/5 * * * *"
CRON_FIELD_COUNT = 5


class CronSchedule:
    """
    A validated cron expression.

    Example:
        >>> schedule = CronSchedule.parse("*/5 * * * *")
        >>> schedule.next_after(datetime(2024, 12, 15, 14, 31))
        datetime.datetime(2024, 12, 15, 14, 35)
    """

    def __init__(self, expression: str):
        self.expression = expression

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        """
        Parse a five-field cron expression.

        Raises:
            ValueError: If the expression is malformed.
        """
        parts = (expression or "").split()
        if len(parts) != CRON_FIELD_COUNT:
            raise ValueError(
                f"Cron expression must have {CRON_FIELD_COUNT} fields, got {len(parts)}: '{expression}'"
            )

        normalized = " ".join(parts)
        if not croniter.is_valid(normalized):
            raise ValueError(f"Invalid cron expression: '{expression}'")

        return cls(normalized)

    def next_after(self, moment: datetime) -> datetime:
        """
        Return the first fire time strictly after moment.

        Raises:
            ValueError: If the expression never fires (e.g. "0 0 31 2 *").
        """
        try:
            return croniter(self.expression, moment).get_next(datetime)
        except CroniterError as e:
            raise ValueError(f"Cron expression '{self.expression}' never fires: {e}") from e


def is_valid_cron_expression(expression: str) -> bool:
    try:
        CronSchedule.parse(expression)
    except ValueError:
        return False
    return True


class Scheduler:
    """
    Triggers poll cycles at the times given by a cron schedule.

    Each cycle runs as a task so the loop keeps time while it executes;
    a fire time reached while the previous cycle is still in flight is
    discarded by PollCycle.trigger(). Failed cycles are logged and the
    loop carries on.

    Args:
        cycle: The poll cycle to trigger.
        schedule: Fire times.
        filter_source: Returns the filter configuration for each cycle.
        run_on_start: Trigger one cycle before waiting for the first fire time.
        max_runs: Stop after this many scheduled triggers (None runs forever).
        clock: Returns the current local time.
        sleep: Awaitable sleep used between fire times.
    """

    def __init__(
        self,
        cycle: PollCycle,
        schedule: CronSchedule,
        filter_source: Callable[[], Optional[FilterConfig]],
        run_on_start: bool = True,
        max_runs: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.cycle = cycle
        self.schedule = schedule
        self.filter_source = filter_source
        self.run_on_start = run_on_start
        self.max_runs = max_runs
        self._clock = clock
        self._sleep = sleep
        self._tasks: Set[asyncio.Task] = set()
        self.trigger_count = 0

    async def _run_cycle(self) -> None:
        try:
            summary = await self.cycle.trigger(self.filter_source())
        except Exception as e:
            logger.error(f"Scheduled poll cycle failed: {e}")
            return

        if summary is None:
            logger.info("Scheduled trigger skipped, previous cycle still running")

    def _spawn(self) -> asyncio.Task:
        self.trigger_count += 1
        task = asyncio.create_task(self._run_cycle())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_forever(self) -> None:
        logger.info(f"Scheduler started with '{self.schedule.expression}'")

        if self.run_on_start:
            self._spawn()
            # Let the first cycle start before the next trigger is evaluated
            await asyncio.sleep(0)

        runs = 0
        try:
            while self.max_runs is None or runs < self.max_runs:
                now = self._clock()
                fire_at = self.schedule.next_after(now)
                delay = max(0.0, (fire_at - now).total_seconds())
                logger.debug(f"Next poll cycle at {fire_at.isoformat()} (in {delay:.0f}s)")

                await self._sleep(delay)
                self._spawn()
                await asyncio.sleep(0)
                runs += 1
        finally:
            await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for all cycles started by the scheduler to finish."""
        pending: List[asyncio.Task] = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
