"""Cron-driven workflow triggers.

Expressions may have 5 fields (minute precision) or 6 fields with a leading
seconds field, e.g. ``"0 */30 12-23 * * 2-6"``. Times are evaluated in UTC.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
from typing import Any

from croniter import croniter

from .errors import WorkflowValidationError

logger = logging.getLogger(__name__)

Trigger = Callable[[str], Awaitable[Any]]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class CronSchedule:
    expression: str
    croniter_expression: str

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        fields = expression.split()
        if len(fields) == 6:
            # croniter expects seconds last.
            fields = [*fields[1:], fields[0]]
        elif len(fields) != 5:
            raise WorkflowValidationError(
                f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"
            )
        normalized = " ".join(fields)
        if not croniter.is_valid(normalized):
            raise WorkflowValidationError(f"Invalid cron expression: {expression!r}")
        return cls(expression=expression, croniter_expression=normalized)

    def next_after(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return croniter(self.croniter_expression, moment).get_next(datetime)


class Scheduler:
    """Holds one cron binding per workflow name.

    Every firing calls ``trigger(name)`` in its own task, so a slow execution
    never delays the next tick of any binding.
    """

    def __init__(
        self,
        trigger: Trigger,
        *,
        now: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._trigger = trigger
        self._now = now
        self._sleep = sleep
        self._bindings: dict[str, CronSchedule] = {}
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._firings: set[asyncio.Task[Any]] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def bindings(self) -> dict[str, str]:
        return {name: schedule.expression for name, schedule in self._bindings.items()}

    def bind(self, name: str, expression: str) -> CronSchedule:
        """Bind ``name`` to a schedule, replacing any existing binding."""

        schedule = CronSchedule.parse(expression)
        self.unbind(name)
        self._bindings[name] = schedule
        if self._running:
            self._start_loop(name, schedule)
        logger.info("Schedule bound", extra={"workflow": name, "schedule": expression})
        return schedule

    def unbind(self, name: str) -> None:
        self._bindings.pop(name, None)
        loop_task = self._loops.pop(name, None)
        if loop_task is not None:
            loop_task.cancel()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for name, schedule in self._bindings.items():
            self._start_loop(name, schedule)

    async def stop(self) -> None:
        """Cancel every binding loop and any firing still in flight."""

        self._running = False
        tasks = [*self._loops.values(), *self._firings]
        self._loops.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._firings.clear()

    def _start_loop(self, name: str, schedule: CronSchedule) -> None:
        self._loops[name] = asyncio.get_running_loop().create_task(
            self._run(name, schedule), name=f"schedule:{name}"
        )

    async def _run(self, name: str, schedule: CronSchedule) -> None:
        previous: datetime | None = None
        while True:
            now = self._now()
            # An early wake-up must not fire the same tick twice.
            base = now if previous is None or now > previous else previous
            fire_at = schedule.next_after(base)
            await self._sleep(max((fire_at - now).total_seconds(), 0.0))
            previous = fire_at
            self._fire(name)

    def _fire(self, name: str) -> None:
        logger.info("Schedule fired", extra={"workflow": name})
        task = asyncio.get_running_loop().create_task(self._trigger(name), name=f"scheduled:{name}")
        self._firings.add(task)
        task.add_done_callback(partial(self._firing_done, name))

    def _firing_done(self, name: str, task: asyncio.Task[Any]) -> None:
        self._firings.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled workflow failed", extra={"workflow": name}, exc_info=exc)
