"""In-process registry mapping persisted schedules to live cron timers.

One APScheduler job per active schedule, keyed ``schedule:<uuid>``. Paused and
cancelled schedules have no job. Firing a job hands the schedule id to the
coordinator, which re-reads the persisted record before acting.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol
from zoneinfo import ZoneInfo

import structlog
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = structlog.get_logger()

# Crontab numbering: 0 (or 7) is Sunday. APScheduler numbers Monday as 0,
# so numeric day-of-week fields are rewritten with day names.
_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _expand_cron_field(field: str, low: int, high: int) -> set[int]:
    values: set[int] = set()
    for part in field.split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step < 1:
                raise ValueError(f"Invalid step in cron field '{field}'")
        if part == "*":
            start, end = low, high
        elif "-" in part:
            first, last = part.split("-", 1)
            start, end = int(first), int(last)
        else:
            start = int(part)
            end = high if step > 1 else start
        if start < low or end > high or start > end:
            raise ValueError(f"Cron field '{field}' out of range {low}-{high}")
        values.update(range(start, end + 1, step))
    return values


def _translate_day_of_week(field: str) -> str:
    if field in ("*", "?"):
        return "*"
    if any(char.isalpha() for char in field):
        return field.lower()  # 'mon-fri' means the same thing in both notations
    days = sorted({day % 7 for day in _expand_cron_field(field, 0, 7)})
    return ",".join(_DAY_NAMES[day] for day in days)


def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build an APScheduler trigger from a five-field crontab expression.

    Args:
        expression: ``minute hour day month day_of_week`` in crontab notation
        timezone: IANA timezone name the expression is evaluated in

    Returns:
        CronTrigger firing on the expression's schedule

    Raises:
        ValueError: If the expression or timezone is invalid
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Cron expression must have 5 fields, got '{expression}'")

    minute, hour, day, month, day_of_week = fields
    try:
        tz = ZoneInfo(timezone)
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{timezone}'") from e

    try:
        return CronTrigger(
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=tz,
        )
    except (KeyError, ValueError) as e:
        raise ValueError(f"Invalid cron expression '{expression}': {e}") from e


class TimerSpec(Protocol):
    """What the registry needs from a schedule record."""

    name: str
    cron_expression: str
    timezone: str


class TimerState(str, Enum):
    UNREGISTERED = "unregistered"
    ACTIVE = "active"
    PAUSED = "paused"


class ScheduleRegistry:
    """Live timers for active schedules, owned by the lifecycle coordinator."""

    JOB_PREFIX = "schedule:"

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        on_fire: Callable[[uuid.UUID], Awaitable[Any]],
        misfire_grace_time: int = 300,
    ) -> None:
        self._scheduler = scheduler
        self._on_fire = on_fire
        self._misfire_grace_time = misfire_grace_time
        self._paused: set[uuid.UUID] = set()

    @classmethod
    def job_id(cls, schedule_id: uuid.UUID) -> str:
        return f"{cls.JOB_PREFIX}{schedule_id}"

    def register(self, schedule_id: uuid.UUID, record: TimerSpec) -> Job:
        """
        Install the timer for a schedule.

        An existing timer with the same id is swapped in place, so this is also
        the implementation of ``replace`` and ``resume``.

        Raises:
            ValueError: If the record's cron expression or timezone is invalid
        """
        trigger = build_cron_trigger(record.cron_expression, record.timezone)
        job = self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[schedule_id],
            id=self.job_id(schedule_id),
            name=record.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self._misfire_grace_time,
        )
        self._paused.discard(schedule_id)

        logger.info(
            "schedule.timer_installed",
            schedule_id=str(schedule_id),
            cron=record.cron_expression,
            timezone=record.timezone,
        )
        return job

    def replace(self, schedule_id: uuid.UUID, record: TimerSpec) -> Job:
        """Swap the timer for one built from the updated record."""
        # add_job(replace_existing=True) updates the stored job under the
        # scheduler's job store lock; the old trigger cannot fire afterwards.
        return self.register(schedule_id, record)

    def pause(self, schedule_id: uuid.UUID) -> None:
        """Tear down the timer but remember the schedule as paused."""
        self._remove_job(schedule_id)
        self._paused.add(schedule_id)
        logger.info("schedule.timer_paused", schedule_id=str(schedule_id))

    def resume(self, schedule_id: uuid.UUID, record: TimerSpec) -> Job:
        return self.register(schedule_id, record)

    def cancel(self, schedule_id: uuid.UUID) -> None:
        """Tear down the timer and forget the schedule."""
        self._remove_job(schedule_id)
        self._paused.discard(schedule_id)
        logger.info("schedule.timer_cancelled", schedule_id=str(schedule_id))

    def state(self, schedule_id: uuid.UUID) -> TimerState:
        if self.is_registered(schedule_id):
            return TimerState.ACTIVE
        if schedule_id in self._paused:
            return TimerState.PAUSED
        return TimerState.UNREGISTERED

    def is_registered(self, schedule_id: uuid.UUID) -> bool:
        return self._scheduler.get_job(self.job_id(schedule_id)) is not None

    def registered_ids(self) -> set[uuid.UUID]:
        """Schedule ids that currently own a live timer."""
        ids = set()
        for job in self._scheduler.get_jobs():
            if job.id.startswith(self.JOB_PREFIX):
                ids.add(uuid.UUID(job.id[len(self.JOB_PREFIX):]))
        return ids

    def get_trigger(self, schedule_id: uuid.UUID) -> CronTrigger | None:
        job = self._scheduler.get_job(self.job_id(schedule_id))
        return job.trigger if job else None

    def next_run_time(self, schedule_id: uuid.UUID) -> datetime | None:
        job = self._scheduler.get_job(self.job_id(schedule_id))
        return getattr(job, "next_run_time", None) if job else None

    def _remove_job(self, schedule_id: uuid.UUID) -> None:
        try:
            self._scheduler.remove_job(self.job_id(schedule_id))
        except JobLookupError:
            pass  # already gone

    async def _fire(self, schedule_id: uuid.UUID) -> None:
        logger.info("schedule.timer_fired", schedule_id=str(schedule_id))
        try:
            await self._on_fire(schedule_id)
        except Exception:
            # A failing run must not take the timer down with it
            logger.exception("schedule.run_failed", schedule_id=str(schedule_id))
