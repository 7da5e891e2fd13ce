"""Scheduled trigger driven by five-field cron expressions.

Uses croniter to compute fire times. Expressions that pass validation but
that croniter rejects, or triggers configured with ``approximate``, run on a
coarse fixed interval instead (no wall-clock alignment).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import asyncio
import logging

from croniter import croniter

from flowline.triggers.base import BaseTrigger

logger = logging.getLogger(__name__)

DEFAULT_RULE = "0 * * * *"
DEFAULT_TIMEZONE = "UTC"

FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)

WEEKDAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

COMMON_DESCRIPTIONS = {
    "0 * * * *": "Every hour",
    "*/5 * * * *": "Every 5 minutes",
    "0 0 * * *": "Daily at midnight",
    "0 9 * * 1-5": "Weekdays at 9:00 AM",
    "0 0 * * 0": "Weekly on Sunday at midnight",
    "0 0 1 * *": "Monthly on the 1st at midnight",
}


def _check_number(text: str, low: int, high: int, field: str) -> int:
    if not text.isdigit():
        raise ValueError(f"{field}: '{text}' is not a number")
    value = int(text)
    if not low <= value <= high:
        raise ValueError(f"{field}: {value} is outside {low}-{high}")
    return value


def _check_field(text: str, low: int, high: int, field: str) -> None:
    if text == "*":
        return

    if "/" in text:
        base, _, step = text.partition("/")
        if not step.isdigit() or int(step) <= 0:
            raise ValueError(f"{field}: step must be a positive integer")
        if int(step) > high:
            raise ValueError(f"{field}: step {step} is larger than {high}")
        if base != "*":
            _check_field(base, low, high, field)
        return

    if "," in text:
        for part in text.split(","):
            _check_field(part, low, high, field)
        return

    if "-" in text:
        start, _, end = text.partition("-")
        if _check_number(start, low, high, field) > _check_number(end, low, high, field):
            raise ValueError(f"{field}: range start is after range end")
        return

    _check_number(text, low, high, field)


def validate_schedule_expression(expression: str) -> None:
    """Validate a five-field schedule expression.

    Raises:
        ValueError: Describing the first invalid field
    """
    if not isinstance(expression, str):
        raise ValueError("Schedule expression must be a string")
    # fields are separated by single spaces
    parts = expression.split(" ")
    if len(parts) != 5:
        raise ValueError(f"Expected 5 fields, got {len(parts)}")
    for text, (field, low, high) in zip(parts, FIELDS):
        _check_field(text, low, high, field)


def is_valid_schedule_expression(expression: str) -> bool:
    try:
        validate_schedule_expression(expression)
    except ValueError:
        return False
    return True


def describe_schedule(expression: str) -> str:
    """Human-readable description of a schedule expression."""
    parts = expression.split(" ") if isinstance(expression, str) else []
    if len(parts) != 5:
        return "Invalid schedule expression"

    normalized = " ".join(parts)
    if normalized in COMMON_DESCRIPTIONS:
        return COMMON_DESCRIPTIONS[normalized]

    minute, hour, day, month, weekday = parts
    description = "At every minute" if minute == "*" else f"At minute {minute}"
    if hour != "*":
        description += f" of hour {hour}"
    if day != "*":
        description += f" on day {day}"
    if month != "*":
        description += f" of month {month}"
    if weekday != "*":
        names = [
            WEEKDAYS[int(value)] if value.isdigit() and int(value) < len(WEEKDAYS) else value
            for value in weekday.split(",")
        ]
        description += f" on {', '.join(names)}"
    return description


def fallback_interval(expression: str) -> timedelta:
    """Coarse cadence used when exact scheduling is unavailable."""
    parts = expression.split()
    if len(parts) != 5:
        return timedelta(minutes=1)
    minute, hour = parts[0], parts[1]
    if minute == "*" and hour == "*":
        return timedelta(minutes=1)
    if minute != "*" and hour == "*":
        return timedelta(hours=1)
    if minute != "*" and hour != "*":
        return timedelta(days=1)
    return timedelta(hours=1)


class CronSchedule:
    """Exact fire times computed by croniter."""

    exact = True

    def __init__(self, expression: str):
        # raises ValueError subclasses on expressions croniter cannot handle
        croniter(expression)
        self.expression = expression

    def next_after(self, moment: datetime) -> datetime:
        return croniter(self.expression, moment).get_next(datetime)


@dataclass
class IntervalSchedule:
    """Fixed-cadence approximation of a schedule."""

    interval: timedelta
    exact = False

    def next_after(self, moment: datetime) -> datetime:
        return moment + self.interval


def build_schedule(expression: str, approximate: bool = False):
    """CronSchedule when possible, otherwise an IntervalSchedule."""
    if not approximate:
        try:
            return CronSchedule(expression)
        except (ValueError, KeyError) as e:
            logger.warning("croniter rejected '%s' (%s), using interval fallback", expression, e)
    return IntervalSchedule(fallback_interval(expression))


class ScheduleTrigger(BaseTrigger):
    """Fire on a cron-style schedule.

    Parameters:
        rule: Five-field expression (default "0 * * * *")
        timezone: IANA zone the expression is evaluated in (default "UTC")
        approximate: Force the coarse interval fallback

    Example:
        >>> trigger = ScheduleTrigger("weekday_report", {
        ...     "rule": "0 9 * * 1-5",
        ...     "timezone": "Europe/Berlin",
        ... })
        >>> trigger.describe()
        'Weekdays at 9:00 AM'
    """

    type = "scheduleTrigger"

    def __init__(self, *args, **kwargs):
        self._task: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()
        super().__init__(*args, **kwargs)
        self.schedule = build_schedule(self.expression, bool(self.get_parameter("approximate", False)))

    def validate_parameters(self) -> None:
        validate_schedule_expression(self.expression)
        try:
            ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {self.timezone_name}") from e

    @property
    def expression(self) -> str:
        return self.get_parameter("rule", DEFAULT_RULE)

    @property
    def timezone_name(self) -> str:
        return self.get_parameter("timezone", DEFAULT_TIMEZONE)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    def describe(self) -> str:
        return describe_schedule(self.expression)

    def next_fire_time(self, after: Optional[datetime] = None) -> datetime:
        return self.schedule.next_after(after or datetime.now(self.tz))

    def next_fire_times(self, count: int = 5, after: Optional[datetime] = None) -> List[datetime]:
        times = []
        moment = after or datetime.now(self.tz)
        for _ in range(count):
            moment = self.schedule.next_after(moment)
            times.append(moment)
        return times

    async def update_schedule(self, expression: str) -> None:
        """Replace the expression, rescheduling if the trigger is running.

        Raises:
            ValueError: If the expression is invalid (nothing changes)
        """
        validate_schedule_expression(expression)
        self.parameters["rule"] = expression
        self.schedule = build_schedule(expression, bool(self.get_parameter("approximate", False)))
        logger.info("Trigger %s schedule updated to '%s'", self.id, expression)

        if self.is_running:
            await self._cancel_loop()
            self._task = asyncio.create_task(self._run_loop())

    async def _start_trigger(self) -> None:
        if not self.schedule.exact:
            logger.warning(
                "Trigger %s uses interval fallback for '%s'; fire times are approximate",
                self.id, self.expression,
            )
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Trigger %s scheduled: %s (%s)", self.id, self.describe(), self.timezone_name)

    async def _stop_trigger(self) -> None:
        await self._cancel_loop()
        await self._cancel_ticks()

    async def _cancel_loop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cancel_ticks(self) -> None:
        ticks = list(self._ticks)
        for tick in ticks:
            tick.cancel()
        await asyncio.gather(*ticks, return_exceptions=True)
        self._ticks.clear()

    async def _run_loop(self) -> None:
        while True:
            now = datetime.now(self.tz)
            scheduled = self.schedule.next_after(now)
            await asyncio.sleep(max((scheduled - now).total_seconds(), 0))
            # a slow fan-out must not hold back the next tick
            tick = asyncio.create_task(
                self.fire_trigger(
                    self.trigger_output(
                        schedule_expression=self.expression,
                        timezone=self.timezone_name,
                        scheduled_time=scheduled.isoformat(),
                    )
                )
            )
            self._ticks.add(tick)
            tick.add_done_callback(self._tick_done)

    def _tick_done(self, tick: asyncio.Task) -> None:
        self._ticks.discard(tick)
        if not tick.cancelled() and tick.exception() is not None:
            logger.error(
                "Scheduled tick of trigger %s failed", self.id, exc_info=tick.exception()
            )

    async def _test_trigger(self) -> Dict[str, Any]:
        return {
            "schedule_expression": self.expression,
            "timezone": self.timezone_name,
            "next_fire_time": self.next_fire_time().isoformat(),
            "is_valid": is_valid_schedule_expression(self.expression),
            "description": self.describe(),
        }
