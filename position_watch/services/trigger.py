"""Polling trigger: fixed interval or cron-style schedule expression."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from ..config import MonitorConfig

# crontab numbering: 0 and 7 are both Sunday
_DAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")
_NUMERIC_DAYS = re.compile(r"^(\*|\d+)(?:-(\d+))?(?:/(\d+))?$")


def _crontab_day_of_week(field: str) -> str:
    """Rewrite numeric crontab weekdays as names.

    APScheduler counts weekdays from Monday, crontab from Sunday. Numbers,
    ranges and steps are expanded to explicit day names; names and ``*`` are
    left for APScheduler to parse.

    Raises:
        ValueError: a weekday number outside 0-7 or a reversed range.
    """
    if field in ("*", "?"):
        return field

    names: list[str] = []
    for item in field.split(","):
        match = _NUMERIC_DAYS.match(item)
        if match is None:
            names.append(item)
            continue
        start, end, step = match.groups()
        if start == "*":
            first, last = 0, 6
        else:
            first = int(start)
            last = int(end) if end is not None else (7 if step else first)
        stride = int(step) if step else 1
        if not 0 <= first <= last <= 7 or stride < 1:
            raise ValueError(f"invalid day of week '{item}'")
        for day in range(first, last + 1, stride):
            name = _DAY_NAMES[day]
            if name not in names:
                names.append(name)
    return ",".join(names)


def build_cron_trigger(expression: str) -> CronTrigger:
    """Build a CronTrigger from a 5-field crontab or a 6-field one with leading seconds.

    Weekdays follow crontab numbering (0 or 7 is Sunday).

    Raises:
        ValueError: the expression has the wrong number of fields or an
            invalid field value.
    """
    parts = expression.split()
    if len(parts) == 5:
        parts = ["0", *parts]
    elif len(parts) != 6:
        raise ValueError(f"expected 5 or 6 fields, got {len(parts)}")
    second, minute, hour, day, month, day_of_week = parts
    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_crontab_day_of_week(day_of_week),
        timezone=timezone.utc,
    )


class Trigger:
    """Decides how long to wait before the next polling cycle."""

    def __init__(
        self, interval_seconds: float | None = None, schedule: str = ""
    ) -> None:
        self.interval_seconds = interval_seconds
        self.schedule = schedule
        self._cron = build_cron_trigger(schedule) if schedule else None
        if self._cron is None and (interval_seconds is None or interval_seconds <= 0):
            raise ValueError("Either a positive interval or a schedule is required")

    @classmethod
    def from_config(
        cls, config: MonitorConfig, interval_override: float | None = None
    ) -> Trigger:
        if interval_override:
            return cls(interval_seconds=interval_override)
        return cls(
            interval_seconds=config.poll_interval_seconds, schedule=config.schedule
        )

    def seconds_until_next(self, now: datetime | None = None) -> float:
        if self._cron is None:
            return float(self.interval_seconds)

        now = now or datetime.now(timezone.utc)
        # strictly after now, so a tick landing on a fire time does not repeat it
        next_fire = self._cron.get_next_fire_time(None, now + timedelta(microseconds=1))
        if next_fire is None:
            raise RuntimeError(f"Schedule '{self.schedule}' has no future fire time")
        return max(0.0, (next_fire - now).total_seconds())

    def describe(self) -> str:
        if self._cron is not None:
            return f"schedule '{self.schedule}'"
        return f"every {self.interval_seconds:g}s"
