"""
Cron expression handling for the sweep scheduler.

Accepts standard 5-field expressions (minute granularity), 6-field
expressions with a leading seconds field (``0 30 2 * * *``), the usual
``@daily``-style aliases, and fixed intervals written as
``@every <duration>`` with Go-style durations (``@every 1h30m``,
``@every 45s``). Cron parsing is delegated to croniter; this module only
normalises the field order and turns parse failures into CronError so they
can be reported as configuration errors at startup.
"""

import re
from datetime import datetime, timedelta

from croniter import croniter

_ALIASES = {"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}

_EVERY_PREFIX = "@every"
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class CronError(ValueError):
    """Invalid cron expression."""


def parse_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as ``1h30m``, ``45s`` or ``1.5h``.

    Raises:
        CronError: The text is not a valid positive duration.
    """
    text = text.strip()
    if not text:
        raise CronError("duration must not be empty")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise CronError(f"invalid duration: {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()

    if total <= 0:
        raise CronError(f"duration must be positive: {text!r}")
    return timedelta(seconds=total)


class CronSchedule:
    """A validated cron expression that can compute its next fire time.

    Usage:
        schedule = CronSchedule("0 2 * * *")
        next_run = schedule.next_after(datetime.now().astimezone())
    """

    def __init__(self, expression: str) -> None:
        if not isinstance(expression, str) or not expression.strip():
            raise CronError("cron expression must be a non-empty string")

        self.expression = expression.strip()
        self.interval: timedelta | None = None

        parts = self.expression.split(None, 1)
        if parts[0].lower() == _EVERY_PREFIX:
            # Intervals shorter than a second are clamped and sub-second parts dropped
            seconds = int(parse_duration(parts[1] if len(parts) > 1 else "").total_seconds())
            self.interval = timedelta(seconds=max(1, seconds))
            self._normalized = ""
            return

        self._normalized = self._normalize(self.expression)
        if not croniter.is_valid(self._normalized):
            raise CronError(f"invalid cron expression: {self.expression!r}")

    @property
    def has_seconds(self) -> bool:
        return self.interval is not None or len(self.expression.split()) == 6

    def next_after(self, moment: datetime) -> datetime:
        """Return the first fire time strictly after ``moment``.

        For ``@every`` schedules this is ``moment`` (truncated to the whole
        second) plus the interval. The result carries the same tzinfo as
        ``moment``.
        """
        if self.interval is not None:
            return moment.replace(microsecond=0) + self.interval
        return croniter(self._normalized, moment).get_next(datetime)

    @staticmethod
    def _normalize(expression: str) -> str:
        """Convert to croniter's field order.

        croniter expects seconds as the trailing sixth field, whereas the
        config format puts seconds first.
        """
        if expression.lower() in _ALIASES:
            return expression.lower()

        fields = expression.split()
        if len(fields) == 5:
            return " ".join(fields)
        if len(fields) == 6:
            return " ".join(fields[1:] + fields[:1])
        raise CronError(
            f"cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"
        )

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r})"
