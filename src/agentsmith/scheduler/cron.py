"""Five-field cron parsing and next-run computation for time-based behaviours."""

from dataclasses import dataclass
from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def parse_cron_part(part: str, minimum: int, maximum: int) -> set[int]:
    if part == "*":
        return set(range(minimum, maximum + 1))
    values: set[int] = set()
    for token in part.split(","):
        if token.startswith("*/"):
            step = int(token[2:])
            if step <= 0:
                raise ValueError(f"invalid cron step: {token}")
            values.update(range(minimum, maximum + 1, step))
            continue
        if "-" in token:
            left, right = token.split("-", 1)
            values.update(range(int(left), int(right) + 1))
            continue
        values.add(int(token))
    out_of_range = [value for value in values if value < minimum or value > maximum]
    if out_of_range:
        raise ValueError(f"cron value out of range: {part}")
    return values


@dataclass(frozen=True, slots=True)
class CronSpec:
    minutes: tuple[int, ...]
    hours: tuple[int, ...]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]

    @classmethod
    def parse(cls, cron_expr: str) -> "CronSpec":
        parts = cron_expr.split()
        if len(parts) != 5:
            raise ValueError(f"unsupported cron expression: {cron_expr}")
        minute, hour, dom, month, dow = parts
        # 7 is an alias for Sunday.
        weekdays = {value % 7 for value in parse_cron_part(dow, 0, 7)}
        return cls(
            minutes=tuple(sorted(parse_cron_part(minute, 0, 59))),
            hours=tuple(sorted(parse_cron_part(hour, 0, 23))),
            days=frozenset(parse_cron_part(dom, 1, 31)),
            months=frozenset(parse_cron_part(month, 1, 12)),
            weekdays=frozenset(weekdays),
        )

    def matches_day(self, day: datetime) -> bool:
        current_dow = (day.weekday() + 1) % 7
        return day.day in self.days and day.month in self.months and current_dow in self.weekdays

    def matches(self, slot: datetime) -> bool:
        return self.matches_day(slot) and slot.hour in self.hours and slot.minute in self.minutes


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {name}") from exc


def next_run_after(
    cron_expr: str,
    after: datetime,
    *,
    timezone: str = "UTC",
    lookahead_days: int = 366,
) -> datetime | None:
    """First slot strictly after ``after`` matching ``cron_expr``, as a UTC datetime.

    ``@every:N`` runs N seconds after ``after``. Returns None when nothing
    matches within ``lookahead_days`` (e.g. ``0 0 31 2 *``) or the next slot
    falls outside the representable date range. Raises ValueError for
    malformed expressions or unknown timezones.
    """
    if after.tzinfo is None:
        after = after.replace(tzinfo=UTC)
    if cron_expr.startswith("@every:"):
        seconds = max(1, int(cron_expr.split(":", 1)[1].strip()))
        try:
            return (after + timedelta(seconds=seconds)).astimezone(UTC)
        except OverflowError:
            return None

    spec = CronSpec.parse(cron_expr)
    zone = resolve_timezone(timezone)
    try:
        return _scan(spec, after.astimezone(zone), zone, lookahead_days)
    except OverflowError:
        return None


def _scan(
    spec: CronSpec, local_after: datetime, zone: ZoneInfo, lookahead_days: int
) -> datetime | None:
    start = local_after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    horizon = start + timedelta(days=lookahead_days)

    day = start.replace(hour=0, minute=0)
    while day <= horizon:
        if spec.matches_day(day):
            for hour in spec.hours:
                for minute in spec.minutes:
                    candidate = datetime.combine(day.date(), time(hour, minute), tzinfo=zone)
                    if start <= candidate <= horizon:
                        return candidate.astimezone(UTC)
        day += timedelta(days=1)
    return None
