"""
Pro-Move Sequencer
Week Anchor Calculator.

Converts an instant plus a site calendar (time zone, program start Monday,
cycle length) into the week/cycle identifiers and the named boundary
instants of that week. All arithmetic happens on local calendar dates; week
starts are plain ``date`` values so equality never depends on UTC offsets
or DST transitions.

    Mon 00:00   check-in open
    Tue 23:59   confidence deadline
    Thu 00:00   performance window open
    Fri 23:59   performance deadline
    next Mon 00:01   rollover instant
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sequencer.core.exceptions import InvalidSiteCalendarError

MIN_CYCLE_LENGTH = 1
MAX_CYCLE_LENGTH = 12


@dataclass(frozen=True)
class PolicyOffsets:
    """(days after Monday, local time) for each anchor of a week."""

    checkin_open: tuple = (0, time(0, 0))
    confidence_deadline: tuple = (1, time(23, 59, 59))
    performance_open: tuple = (3, time(0, 0))
    performance_deadline: tuple = (4, time(23, 59, 59))
    rollover: tuple = (7, time(0, 1))


DEFAULT_OFFSETS = PolicyOffsets()


def get_zone(tz) -> ZoneInfo:
    """Resolve an IANA name (or pass a ZoneInfo through)."""
    if isinstance(tz, ZoneInfo):
        return tz
    try:
        return ZoneInfo(str(tz))
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidSiteCalendarError(
            f"Unknown time zone {tz!r}", details={"timezone": str(tz)}
        ) from exc


def _aware(instant: datetime) -> datetime:
    return instant if instant.tzinfo else instant.replace(tzinfo=timezone.utc)


def week_start_for(instant: datetime, tz) -> date:
    """Monday (local calendar date) of the week containing *instant*."""
    local = _aware(instant).astimezone(get_zone(tz)).date()
    return local - timedelta(days=local.weekday())


def _at(week_start: date, offset, zone: ZoneInfo) -> datetime:
    days, local_time = offset
    return datetime.combine(week_start + timedelta(days=days), local_time, tzinfo=zone)


@dataclass(frozen=True)
class WeekAnchors:
    week_start: date
    cycle: int
    week_in_cycle: int
    weeks_since_start: int
    program_started: bool
    timezone: str
    checkin_open: datetime
    confidence_deadline: datetime
    performance_open: datetime
    performance_deadline: datetime
    rollover_at: datetime
    program_start_date: date = field(repr=False, default=None)
    cycle_length: int = field(repr=False, default=6)
    offsets: PolicyOffsets = field(repr=False, default=DEFAULT_OFFSETS)

    @property
    def previous_week_start(self) -> date:
        return self.week_start - timedelta(weeks=1)

    def is_confidence_late(self, at: datetime) -> bool:
        return _aware(at) > self.confidence_deadline

    def is_performance_open(self, at: datetime) -> bool:
        return _aware(at) >= self.performance_open

    def is_performance_late(self, at: datetime) -> bool:
        return _aware(at) > self.performance_deadline

    def shifted(self, weeks: int) -> "WeekAnchors":
        """Anchors of the week *weeks* away from this one."""
        return anchors_for_week(
            self.week_start + timedelta(weeks=weeks), self.timezone,
            self.program_start_date, self.cycle_length, self.offsets,
        )

    def to_dict(self):
        return {
            "week_start": self.week_start.isoformat(),
            "cycle": self.cycle,
            "week_in_cycle": self.week_in_cycle,
            "weeks_since_start": self.weeks_since_start,
            "program_started": self.program_started,
            "timezone": self.timezone,
            "checkin_open": self.checkin_open.isoformat(),
            "confidence_deadline": self.confidence_deadline.isoformat(),
            "performance_open": self.performance_open.isoformat(),
            "performance_deadline": self.performance_deadline.isoformat(),
            "rollover_at": self.rollover_at.isoformat(),
        }


def anchors_for_week(week_start: date, tz, program_start_date: date,
                     cycle_length: int, offsets: PolicyOffsets = DEFAULT_OFFSETS) -> WeekAnchors:
    zone = get_zone(tz)
    weeks_since_start = (week_start - program_start_date).days // 7
    program_started = weeks_since_start >= 0
    # Before the program starts everything reads as cycle 1, week 1.
    clamped = max(0, weeks_since_start)
    return WeekAnchors(
        week_start=week_start,
        cycle=clamped // cycle_length + 1,
        week_in_cycle=clamped % cycle_length + 1,
        weeks_since_start=weeks_since_start,
        program_started=program_started,
        timezone=zone.key,
        checkin_open=_at(week_start, offsets.checkin_open, zone),
        confidence_deadline=_at(week_start, offsets.confidence_deadline, zone),
        performance_open=_at(week_start, offsets.performance_open, zone),
        performance_deadline=_at(week_start, offsets.performance_deadline, zone),
        rollover_at=_at(week_start, offsets.rollover, zone),
        program_start_date=program_start_date,
        cycle_length=cycle_length,
        offsets=offsets,
    )


def compute_anchors(instant: datetime, tz, program_start_date: date, cycle_length: int,
                    offsets: PolicyOffsets = DEFAULT_OFFSETS) -> WeekAnchors:
    """Week/cycle identifiers and boundary instants for *instant* at a site."""
    validate_site_calendar(tz, program_start_date, cycle_length)
    return anchors_for_week(week_start_for(instant, tz), tz, program_start_date,
                            cycle_length, offsets)


def anchors_for_location(location, instant: datetime,
                         offsets: PolicyOffsets = DEFAULT_OFFSETS) -> WeekAnchors:
    return compute_anchors(instant, location.timezone, location.program_start_date,
                           location.cycle_length_weeks, offsets)


def validate_site_calendar(tz, program_start_date, cycle_length) -> None:
    """Raise InvalidSiteCalendarError unless the site calendar is usable."""
    get_zone(tz)
    if not isinstance(program_start_date, date):
        raise InvalidSiteCalendarError(
            "program_start_date is required", details={"program_start_date": program_start_date}
        )
    if program_start_date.weekday() != 0:
        raise InvalidSiteCalendarError(
            f"program_start_date {program_start_date.isoformat()} is not a Monday",
            details={"program_start_date": program_start_date.isoformat()},
        )
    if not isinstance(cycle_length, int) or not MIN_CYCLE_LENGTH <= cycle_length <= MAX_CYCLE_LENGTH:
        raise InvalidSiteCalendarError(
            f"cycle_length must be between {MIN_CYCLE_LENGTH} and {MAX_CYCLE_LENGTH}",
            details={"cycle_length": cycle_length},
        )
