"""Calendar constants and time helpers shared by the test modules."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

CHICAGO = ZoneInfo("America/Chicago")

# Monday; the program calendar of the default test site starts here.
PROGRAM_START = date(2026, 1, 5)


def chicago(year, month, day, hour=12, minute=0, second=0):
    """Aware UTC instant for a Chicago wall-clock time."""
    local = datetime(year, month, day, hour, minute, second, tzinfo=CHICAGO)
    return local.astimezone(timezone.utc)
