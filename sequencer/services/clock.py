"""
Time providers.

The pipeline and the reconciler never read the wall clock directly; they are
handed a clock so ``as_of`` simulation, dry-runs and tests are deterministic.
"""

from datetime import datetime, timezone


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock frozen at one instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, delta) -> None:
        self._instant = self._instant + delta

    def __repr__(self):
        return f"<FixedClock {self._instant.isoformat()}>"


def resolve_now(clock=None, as_of=None) -> datetime:
    """Return *as_of* when given, otherwise the clock's (or system) time."""
    if as_of is not None:
        return as_of if as_of.tzinfo else as_of.replace(tzinfo=timezone.utc)
    return (clock or SystemClock()).now()
