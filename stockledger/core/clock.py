from datetime import datetime, timedelta, timezone


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock pinned to a moment; tests move it forward explicitly."""

    def __init__(self, moment: datetime):
        self._moment = as_utc(moment)

    def now(self) -> datetime:
        return self._moment

    def advance(self, **delta: float) -> datetime:
        self._moment = self._moment + timedelta(**delta)
        return self._moment

    def set(self, moment: datetime) -> None:
        self._moment = as_utc(moment)


system_clock = Clock()
