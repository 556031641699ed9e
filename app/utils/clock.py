from datetime import datetime, timezone


class Clock:
    """Source of the current time. Everything time-boxed asks a clock, never datetime directly."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes unless the client is tz aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
