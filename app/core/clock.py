from datetime import datetime, timezone


class SystemClock:
    """Wall clock. Returns naive UTC to match the TIMESTAMP columns."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
