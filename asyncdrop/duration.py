from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True, order=True)
class Duration:
    seconds: float

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"Duration cannot be negative: {self.seconds}")

    @staticmethod
    def seconds_(s: float) -> "Duration":
        return Duration(float(s))

    @staticmethod
    def millis(ms: float) -> "Duration":
        return Duration(float(ms) / 1000.0)

    @staticmethod
    def micros(us: float) -> "Duration":
        return Duration(float(us) / 1_000_000.0)

    @staticmethod
    def nanos(ns: float) -> "Duration":
        return Duration(float(ns) / 1_000_000_000.0)

    @staticmethod
    def minutes(m: float) -> "Duration":
        return Duration(float(m) * 60.0)

    @staticmethod
    def from_timedelta(td: timedelta) -> "Duration":
        return Duration(td.total_seconds())

    @staticmethod
    def coerce(value: "Duration | timedelta | float | int | None") -> "Duration | None":
        """Accept the deadline spellings users tend to pass around.

        Plain numbers are seconds. ``None`` stays ``None`` (no deadline).
        """
        if value is None or isinstance(value, Duration):
            return value
        if isinstance(value, timedelta):
            return Duration.from_timedelta(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return Duration(float(value))
        raise TypeError(f"Expected Duration, timedelta or seconds, got {type(value).__name__}")

    def __add__(self, other: "Duration") -> "Duration":
        return Duration(self.seconds + other.seconds)

    def __str__(self) -> str:
        s = self.seconds
        if s < 0.001:
            return f"{int(round(s*1_000_000_000))}ns"
        if s < 1.0:
            return f"{int(s*1000)}ms"
        if s < 60.0:
            return f"{s:.3f}s"
        m = int(s // 60)
        rem = s - m * 60
        return f"{m}m{rem:.3f}s"
