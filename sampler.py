"""Elapsed-time downsampling of the primary PCR ratio."""

from collections import deque
from typing import Deque, List, Optional

from models import HistoryRecord, SamplePoint

DEFAULT_SERIES_CAPACITY = 600


class WindowSampler:
    """Fixed-cadence series gated on record timestamps, not on poll count.

    A sample is kept only once at least ``period`` seconds have elapsed since
    the last kept sample, so a 3 second poll with jitter still yields a clean
    3 minute series.
    """

    def __init__(self, name: str, period: float, capacity: int = DEFAULT_SERIES_CAPACITY):
        if period <= 0:
            raise ValueError("period must be > 0")
        self.name = name
        self.period = period
        self.points: Deque[SamplePoint] = deque(maxlen=capacity)
        self.last_sampled_at: Optional[float] = None

    def observe(self, record: HistoryRecord) -> Optional[SamplePoint]:
        """Feed the newest history record; returns the new sample if one was taken."""
        value = record.ratio
        if value is None:
            return None
        if self.last_sampled_at is not None and record.timestamp - self.last_sampled_at < self.period:
            return None
        point = SamplePoint(timestamp=record.timestamp, value=value)
        self.points.append(point)
        self.last_sampled_at = record.timestamp
        return point

    def values(self) -> List[float]:
        return [p.value for p in self.points]

    def copy(self) -> "WindowSampler":
        clone = WindowSampler(self.name, self.period, self.points.maxlen or DEFAULT_SERIES_CAPACITY)
        clone.points.extend(self.points)
        clone.last_sampled_at = self.last_sampled_at
        return clone
