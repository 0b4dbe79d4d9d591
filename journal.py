"""Bounded log of directional-call transitions, newest first."""

from collections import deque
from datetime import datetime
from typing import Deque, List, Optional, Tuple
from zoneinfo import ZoneInfo

from models import NO_TRADE, AnalyticsSnapshot, Direction, JournalEntry, Regime, TrendView

DEFAULT_CAPACITY = 14


def compose_reason(analytics: AnalyticsSnapshot, short: TrendView, long: TrendView, latest_ratio: Optional[float]) -> str:
    parts = [analytics.regime, f"{short.label} ({short.tone})", f"{long.label} ({long.tone})"]
    if latest_ratio is not None:
        parts.append(f"PCR {latest_ratio:.2f}")
    if analytics.confirmed:
        parts.append("confirmed")
    return " · ".join(parts)


class SignalJournal:
    def __init__(self, capacity: int = DEFAULT_CAPACITY, tz: str = "Asia/Kolkata"):
        self.entries: Deque[JournalEntry] = deque(maxlen=capacity)
        self.tz = tz
        self.last_triple: Optional[Tuple[Direction, int, Regime]] = None

    def record(self, analytics: AnalyticsSnapshot, now: datetime, reason: str) -> Optional[JournalEntry]:
        """Log the tick if it is directional and its (direction, score, regime) changed."""
        if analytics.direction == NO_TRADE:
            return None
        triple = (analytics.direction, analytics.score, analytics.regime)
        if triple == self.last_triple:
            return None
        local = now.astimezone(ZoneInfo(self.tz)) if now.tzinfo else now
        entry = JournalEntry(
            timestamp=local.strftime("%H:%M:%S"),
            direction=analytics.direction,
            score=analytics.score,
            regime=analytics.regime,
            reason=reason,
        )
        self.entries.appendleft(entry)
        self.last_triple = triple
        return entry

    def newest_first(self) -> List[JournalEntry]:
        return list(self.entries)

    def copy(self) -> "SignalJournal":
        clone = SignalJournal(self.entries.maxlen or DEFAULT_CAPACITY, self.tz)
        clone.entries.extend(self.entries)
        clone.last_triple = self.last_triple
        return clone
