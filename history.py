"""Deduplicating, capacity-bounded history of PCR table rows."""

from collections import deque
from typing import Deque, Iterable, Iterator, List, Optional, Set

from models import HistoryRecord, PcrRecord

DEFAULT_CAPACITY = 10_000
TIE_OFFSET_S = 1e-3


class HistoryBuffer:
    """Append-only store keyed by row content.

    The upstream table is resent in full on every poll, so most incoming rows
    are ones we already hold; only rows with unseen content survive. Surviving
    rows get strictly increasing logical timestamps and the oldest rows are
    evicted once ``capacity`` is exceeded.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, tie_offset: float = TIE_OFFSET_S):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self.tie_offset = tie_offset
        self._records: Deque[HistoryRecord] = deque()
        self._keys: Set[str] = set()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[HistoryRecord]:
        return iter(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    @property
    def tail(self) -> Optional[HistoryRecord]:
        return self._records[-1] if self._records else None

    def append(self, records: Iterable[PcrRecord], now: float) -> List[HistoryRecord]:
        """Append unseen rows (given oldest to newest) and return the ones stored."""
        appended: List[HistoryRecord] = []
        last_ts = self._records[-1].timestamp if self._records else None
        for offset, record in enumerate(records):
            key = record.content_key()
            if key in self._keys:
                continue
            ts = now + offset * self.tie_offset
            if last_ts is not None and ts <= last_ts:
                ts = last_ts + self.tie_offset
            entry = HistoryRecord(key=key, timestamp=ts, record=record)
            self._records.append(entry)
            self._keys.add(key)
            appended.append(entry)
            last_ts = ts

        while len(self._records) > self.capacity:
            evicted = self._records.popleft()
            self._keys.discard(evicted.key)
        return appended

    def ratios(self, limit: Optional[int] = None) -> List[float]:
        """Known primary-ratio values, oldest to newest, optionally only the last ``limit``."""
        values = [r.ratio for r in self._records if r.ratio is not None]
        if limit is not None:
            values = values[-limit:] if limit > 0 else []
        return values

    def newest_first(self) -> List[HistoryRecord]:
        return list(reversed(self._records))

    def copy(self) -> "HistoryBuffer":
        clone = HistoryBuffer(self.capacity, self.tie_offset)
        clone._records = deque(self._records)
        clone._keys = set(self._keys)
        return clone
