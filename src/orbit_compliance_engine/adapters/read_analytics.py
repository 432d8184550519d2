"""Read-path analytics: counts of score, overlap and verification reads.

Analytics are informational only. ComplianceService records reads through
IReadAnalytics and drops any failure after a warning log; nothing here is
part of the audited state.
"""

from collections import Counter
from datetime import UTC, datetime
from typing import Any


class InMemoryReadAnalytics:
    """Keeps per-event counters and the most recent events in memory.

    Args:
        max_recent: Number of recent events retained for inspection.
    """

    def __init__(self, max_recent: int = 1000) -> None:
        self._counts: Counter[str] = Counter()
        self._recent: list[dict[str, Any]] = []
        self._max_recent = max_recent

    async def record_read(self, event: str, **fields: Any) -> None:
        self._counts[event] += 1
        self._recent.append({"event": event, "at": datetime.now(UTC).isoformat(), **fields})
        if len(self._recent) > self._max_recent:
            del self._recent[: len(self._recent) - self._max_recent]

    def count(self, event: str) -> int:
        return self._counts[event]

    def recent(self) -> list[dict[str, Any]]:
        return list(self._recent)
