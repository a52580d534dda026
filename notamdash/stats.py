"""Summary statistics over a NOTAM set."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from notamdash.models.notam import NotamCategory, NotamRecord

UNKNOWN_REGION = '?'


@dataclass
class NotamStats:
    total: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)
    by_region: Dict[str, int] = field(default_factory=dict)
    active_today: int = 0


def region_key(location: str) -> str:
    """
    Region bucket for a location: its first character, or '?' when empty.
    """
    return location[:1].upper() or UNKNOWN_REGION


def aggregate(records: Iterable[NotamRecord], now: Optional[datetime] = None) -> NotamStats:
    """
    Count records by category and region, plus how many are active now.

    Single pass; returns a fresh NotamStats on every call.
    """
    now = now or datetime.now(timezone.utc)
    stats = NotamStats(by_category={c.value: 0 for c in NotamCategory})

    for record in records:
        stats.total += 1
        stats.by_category[record.category.value] += 1
        region = region_key(record.location)
        stats.by_region[region] = stats.by_region.get(region, 0) + 1
        if record.is_active(now):
            stats.active_today += 1

    return stats
