"""Filter state for NOTAM queries."""
import calendar
import logging
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from notamdash.models.notam import NotamCategory, NotamRecord

logger = logging.getLogger(__name__)

# Minimum trimmed length for a term to count as a search
MIN_SEARCH_LENGTH = 3


class Region(Enum):
    ALL = "all"
    NORTH_AMERICA = "north-america"
    EUROPE = "europe"
    ASIA = "asia"
    AFRICA = "africa"
    OCEANIA = "oceania"
    SOUTH_AMERICA = "south-america"


# Coarse ICAO prefix per region, matched against the location code
REGION_PREFIXES: Dict[Region, Tuple[str, ...]] = {
    Region.NORTH_AMERICA: ('K',),
    Region.EUROPE: ('E', 'L'),
    Region.ASIA: ('R', 'V', 'Z'),
    Region.OCEANIA: ('Y',),
    Region.AFRICA: ('F', 'D'),
    Region.SOUTH_AMERICA: ('S',),
}


class DateRange(Enum):
    CURRENT = "current"
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class AltitudeBand:
    """Altitude band in feet. None on either side means unbounded."""
    min_ft: Optional[int] = None
    max_ft: Optional[int] = None

    @property
    def unbounded(self) -> bool:
        return self.min_ft is None and self.max_ft is None

    def overlaps(self, lower: int, upper: int) -> bool:
        if self.min_ft is not None and upper < self.min_ft:
            return False
        if self.max_ft is not None and lower > self.max_ft:
            return False
        return True


@dataclass(frozen=True)
class FilterState:
    region: Region = Region.ALL
    category: Optional[NotamCategory] = None
    date_range: DateRange = DateRange.CURRENT
    altitude: AltitudeBand = field(default_factory=AltitudeBand)
    search: str = ''

    @property
    def search_active(self) -> bool:
        """A trimmed term longer than two characters supersedes structured filters."""
        return len(self.search.strip()) >= MIN_SEARCH_LENGTH

    def with_changes(self, **changes) -> 'FilterState':
        """
        Return a copy with the given fields changed.

        String values are coerced to their enums, so UI callbacks can pass
        raw select values ("europe", "all", "week").
        """
        if 'region' in changes and not isinstance(changes['region'], Region):
            changes['region'] = Region(changes['region'])
        if 'category' in changes:
            value = changes['category']
            if value in (None, '', 'all'):
                changes['category'] = None
            elif not isinstance(value, NotamCategory):
                changes['category'] = NotamCategory(value)
        if 'date_range' in changes and not isinstance(changes['date_range'], DateRange):
            changes['date_range'] = DateRange(changes['date_range'])
        if 'altitude' in changes and isinstance(changes['altitude'], (tuple, list)):
            changes['altitude'] = AltitudeBand(*changes['altitude'])
        return replace(self, **changes)

    def to_params(self) -> Dict[str, str]:
        """Query parameters for an upstream list request."""
        params = {
            'region': self.region.value,
            'type': self.category.value if self.category else 'all',
            'dateRange': self.date_range.value,
        }
        if self.altitude.min_ft is not None:
            params['minAltitude'] = str(self.altitude.min_ft)
        if self.altitude.max_ft is not None:
            params['maxAltitude'] = str(self.altitude.max_ft)
        return params


def _month_before(day: datetime) -> datetime:
    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def date_floor(date_range: DateRange, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Lower bound on effective date for a date range.

    Floors are taken from UTC midnight of "now". CURRENT has no floor.
    """
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    if date_range == DateRange.TODAY:
        return today
    if date_range == DateRange.WEEK:
        return today - timedelta(days=7)
    if date_range == DateRange.MONTH:
        return _month_before(today)
    return None


def matches_region(record: NotamRecord, region: Region) -> bool:
    prefixes = REGION_PREFIXES.get(region)
    if not prefixes:
        return True
    return record.location.startswith(prefixes)


def apply_filters(records: Iterable[NotamRecord], filters: FilterState,
                  now: Optional[datetime] = None) -> List[NotamRecord]:
    """
    Apply region, category, date floor and altitude band filters.

    Args:
        records: Candidate records
        filters: Structured filter state (the search term is ignored here)
        now: Reference time for date floors

    Returns:
        Records that pass every filter, in input order
    """
    floor = date_floor(filters.date_range, now)
    result = []

    for record in records:
        if not matches_region(record, filters.region):
            continue
        if filters.category is not None and record.category != filters.category:
            continue
        if floor is not None and record.effective < floor:
            continue
        if not filters.altitude.unbounded:
            altitude = record.altitude_range()
            # Unknown altitude stays in
            if altitude is not None and not filters.altitude.overlaps(*altitude):
                continue
        result.append(record)

    logger.debug(f"Filtered {len(result)} record(s) with {filters.to_params()}")
    return result
