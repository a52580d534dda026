"""Weather minima compliance evaluation."""
import math
import re
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from notamdash.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MinimaThreshold:
    """Minimum ceiling (feet) and visibility (statute miles)."""
    ceiling: int
    visibility: float

    @classmethod
    def global_default(cls) -> 'MinimaThreshold':
        return cls(ceiling=Config.GLOBAL_MIN_CEILING_FT, visibility=Config.GLOBAL_MIN_VISIBILITY_SM)


@dataclass(frozen=True)
class MinimaResult:
    ceiling_met: bool
    visibility_met: bool
    overall_met: bool
    parsed_ceiling: Optional[int]
    parsed_visibility: Optional[float]


def _finite_non_negative(value: float) -> Optional[float]:
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return value


def _parse_simple_fraction(text: str) -> Optional[float]:
    """Parse a simple fraction like '1/2' or '3/4'."""
    parts = text.split("/")
    if len(parts) != 2:
        return None
    try:
        num = float(parts[0])
        den = float(parts[1])
    except ValueError:
        return None
    if num < 0 or den <= 0 or parts[0].strip().startswith("-"):
        return None
    return num / den


def parse_visibility(value: Any) -> Optional[float]:
    """
    Parse a visibility in statute miles.

    Handles: 10, "0.5", "1/2", "1 1/2", "3SM", "P6SM" (P = more than).
    "M1/4" (less than) cannot be compared safely and yields None.

    Returns:
        Float value or None if unparseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite_non_negative(float(value))
    if not isinstance(value, str):
        return None

    text = value.strip().upper()
    if text.endswith("SM"):
        text = text[:-2].strip()
    if not text or text.startswith("M"):
        return None
    if text.startswith("P"):
        text = text[1:].strip()

    try:
        return _finite_non_negative(float(text))
    except ValueError:
        pass

    # Mixed number: "2 1/2"
    parts = text.split()
    if len(parts) == 2 and "/" in parts[1]:
        try:
            whole = float(parts[0])
        except ValueError:
            return None
        if whole < 0 or parts[0].startswith("-"):
            return None
        frac = _parse_simple_fraction(parts[1])
        if frac is None:
            return None
        return _finite_non_negative(whole + frac)

    # Simple fraction: "1/2"
    if len(parts) == 1 and "/" in text:
        frac = _parse_simple_fraction(text)
        return _finite_non_negative(frac) if frac is not None else None

    return None


_CEILING_PATTERN = re.compile(r'^(\d{1,3}(?:,\d{3})+|\d+)\s*(?:FT)?$')


def parse_ceiling(value: Any) -> Optional[int]:
    """Parse a ceiling in feet. Accepts 1200, 1200.0, "1200", "1,200 ft"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if _finite_non_negative(value) is None or not value.is_integer():
            return None
        return int(value)
    if not isinstance(value, str):
        return None

    match = _CEILING_PATTERN.match(value.strip().upper())
    if not match:
        return None
    return int(match.group(1).replace(',', ''))


def evaluate(report: Mapping[str, Any], threshold: MinimaThreshold) -> MinimaResult:
    """
    Evaluate a weather report against minima.

    Missing or unparseable values fail closed: that dimension is not met.

    Args:
        report: Mapping with optional 'ceiling' and 'visibility'
        threshold: Minima to compare against

    Returns:
        MinimaResult
    """
    parsed_ceiling = parse_ceiling(report.get('ceiling'))
    parsed_visibility = parse_visibility(report.get('visibility'))

    ceiling_met = parsed_ceiling is not None and parsed_ceiling >= threshold.ceiling
    visibility_met = parsed_visibility is not None and parsed_visibility >= threshold.visibility

    return MinimaResult(
        ceiling_met=ceiling_met,
        visibility_met=visibility_met,
        overall_met=ceiling_met and visibility_met,
        parsed_ceiling=parsed_ceiling,
        parsed_visibility=parsed_visibility,
    )


class MinimaRegistry:
    """
    Global minima plus per-entity overrides (flight callsign or ICAO).

    A key without an override always reads the current global value.
    """

    FIELDS = ('ceiling', 'visibility')

    def __init__(self, global_minima: Optional[MinimaThreshold] = None):
        self._global = global_minima or MinimaThreshold.global_default()
        self._overrides: Dict[str, MinimaThreshold] = {}

    @property
    def global_minima(self) -> MinimaThreshold:
        return self._global

    def set_global(self, ceiling: Any = None, visibility: Any = None) -> MinimaThreshold:
        changes = {}
        if ceiling is not None:
            changes['ceiling'] = self._coerce('ceiling', ceiling)
        if visibility is not None:
            changes['visibility'] = self._coerce('visibility', visibility)
        self._global = replace(self._global, **changes)
        return self._global

    def get(self, key: str) -> MinimaThreshold:
        return self._overrides.get(key, self._global)

    def has_override(self, key: str) -> bool:
        return key in self._overrides

    def overrides(self) -> Dict[str, MinimaThreshold]:
        return dict(self._overrides)

    def set(self, key: str, field_name: str, value: Any) -> MinimaThreshold:
        """
        Override one field for a key, starting from its current effective minima.

        Raises:
            ValueError: unknown field or value that is not a number
        """
        if field_name not in self.FIELDS:
            raise ValueError(f"Unknown minima field: {field_name}")
        updated = replace(self.get(key), **{field_name: self._coerce(field_name, value)})
        self._overrides[key] = updated
        logger.debug(f"Minima override for {key}: {updated}")
        return updated

    def reset(self, key: str) -> MinimaThreshold:
        """Drop the override for a key so it inherits the global minima again."""
        self._overrides.pop(key, None)
        return self._global

    def evaluate(self, key: str, report: Mapping[str, Any]) -> MinimaResult:
        return evaluate(report, self.get(key))

    @staticmethod
    def _coerce(field_name: str, value: Any):
        """Ceilings must be whole feet; both fields finite and non-negative."""
        if isinstance(value, bool):
            raise ValueError(f"Invalid {field_name} minima: {value!r}")
        try:
            number = _finite_non_negative(float(value))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid {field_name} minima: {value!r}")
        if number is None:
            raise ValueError(f"Invalid {field_name} minima: {value!r}")
        if field_name == 'ceiling':
            if not number.is_integer():
                raise ValueError(f"Ceiling minima must be whole feet: {value!r}")
            return int(number)
        return number
