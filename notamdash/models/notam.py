"""NOTAM domain model."""
import re
import html
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Union
from dataclasses import dataclass, field, fields
from enum import Enum

logger = logging.getLogger(__name__)


class NotamCategory(Enum):
    """NOTAM category shown on the dashboard."""
    OBSTACLE = "obstacle"
    AIRSPACE = "airspace"
    PROCEDURE = "procedure"
    NAVAID = "navaid"
    AIRPORT = "airport"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lng}")

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)

    @classmethod
    def from_dict(cls, data: Any) -> 'Coordinate':
        """Build from {lat, lng} (also accepts lon/longitude/latitude) or a [lat, lng] pair."""
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return cls(float(data[0]), float(data[1]))
        if isinstance(data, dict):
            lat = data.get('lat', data.get('latitude'))
            lng = data.get('lng', data.get('lon', data.get('longitude')))
            if lat is not None and lng is not None:
                return cls(float(lat), float(lng))
        raise ValueError(f"Not a coordinate: {data!r}")


# ---------------------------------------------------------------------------
# Geometry tagged union: circle | polygon | line
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CircleGeometry:
    center: Coordinate
    radius_nm: float
    kind: str = field(default="circle", init=False)


@dataclass(frozen=True)
class PolygonGeometry:
    vertices: Tuple[Coordinate, ...]
    kind: str = field(default="polygon", init=False)


@dataclass(frozen=True)
class LineGeometry:
    vertices: Tuple[Coordinate, ...]
    kind: str = field(default="line", init=False)


Geometry = Union[CircleGeometry, PolygonGeometry, LineGeometry]


def geometry_from_dict(data: Dict[str, Any]) -> Geometry:
    """
    Parse a geometry payload.

    Expected shapes:
        {"type": "circle", "center": {"lat":.., "lng":..}, "radius": 5}
        {"type": "polygon", "coordinates": [[lat, lng], ...]}
        {"type": "line", "coordinates": [[lat, lng], ...]}

    Raises:
        ValueError: unknown tag or malformed payload
    """
    if not isinstance(data, dict):
        raise ValueError(f"Geometry must be a mapping, got {type(data).__name__}")

    kind = str(data.get('type', '')).lower()

    if kind == 'circle':
        radius = float(data.get('radius', data.get('radiusNm', 0)))
        if radius <= 0:
            raise ValueError(f"Circle radius must be positive: {radius}")
        return CircleGeometry(center=Coordinate.from_dict(data.get('center')), radius_nm=radius)

    if kind in ('polygon', 'line'):
        raw_points = data.get('coordinates', data.get('vertices')) or []
        vertices = tuple(Coordinate.from_dict(p) for p in raw_points)
        if kind == 'polygon':
            if len(vertices) < 3:
                raise ValueError("Polygon requires at least 3 vertices")
            return PolygonGeometry(vertices=vertices)
        if len(vertices) < 2:
            raise ValueError("Line requires at least 2 vertices")
        return LineGeometry(vertices=vertices)

    raise ValueError(f"Unknown geometry type: {data.get('type')!r}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime.

    Naive values are taken as UTC; date-only values mean midnight UTC.
    Returns None for empty input and "PERM".
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.upper() == 'PERM':
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


_FL_PATTERN = re.compile(r'^FL\s*(\d{2,3})$')
_FT_PATTERN = re.compile(r'^(\d[\d,]*)\s*(?:FT)?(?:\s*(?:AMSL|AGL|MSL))?$')


def _parse_altitude_token(token: str) -> Optional[int]:
    token = token.strip().upper()
    if token in ('SFC', 'SURFACE', 'GND', 'GROUND'):
        return 0
    fl_match = _FL_PATTERN.match(token)
    if fl_match:
        return int(fl_match.group(1)) * 100
    ft_match = _FT_PATTERN.match(token)
    if ft_match:
        return int(ft_match.group(1).replace(',', ''))
    return None


@dataclass
class NotamRecord:

    # Identity
    notam_id: str
    location: str
    category: NotamCategory
    effective: datetime
    description: str = ''

    # Position and validity
    coordinate: Optional[Coordinate] = None
    expiry: Optional[datetime] = None

    # Detail fields (filled by a detail fetch)
    issued_by: Optional[str] = None
    altitude: Optional[str] = None
    radius: Optional[str] = None
    remarks: Optional[str] = None
    geometry: Optional[Geometry] = None

    @property
    def is_permanent(self) -> bool:
        return self.expiry is None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Active when effective <= now and (no expiry or expiry >= now)."""
        now = now or datetime.now(timezone.utc)
        return self.effective <= now and (self.expiry is None or self.expiry >= now)

    def altitude_range(self) -> Optional[Tuple[int, int]]:
        """
        Parse the altitude text into (lower_ft, upper_ft).

        Handles "Surface to 5000ft", "SFC-FL050", "1000FT AMSL - 3000FT".
        Returns None when the text is missing or not understood.
        """
        if not self.altitude:
            return None
        parts = re.split(r'\s+TO\s+|\s*-\s*', self.altitude.strip(), flags=re.IGNORECASE)
        if len(parts) != 2:
            return None
        lower = _parse_altitude_token(parts[0])
        upper = _parse_altitude_token(parts[1])
        if lower is None or upper is None:
            return None
        return (min(lower, upper), max(lower, upper))

    def enrich(self, detail: 'NotamRecord') -> 'NotamRecord':
        """
        Merge a detail record into this one in place.

        Only fields the detail actually carries overwrite existing values,
        so list-view fields survive a sparse detail payload.
        """
        if detail.notam_id != self.notam_id:
            raise ValueError(f"Cannot merge {detail.notam_id} into {self.notam_id}")
        for f in fields(self):
            value = getattr(detail, f.name)
            if value is None or value == '':
                continue
            setattr(self, f.name, value)
        return self

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"NOTAM {self.notam_id} | {self.location} | {self.category.value}",
            f"Effective: {self.effective.strftime('%Y-%m-%d %H:%M')}Z",
            f"Expiry: {self.expiry.strftime('%Y-%m-%d %H:%M') + 'Z' if self.expiry else 'Permanent'}",
            f"Status: {'Active' if self.is_active() else 'Inactive'}",
        ]
        if self.issued_by:
            lines.append(f"Issued by: {self.issued_by}")
        if self.altitude:
            lines.append(f"Altitude: {self.altitude}")
        if self.radius:
            lines.append(f"Radius: {self.radius}")
        lines.append("")
        lines.append(self.description)
        if self.remarks:
            lines.append(f"Remarks: {self.remarks}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the API field names."""
        data: Dict[str, Any] = {
            'id': self.notam_id,
            'location': self.location,
            'type': self.category.value,
            'effectiveDate': self.effective.isoformat(),
            'expiryDate': self.expiry.isoformat() if self.expiry else None,
            'description': self.description,
        }
        if self.coordinate:
            data['coordinates'] = {'lat': self.coordinate.lat, 'lng': self.coordinate.lng}
        for key, attr in (('issuedBy', 'issued_by'), ('altitude', 'altitude'),
                          ('radius', 'radius'), ('remarks', 'remarks')):
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_api_dict(cls, data: Dict[str, Any]) -> 'NotamRecord':
        """
        Factory method to create a NotamRecord from an API response dict.

        Args:
            data: Raw API dictionary

        Returns:
            NotamRecord instance

        Raises:
            ValueError: missing id, unknown category or bad effective date
        """
        notam_id = data.get('id') or data.get('notamId')
        if not notam_id:
            raise ValueError("NOTAM record without an id")

        raw_category = str(data.get('type') or data.get('category') or '').lower()
        try:
            category = NotamCategory(raw_category)
        except ValueError:
            raise ValueError(f"Unknown NOTAM category for {notam_id}: {raw_category!r}")

        effective = parse_timestamp(data.get('effectiveDate'))
        if effective is None:
            raise ValueError(f"NOTAM {notam_id} has no effective date")
        expiry = parse_timestamp(data.get('expiryDate') or data.get('validUntil'))

        coordinate = None
        raw_coords = data.get('coordinates')
        if raw_coords is None and data.get('lat') is not None:
            raw_coords = {'lat': data.get('lat'), 'lng': data.get('lng', data.get('lon'))}
        if raw_coords is not None:
            try:
                coordinate = Coordinate.from_dict(raw_coords)
            except (ValueError, TypeError) as e:
                logger.warning(f"Ignoring bad coordinates on {notam_id}: {e}")

        geometry = None
        if data.get('geometry'):
            try:
                geometry = geometry_from_dict(data['geometry'])
            except (ValueError, TypeError) as e:
                logger.warning(f"Rejected geometry on {notam_id}: {e}")

        description = html.unescape(data.get('description') or '')

        return cls(
            notam_id=str(notam_id),
            location=str(data.get('location') or '').upper(),
            category=category,
            effective=effective,
            description=description,
            coordinate=coordinate,
            expiry=expiry,
            issued_by=data.get('issuedBy'),
            altitude=data.get('altitude'),
            radius=data.get('radius'),
            remarks=data.get('remarks'),
            geometry=geometry,
        )


def records_from_api(items: List[Dict[str, Any]]) -> List[NotamRecord]:
    """Build records from a payload list, skipping entries that fail to parse."""
    records = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed NOTAM: expected an object, got {type(item).__name__}")
            continue
        try:
            records.append(NotamRecord.from_api_dict(item))
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed NOTAM: {e}")
    return records
