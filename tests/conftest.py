"""Shared fixtures: sample NOTAMs, a recording map backend and scripted gateways."""
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from notamdash.credentials import StaticCredentialProvider
from notamdash.errors import NotFoundError
from notamdash.map_backend import MapBackend
from notamdash.models.notam import NotamRecord
from notamdash.notam_client import NotamGateway

NOW = datetime(2025, 8, 12, 12, 0, tzinfo=timezone.utc)

SAMPLE_NOTAMS = [
    {
        'id': 'A1234/23',
        'location': 'KJFK',
        'coordinates': {'lat': 40.6413, 'lng': -73.7781},
        'type': 'airport',
        'effectiveDate': '2025-08-10',
        'description': 'Runway 13L/31R closed for maintenance',
    },
    {
        'id': 'B5678/23',
        'location': 'EGLL',
        'coordinates': {'lat': 51.4700, 'lng': -0.4543},
        'type': 'obstacle',
        'effectiveDate': '2025-08-09',
        'description': 'Temporary crane erected 2NM east of airport, height 300ft AGL',
    },
    {
        'id': 'C9012/23',
        'location': 'EHAM',
        'coordinates': {'lat': 52.3105, 'lng': 4.7683},
        'type': 'navaid',
        'effectiveDate': '2025-08-11',
        'description': 'AMS VOR/DME unserviceable due to maintenance',
    },
    {
        'id': 'D3456/23',
        'location': 'RJTT',
        'coordinates': {'lat': 35.5494, 'lng': 139.7798},
        'type': 'airspace',
        'effectiveDate': '2025-08-12',
        'description': 'Temporary restricted area established for military exercises',
    },
    {
        'id': 'E7890/23',
        'location': 'YSSY',
        'coordinates': {'lat': -33.9500, 'lng': 151.1819},
        'type': 'procedure',
        'effectiveDate': '2025-08-10',
        'description': 'ILS approach procedure runway 16R temporarily unavailable',
    },
]


def make_records(items=None) -> List[NotamRecord]:
    return [NotamRecord.from_api_dict(item) for item in (items or SAMPLE_NOTAMS)]


@pytest.fixture
def records() -> List[NotamRecord]:
    """The five sample NOTAMs, one per category."""
    return make_records()


@pytest.fixture
def clock():
    return lambda: NOW


async def settle(rounds: int = 5) -> None:
    """Let pending tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Recording map backend
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class FakeLayer:
    kind: str
    payload: Any = None
    style: Any = None
    children: List['FakeLayer'] = field(default_factory=list)


@dataclass(eq=False)
class FakeSurface:
    container: Any
    layers: List[FakeLayer] = field(default_factory=list)
    bounds: List[List[Any]] = field(default_factory=list)
    view: Optional[Any] = None
    disposed: bool = False

    def of_kind(self, kind: str) -> List[FakeLayer]:
        return [layer for layer in self.layers if layer.kind == kind]

    def markers(self) -> List[FakeLayer]:
        found = self.of_kind('marker')
        for cluster in self.of_kind('cluster'):
            found.extend(cluster.children)
        return found


class FakeMapBackend(MapBackend):
    """Keeps layers in plain lists; starts every surface with a base tile layer."""

    def __init__(self):
        self.surfaces: List[FakeSurface] = []

    def create(self, container):
        surface = FakeSurface(container=container, layers=[FakeLayer('tiles')])
        self.surfaces.append(surface)
        return surface

    def add_marker(self, surface, position, style, parent=None):
        layer = FakeLayer('marker', payload=position, style=style)
        (parent.children if parent is not None else surface.layers).append(layer)
        return layer

    def add_cluster(self, surface):
        layer = FakeLayer('cluster')
        surface.layers.append(layer)
        return layer

    def remove_layer(self, surface, layer):
        if layer in surface.layers:
            surface.layers.remove(layer)

    def fit_bounds(self, surface, positions):
        surface.bounds.append(list(positions))

    def set_view(self, surface, position, zoom):
        surface.view = (position, zoom)

    def draw_shape(self, surface, shape):
        layer = FakeLayer('shape', payload=shape)
        surface.layers.append(layer)
        return layer

    def dispose(self, surface):
        surface.disposed = True


@pytest.fixture
def backend() -> FakeMapBackend:
    return FakeMapBackend()


# ---------------------------------------------------------------------------
# Gateways
# ---------------------------------------------------------------------------

@dataclass
class PendingCall:
    op: str
    arg: Any
    credential: Optional[str]
    future: asyncio.Future


class ControlledGateway(NotamGateway):
    """Every call waits on a future the test resolves, in any order."""

    def __init__(self):
        self.calls: List[PendingCall] = []

    async def _call(self, op, arg, credential):
        future = asyncio.get_running_loop().create_future()
        self.calls.append(PendingCall(op, arg, credential, future))
        return await future

    async def fetch_list(self, filters, credential):
        return await self._call('list', filters, credential)

    async def search(self, term, credential):
        return await self._call('search', term, credential)

    async def fetch_detail(self, notam_id, credential):
        return await self._call('detail', notam_id, credential)

    def of_op(self, op: str) -> List[PendingCall]:
        return [c for c in self.calls if c.op == op]


class ScriptedGateway(NotamGateway):
    """Answers immediately from preset results, or raises preset errors."""

    def __init__(self, list_result=None, search_result=None, details=None):
        self.list_result = list_result or []
        self.search_result = search_result or []
        self.details = details or {}
        self.list_error: Optional[Exception] = None
        self.search_error: Optional[Exception] = None
        self.detail_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    async def fetch_list(self, filters, credential):
        self.calls.append(('list', filters, credential))
        if self.list_error:
            raise self.list_error
        return [replace(r) for r in self.list_result]

    async def search(self, term, credential):
        self.calls.append(('search', term, credential))
        if self.search_error:
            raise self.search_error
        return [replace(r) for r in self.search_result]

    async def fetch_detail(self, notam_id, credential):
        self.calls.append(('detail', notam_id, credential))
        if self.detail_error:
            raise self.detail_error
        if notam_id not in self.details:
            raise NotFoundError(f"NOTAM with ID {notam_id} not found", status=404)
        return self.details[notam_id]


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider(token='test-token')


def shift(record: NotamRecord, **changes) -> NotamRecord:
    return replace(record, **changes)


def days_ago(days: int) -> datetime:
    return NOW - timedelta(days=days)
