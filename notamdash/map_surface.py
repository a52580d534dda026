"""Map surface controller: owns NOTAM layers on a map handle."""
import html
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from notamdash.config import Config
from notamdash.errors import MapStateError
from notamdash.map_backend import (
    CircleShape, MapBackend, MarkerStyle, PolygonShape, PolylineShape, Position, ShapeStyle,
)
from notamdash.models.notam import (
    CircleGeometry, Geometry, LineGeometry, NotamCategory, NotamRecord, PolygonGeometry,
)

logger = logging.getLogger(__name__)

METERS_PER_NM = 1852.0

CATEGORY_COLORS: Dict[NotamCategory, str] = {
    NotamCategory.OBSTACLE: 'red',
    NotamCategory.AIRSPACE: 'purple',
    NotamCategory.PROCEDURE: 'orange',
    NotamCategory.NAVAID: 'green',
    NotamCategory.AIRPORT: 'blue',
}

HIGHLIGHT_STYLE = ShapeStyle(color='#ff7800', weight=3, fill=True, fill_opacity=0.15)
GEOMETRY_STYLE = ShapeStyle(color='#e31a1c', weight=2, fill=True, fill_opacity=0.2, dash_array='6')


class MapState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DISPOSED = "disposed"


@dataclass
class TaggedMarker:
    notam_id: str
    position: Position
    layer: Any


@dataclass
class MapLayerSet:
    """Layers the controller created; nothing else on the surface is touched."""
    markers: List[TaggedMarker] = field(default_factory=list)
    cluster: Any = None
    highlight: Any = None
    geometry: List[Any] = field(default_factory=list)

    def find(self, notam_id: str) -> Optional[TaggedMarker]:
        for marker in self.markers:
            if marker.notam_id == notam_id:
                return marker
        return None


@dataclass
class MapHandle:
    """One map instance. All map state lives here."""
    surface: Any = None
    state: MapState = MapState.UNINITIALIZED
    layers: MapLayerSet = field(default_factory=MapLayerSet)

    @property
    def is_ready(self) -> bool:
        return self.state == MapState.READY


def popup_html(record: NotamRecord) -> str:
    """Popup body for a NOTAM marker."""
    return (
        '<div class="notam-popup">'
        f'<h4>{html.escape(record.notam_id)}</h4>'
        f'<p><strong>Location:</strong> {html.escape(record.location)}</p>'
        f'<p><strong>Type:</strong> {record.category.value}</p>'
        f'<p><strong>Effective:</strong> {record.effective.strftime("%Y-%m-%d")}</p>'
        f'<p>{html.escape(record.description)}</p>'
        '</div>'
    )


def circle_bounds(center: Position, radius_nm: float) -> List[Position]:
    """South-west and north-east corners of the box around a circle."""
    dlat = radius_nm / 60.0
    cos_lat = max(math.cos(math.radians(center[0])), 1e-6)
    dlng = min(radius_nm / (60.0 * cos_lat), 180.0)
    return [
        (max(center[0] - dlat, -90.0), max(center[1] - dlng, -180.0)),
        (min(center[0] + dlat, 90.0), min(center[1] + dlng, 180.0)),
    ]


class MapSurfaceController:
    """
    Keeps NOTAM markers, cluster, highlight and geometry overlays in sync
    with a record set on a map handle.

    Args:
        backend: Map library adapter
        on_select: Called with a NOTAM id when its marker is clicked
        cluster_markers: Group markers in a single cluster layer
        highlight_radius_nm: Radius of the emphasis circle around a highlight
        highlight_zoom: Zoom level used when centering on a highlight
    """

    def __init__(self, backend: MapBackend, on_select: Optional[Callable[[str], None]] = None,
                 cluster_markers: Optional[bool] = None, highlight_radius_nm: Optional[float] = None,
                 highlight_zoom: Optional[int] = None):
        self.backend = backend
        self.on_select = on_select
        self.cluster_markers = Config.MAP_CLUSTER_MARKERS if cluster_markers is None else cluster_markers
        self.highlight_radius_nm = highlight_radius_nm or Config.HIGHLIGHT_RADIUS_NM
        self.highlight_zoom = highlight_zoom or Config.HIGHLIGHT_ZOOM

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, container: Any, handle: Optional[MapHandle] = None) -> MapHandle:
        """
        Create the map surface.

        Raises:
            MapStateError: handle is already READY
        """
        handle = handle or MapHandle()
        if handle.state == MapState.READY:
            raise MapStateError("Map handle is already initialized")

        handle.surface = self.backend.create(container)
        handle.layers = MapLayerSet()
        handle.state = MapState.READY
        logger.info("Map surface initialized")
        return handle

    def dispose(self, handle: MapHandle) -> None:
        """Remove all NOTAM layers and release the surface. Safe to call twice."""
        if handle.state == MapState.DISPOSED:
            return
        if handle.state == MapState.READY:
            self.clear_geometry(handle)
            self.clear_highlight(handle)
            self._clear_markers(handle)
            self.backend.dispose(handle.surface)
        handle.surface = None
        handle.state = MapState.DISPOSED
        logger.info("Map surface disposed")

    def _require_ready(self, handle: MapHandle) -> None:
        if not handle.is_ready:
            raise MapStateError(f"Map handle is {handle.state.value}, expected ready")

    # ------------------------------------------------------------------
    # Markers
    # ------------------------------------------------------------------

    def _clear_markers(self, handle: MapHandle) -> None:
        layers = handle.layers
        if layers.cluster is not None:
            # Markers inside a cluster go away with the cluster
            self.backend.remove_layer(handle.surface, layers.cluster)
            layers.cluster = None
        else:
            for marker in layers.markers:
                self.backend.remove_layer(handle.surface, marker.layer)
        layers.markers = []

    def _marker_style(self, record: NotamRecord) -> MarkerStyle:
        on_click = None
        if self.on_select is not None:
            callback = self.on_select
            notam_id = record.notam_id
            on_click = lambda: callback(notam_id)  # noqa: E731
        return MarkerStyle(
            color=CATEGORY_COLORS.get(record.category, 'gray'),
            tooltip=f"{record.notam_id} ({record.location})",
            popup_html=popup_html(record),
            on_click=on_click,
        )

    def reconcile(self, handle: MapHandle, records: Iterable[NotamRecord]) -> int:
        """
        Replace the NOTAM markers with one per record that has a coordinate.

        Highlight and geometry overlays are left alone. The view is fitted
        to the new markers when there are any.

        Returns:
            Number of markers added
        """
        self._require_ready(handle)
        self._clear_markers(handle)

        layers = handle.layers
        mappable = [r for r in records if r.coordinate is not None]
        if self.cluster_markers and mappable:
            layers.cluster = self.backend.add_cluster(handle.surface)

        for record in mappable:
            position = record.coordinate.as_tuple()
            layer = self.backend.add_marker(handle.surface, position, self._marker_style(record),
                                            parent=layers.cluster)
            layers.markers.append(TaggedMarker(record.notam_id, position, layer))

        positions = [m.position for m in layers.markers]
        if positions:
            self.backend.fit_bounds(handle.surface, positions)

        logger.debug(f"Reconciled map: {len(positions)} marker(s)")
        return len(positions)

    def marker_ids(self, handle: MapHandle) -> List[str]:
        return [m.notam_id for m in handle.layers.markers]

    # ------------------------------------------------------------------
    # Highlight
    # ------------------------------------------------------------------

    def clear_highlight(self, handle: MapHandle) -> None:
        layers = handle.layers
        if layers.highlight is not None:
            self.backend.remove_layer(handle.surface, layers.highlight)
            layers.highlight = None

    def highlight(self, handle: MapHandle, notam_id: str) -> bool:
        """
        Emphasize the marker for a NOTAM.

        Returns:
            False when the id has no marker (e.g. filtered out); not an error
        """
        self._require_ready(handle)
        self.clear_highlight(handle)

        marker = handle.layers.find(notam_id)
        if marker is None:
            logger.debug(f"No marker for {notam_id}, nothing to highlight")
            return False

        self.backend.set_view(handle.surface, marker.position, self.highlight_zoom)
        handle.layers.highlight = self.backend.draw_shape(
            handle.surface,
            CircleShape(center=marker.position, radius_m=self.highlight_radius_nm * METERS_PER_NM,
                        style=HIGHLIGHT_STYLE),
        )
        return True

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def clear_geometry(self, handle: MapHandle) -> None:
        layers = handle.layers
        for layer in layers.geometry:
            self.backend.remove_layer(handle.surface, layer)
        layers.geometry = []

    def draw_geometry(self, handle: MapHandle, geometry: Geometry) -> bool:
        """
        Render a NOTAM geometry, replacing any previous one, and fit the view to it.

        Returns:
            False for geometry that cannot be drawn (logged, not raised)
        """
        self._require_ready(handle)
        self.clear_geometry(handle)

        if isinstance(geometry, CircleGeometry):
            center = geometry.center.as_tuple()
            shape = CircleShape(center=center, radius_m=geometry.radius_nm * METERS_PER_NM, style=GEOMETRY_STYLE)
            bounds: Sequence[Position] = circle_bounds(center, geometry.radius_nm)
        elif isinstance(geometry, PolygonGeometry) and len(geometry.vertices) >= 3:
            points = tuple(v.as_tuple() for v in geometry.vertices)
            shape = PolygonShape(points=points, style=GEOMETRY_STYLE)
            bounds = points
        elif isinstance(geometry, LineGeometry) and len(geometry.vertices) >= 2:
            points = tuple(v.as_tuple() for v in geometry.vertices)
            shape = PolylineShape(points=points, style=ShapeStyle(color=GEOMETRY_STYLE.color, weight=3, fill=False))
            bounds = points
        else:
            logger.warning(f"Cannot draw geometry of type {type(geometry).__name__}")
            return False

        handle.layers.geometry.append(self.backend.draw_shape(handle.surface, shape))
        self.backend.fit_bounds(handle.surface, bounds)
        return True
