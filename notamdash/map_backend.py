"""Map library capability interface and the folium adapter."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import folium
from folium.map import FitBounds
from folium.plugins import MarkerCluster

from notamdash.config import Config

logger = logging.getLogger(__name__)

Position = Tuple[float, float]


@dataclass(frozen=True)
class MarkerStyle:
    color: str = 'blue'
    tooltip: Optional[str] = None
    popup_html: Optional[str] = None
    on_click: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class ShapeStyle:
    color: str = '#3388ff'
    weight: int = 2
    fill: bool = True
    fill_opacity: float = 0.2
    dash_array: Optional[str] = None


@dataclass(frozen=True)
class CircleShape:
    center: Position
    radius_m: float
    style: ShapeStyle = ShapeStyle()


@dataclass(frozen=True)
class PolygonShape:
    points: Tuple[Position, ...]
    style: ShapeStyle = ShapeStyle()


@dataclass(frozen=True)
class PolylineShape:
    points: Tuple[Position, ...]
    style: ShapeStyle = ShapeStyle(fill=False)


ShapePrimitive = Union[CircleShape, PolygonShape, PolylineShape]


class MapBackend(ABC):
    """
    What the map surface controller needs from a map library.

    One adapter per library; the controller never checks which one it has.
    """

    @abstractmethod
    def create(self, container: Any) -> Any:
        """Create a map surface in the container and return it."""

    @abstractmethod
    def add_marker(self, surface: Any, position: Position, style: MarkerStyle,
                   parent: Any = None) -> Any:
        """Add a marker to the surface (or to a cluster group) and return its layer."""

    @abstractmethod
    def add_cluster(self, surface: Any) -> Any:
        """Add an empty marker cluster group and return its layer."""

    @abstractmethod
    def remove_layer(self, surface: Any, layer: Any) -> None:
        """Remove a layer previously returned by this backend."""

    @abstractmethod
    def fit_bounds(self, surface: Any, positions: Sequence[Position]) -> None:
        """Fit the view to contain all positions."""

    @abstractmethod
    def set_view(self, surface: Any, position: Position, zoom: int) -> None:
        """Center the view on a position at a zoom level."""

    @abstractmethod
    def draw_shape(self, surface: Any, shape: ShapePrimitive) -> Any:
        """Draw a circle, polygon or polyline and return its layer."""

    @abstractmethod
    def dispose(self, surface: Any) -> None:
        """Release the surface."""


class FoliumMapBackend(MapBackend):
    """
    Adapter rendering to a folium (Leaflet) map.

    folium output is static HTML, so marker click callbacks cannot reach
    Python; the popup carries the record instead.
    """

    def __init__(self, tiles: Optional[str] = None, location: Position = (20.0, 0.0), zoom_start: int = 2):
        self.tiles = tiles or Config.MAP_TILES
        self.location = location
        self.zoom_start = zoom_start

    def create(self, container: Any) -> folium.Map:
        options: Dict[str, Any] = {
            'location': list(self.location),
            'zoom_start': self.zoom_start,
            'tiles': self.tiles,
        }
        if isinstance(container, dict):
            options.update(container)
        return folium.Map(**options)

    def add_marker(self, surface: folium.Map, position: Position, style: MarkerStyle,
                   parent: Any = None) -> folium.Marker:
        marker = folium.Marker(
            list(position),
            tooltip=style.tooltip,
            popup=folium.Popup(style.popup_html, max_width=320) if style.popup_html else None,
            icon=folium.Icon(color=style.color),
        )
        marker.add_to(parent if parent is not None else surface)
        return marker

    def add_cluster(self, surface: folium.Map) -> MarkerCluster:
        return MarkerCluster(name='NOTAMs').add_to(surface)

    def remove_layer(self, surface: folium.Map, layer: Any) -> None:
        parent = getattr(layer, '_parent', None)
        if parent is None:
            return
        parent._children.pop(layer.get_name(), None)
        layer._parent = None

    def _clear_fit_bounds(self, surface: folium.Map) -> None:
        # folium appends a FitBounds element per call; keep only the latest
        for name, child in list(surface._children.items()):
            if isinstance(child, FitBounds):
                del surface._children[name]

    def fit_bounds(self, surface: folium.Map, positions: Sequence[Position], max_zoom: Optional[int] = None) -> None:
        if not positions:
            return
        lats = [p[0] for p in positions]
        lngs = [p[1] for p in positions]
        self._clear_fit_bounds(surface)
        surface.fit_bounds([[min(lats), min(lngs)], [max(lats), max(lngs)]], max_zoom=max_zoom)

    def set_view(self, surface: folium.Map, position: Position, zoom: int) -> None:
        surface.location = list(position)
        self.fit_bounds(surface, [position], max_zoom=zoom)

    def draw_shape(self, surface: folium.Map, shape: ShapePrimitive) -> Any:
        if not isinstance(shape, (CircleShape, PolygonShape, PolylineShape)):
            raise TypeError(f"Unsupported shape: {type(shape).__name__}")

        style = shape.style
        common = dict(color=style.color, weight=style.weight, fill=style.fill,
                      fill_opacity=style.fill_opacity, dash_array=style.dash_array)

        if isinstance(shape, CircleShape):
            layer = folium.Circle(location=list(shape.center), radius=shape.radius_m, **common)
        elif isinstance(shape, PolygonShape):
            layer = folium.Polygon(locations=[list(p) for p in shape.points], **common)
        else:
            layer = folium.PolyLine(locations=[list(p) for p in shape.points], **common)

        return layer.add_to(surface)

    def dispose(self, surface: folium.Map) -> None:
        surface._children.clear()
        logger.debug("Folium map released")

    def save(self, surface: folium.Map, path: str) -> str:
        """Write the map to an HTML file."""
        surface.save(path)
        logger.info(f"Map written to {path}")
        return path

    @staticmethod
    def layers(surface: folium.Map) -> List[Any]:
        """Direct children of the map, for inspection."""
        return list(surface._children.values())
