"""
surface.py — What the rail map needs from a map renderer and its UI chrome.

RenderSurface mirrors the handful of MapLibre calls the map uses: sources,
layers, paint / filter / visibility mutation, hit testing, layer-scoped
pointer events and a frame clock.  Chrome covers the tooltip and the click
popup.

InMemorySurface is a headless renderer: it keeps the style in memory,
projects features to screen pixels with a Web Mercator camera and hit-tests
them with shapely.  build_map.py uses it to assemble the exported style, and
the tests drive pointer events through it.
"""

import copy
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from shapely.errors import GEOSException
from shapely.geometry import Point, shape
from shapely.ops import transform

from config import MAP_CENTER, MAP_ZOOM
from hover import render_attribute_table
from scheduler import FrameScheduler, ManualFrameScheduler

logger = logging.getLogger(__name__)

POINTER_EVENTS = ("mousemove", "mouseenter", "mouseleave", "click")


@dataclass
class MapEvent:
    point: tuple[float, float]
    lnglat: tuple[float, float] | None = None
    features: list = field(default_factory=list)


class RenderSurface(ABC):

    @property
    @abstractmethod
    def frames(self) -> FrameScheduler:
        """Per-frame callback scheduler."""

    @abstractmethod
    def add_source(self, source_id: str, spec: dict) -> None:
        """Add a source, or replace the data of an existing one."""

    @abstractmethod
    def add_layer(self, layer: dict, before: str | None = None) -> None:
        """Add a styled layer, optionally below the layer `before`."""

    @abstractmethod
    def has_layer(self, layer_id: str) -> bool:
        ...

    @abstractmethod
    def layer_ids(self) -> list[str]:
        """Layer ids, bottom-most first."""

    @abstractmethod
    def set_paint_property(self, layer_id: str, name: str, value) -> None:
        ...

    @abstractmethod
    def set_filter(self, layer_id: str, expression: list | None) -> None:
        ...

    @abstractmethod
    def set_layer_visibility(self, layer_id: str, visible: bool) -> None:
        ...

    @abstractmethod
    def query_rendered_features(self, point, layers: list[str] | None = None) -> list[dict]:
        ...

    @abstractmethod
    def on(self, event_type: str, layer_id: str, handler) -> None:
        ...

    @abstractmethod
    def off(self, event_type: str, layer_id: str, handler) -> None:
        ...

    @abstractmethod
    def container_origin(self) -> tuple[float, float]:
        """Page coordinates of the map container's top-left corner."""


class Chrome(ABC):

    @abstractmethod
    def show_tooltip(self, text: str, color: str, x: float, y: float) -> None:
        ...

    @abstractmethod
    def move_tooltip(self, x: float, y: float) -> None:
        ...

    @abstractmethod
    def hide_tooltip(self) -> None:
        ...

    @abstractmethod
    def show_popup(self, anchor, rows: list) -> None:
        ...

    @abstractmethod
    def set_cursor(self, cursor: str) -> None:
        """Set the map canvas cursor; an empty string restores the default."""


class RecordingChrome(Chrome):
    """Chrome that just remembers what it was asked to show."""

    def __init__(self):
        self.tooltip: dict | None = None
        self.popups: list[dict] = []
        self.cursor = ""

    def show_tooltip(self, text, color, x, y):
        self.tooltip = {"text": text, "color": color, "x": x, "y": y}

    def move_tooltip(self, x, y):
        if self.tooltip is not None:
            self.tooltip.update(x=x, y=y)

    def hide_tooltip(self):
        self.tooltip = None

    def show_popup(self, anchor, rows):
        self.popups.append({"anchor": anchor, "rows": rows, "html": render_attribute_table(rows)})

    def set_cursor(self, cursor):
        self.cursor = cursor


# ── Filter expressions ───────────────────────────────────────────────

def evaluate(expr, props: dict):
    """Evaluate the subset of MapLibre expressions the map uses."""
    if not isinstance(expr, list) or not expr:
        return expr
    op, args = expr[0], expr[1:]
    if op == "literal":
        return args[0]
    if op == "get":
        return props.get(args[0])
    if op == "all":
        return all(evaluate(a, props) for a in args)
    if op == "any":
        return any(evaluate(a, props) for a in args)
    if op == "!":
        return not evaluate(args[0], props)
    if op == "==":
        return evaluate(args[0], props) == evaluate(args[1], props)
    if op == "!=":
        return evaluate(args[0], props) != evaluate(args[1], props)
    if op == "in":
        haystack = evaluate(args[1], props)
        return haystack is not None and evaluate(args[0], props) in haystack
    if op == "match":
        value = evaluate(args[0], props)
        for i in range(1, len(args) - 1, 2):
            label = args[i]
            if value == label or (isinstance(label, list) and value in label):
                return evaluate(args[i + 1], props)
        return evaluate(args[-1], props)
    raise ValueError(f"Unsupported expression operator: {op!r}")


# ── Headless surface ─────────────────────────────────────────────────

class InMemorySurface(RenderSurface):
    """A map style held in memory with Web Mercator hit testing."""

    TILE_SIZE = 512

    def __init__(self, center=MAP_CENTER, zoom=MAP_ZOOM, size=(1024, 768),
                 origin=(0, 0), frames: FrameScheduler | None = None):
        self.center = tuple(center)
        self.zoom = zoom
        self.size = tuple(size)
        self.origin = tuple(origin)
        self.sources: dict[str, dict] = {}
        self.layers: list[dict] = []
        self._frames = frames or ManualFrameScheduler()
        self._handlers: dict[tuple[str, str], list] = {}
        self._under_pointer: set[str] = set()

    @property
    def frames(self) -> FrameScheduler:
        return self._frames

    # Camera

    def jump_to(self, center=None, zoom=None) -> None:
        if center is not None:
            self.center = tuple(center)
        if zoom is not None:
            self.zoom = zoom

    def _world(self, lon: float, lat: float) -> tuple[float, float]:
        scale = self.TILE_SIZE * 2 ** self.zoom
        lat = max(min(lat, 85.05112878), -85.05112878)
        x = (lon + 180.0) / 360.0 * scale
        s = math.sin(math.radians(lat))
        y = (0.5 - math.log((1 + s) / (1 - s)) / (4 * math.pi)) * scale
        return x, y

    def project(self, lon: float, lat: float) -> tuple[float, float]:
        """Geographic coordinate -> container pixel."""
        x, y = self._world(lon, lat)
        cx, cy = self._world(*self.center)
        return x - cx + self.size[0] / 2, y - cy + self.size[1] / 2

    def unproject(self, x: float, y: float) -> tuple[float, float]:
        scale = self.TILE_SIZE * 2 ** self.zoom
        cx, cy = self._world(*self.center)
        wx = x - self.size[0] / 2 + cx
        wy = y - self.size[1] / 2 + cy
        lon = wx / scale * 360.0 - 180.0
        lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * wy / scale))))
        return lon, lat

    def container_origin(self) -> tuple[float, float]:
        return self.origin

    # Style

    def add_source(self, source_id: str, spec: dict) -> None:
        if source_id in self.sources and "data" in spec:
            self.sources[source_id]["data"] = spec["data"]
            logger.debug(f"Replaced data of source {source_id}")
            return
        self.sources[source_id] = dict(spec)

    def _layer(self, layer_id: str) -> dict:
        for layer in self.layers:
            if layer["id"] == layer_id:
                return layer
        raise KeyError(f"No such layer: {layer_id}")

    def has_layer(self, layer_id: str) -> bool:
        return any(layer["id"] == layer_id for layer in self.layers)

    def add_layer(self, layer: dict, before: str | None = None) -> None:
        if self.has_layer(layer["id"]):
            raise ValueError(f"Layer {layer['id']} already exists")
        if "source" in layer and layer["source"] not in self.sources:
            raise ValueError(f"Layer {layer['id']} references missing source {layer['source']}")
        layer = copy.deepcopy(layer)
        layer.setdefault("paint", {})
        layer.setdefault("layout", {})
        if before is not None and self.has_layer(before):
            self.layers.insert(self.layers.index(self._layer(before)), layer)
        else:
            self.layers.append(layer)

    def layer_ids(self) -> list[str]:
        return [layer["id"] for layer in self.layers]

    def get_paint_property(self, layer_id: str, name: str):
        return self._layer(layer_id)["paint"].get(name)

    def set_paint_property(self, layer_id: str, name: str, value) -> None:
        self._layer(layer_id)["paint"][name] = value

    def get_filter(self, layer_id: str):
        return self._layer(layer_id).get("filter")

    def set_filter(self, layer_id: str, expression) -> None:
        layer = self._layer(layer_id)
        if expression is None:
            layer.pop("filter", None)
        else:
            layer["filter"] = copy.deepcopy(expression)

    def is_visible(self, layer_id: str) -> bool:
        return self._layer(layer_id)["layout"].get("visibility", "visible") != "none"

    def set_layer_visibility(self, layer_id: str, visible: bool) -> None:
        self._layer(layer_id)["layout"]["visibility"] = "visible" if visible else "none"

    def to_style(self) -> dict:
        """Export the current style as a MapLibre style document."""
        return {
            "version": 8,
            "center": list(self.center),
            "zoom": self.zoom,
            "sources": copy.deepcopy(self.sources),
            "layers": copy.deepcopy(self.layers),
        }

    # Hit testing

    @staticmethod
    def _tolerance(layer: dict) -> float:
        paint = layer["paint"]
        key = "line-width" if layer.get("type") == "line" else "circle-radius"
        value = paint.get(key, 1 if layer.get("type") == "line" else 5)
        if not isinstance(value, (int, float)):
            value = 1
        return value / 2 if layer.get("type") == "line" else value

    def _layer_hits(self, layer: dict, pointer: Point) -> list[dict]:
        if layer.get("type") not in ("line", "circle") or not self.is_visible(layer["id"]):
            return []
        tolerance = self._tolerance(layer)
        if tolerance <= 0:
            return []
        data = self.sources.get(layer.get("source"), {}).get("data") or {}
        hits = []
        for feat in data.get("features", []):
            props = feat.get("properties") or {}
            if "filter" in layer and not evaluate(layer["filter"], props):
                continue
            try:
                geom = transform(lambda x, y, z=None: self.project(x, y), shape(feat["geometry"]))
            except (KeyError, TypeError, ValueError, GEOSException):
                continue
            if geom.distance(pointer) <= tolerance:
                hits.append({"type": "Feature", "geometry": feat["geometry"],
                             "properties": dict(props), "layer": {"id": layer["id"]}})
        return hits

    def query_rendered_features(self, point, layers=None) -> list[dict]:
        """Features under a container pixel, top-most layer first."""
        pointer = Point(point)
        hits = []
        for layer in reversed(self.layers):
            if layers is not None and layer["id"] not in layers:
                continue
            hits.extend(self._layer_hits(layer, pointer))
        return hits

    # Pointer events

    def on(self, event_type: str, layer_id: str, handler) -> None:
        if event_type not in POINTER_EVENTS:
            raise ValueError(f"Unsupported event type: {event_type}")
        self._handlers.setdefault((event_type, layer_id), []).append(handler)

    def off(self, event_type: str, layer_id: str, handler) -> None:
        handlers = self._handlers.get((event_type, layer_id), [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, event_type: str, layer_id: str, event: MapEvent) -> None:
        for handler in list(self._handlers.get((event_type, layer_id), [])):
            handler(event)

    def _subscribed_layers(self) -> list[str]:
        layer_ids = []
        for _, layer_id in self._handlers:
            if layer_id not in layer_ids:
                layer_ids.append(layer_id)
        return layer_ids

    def pointer_move(self, point) -> None:
        """Simulate the pointer moving to a container pixel."""
        lnglat = self.unproject(*point)
        for layer_id in self._subscribed_layers():
            features = self.query_rendered_features(point, [layer_id])
            if features:
                if layer_id not in self._under_pointer:
                    self._under_pointer.add(layer_id)
                    self._emit("mouseenter", layer_id, MapEvent(point, lnglat, features))
                self._emit("mousemove", layer_id, MapEvent(point, lnglat, features))
            elif layer_id in self._under_pointer:
                self._under_pointer.discard(layer_id)
                self._emit("mouseleave", layer_id, MapEvent(point, lnglat))

    def pointer_out(self) -> None:
        """Simulate the pointer leaving the map container."""
        for layer_id in list(self._under_pointer):
            self._emit("mouseleave", layer_id, MapEvent((-1, -1)))
        self._under_pointer.clear()

    def click(self, point) -> None:
        lnglat = self.unproject(*point)
        for layer_id in self._subscribed_layers():
            if not self._handlers.get(("click", layer_id)):
                continue
            features = self.query_rendered_features(point, [layer_id])
            if features:
                self._emit("click", layer_id, MapEvent(point, lnglat, features))
