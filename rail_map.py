"""
rail_map.py — One interactive rail map: datasets, layers, hover and toggles.

Load order per dataset is source → layers → pointer subscriptions, so the
hitbox and highlight layers always exist before the first event that needs
them.  The two route datasets load independently, in either order, and use
disjoint source / layer ids; the visibility controller decides which is shown.
"""

import logging

from config import (
    ALTERNATE_SOURCE, BASEMAP_ATTRIBUTION, BASEMAP_SOURCE, BASEMAP_TILES,
    DEFAULT_ROUTE_COLOR, HIGHLIGHT_OPACITY, HITBOX_WIDTH, LINE_WIDTH,
    PRIMARY_SOURCE, ROUTE_KEY_FIELD, STATIONS_SOURCE,
)
from dissolve import dissolve_collection
from hover import HoverController, load_route_styles
from registry import FeatureRegistry
from stations import build_station_features
from visibility import DatasetLayers, DatasetSource, VisibilityController, id_filter, parse_dataset

logger = logging.getLogger(__name__)

_LINE_TYPES = ("LineString", "MultiLineString")

_DATASET_SOURCES = {
    DatasetSource.PRIMARY: PRIMARY_SOURCE,
    DatasetSource.ALTERNATE: ALTERNATE_SOURCE,
}


# ── Layer definitions ────────────────────────────────────────────────

def route_color_expression(styles: dict, route_field: str = ROUTE_KEY_FIELD) -> list:
    expr = ["match", ["get", route_field]]
    for key, style in styles.items():
        expr += [key, style.color]
    expr.append(DEFAULT_ROUTE_COLOR)
    return expr


def route_offset_expression(styles: dict, route_field: str = ROUTE_KEY_FIELD):
    offsets = [(key, style.lateral_offset) for key, style in styles.items() if style.lateral_offset]
    if not offsets:
        return 0
    expr = ["match", ["get", route_field]]
    for key, offset in offsets:
        expr += [key, offset]
    expr.append(0)
    return expr


def line_layer(layers: DatasetLayers, styles: dict) -> dict:
    return {
        "id": layers.line,
        "type": "line",
        "source": layers.source,
        "layout": {"line-join": "round", "line-cap": "round"},
        "paint": {
            "line-color": route_color_expression(styles),
            "line-width": LINE_WIDTH,
            "line-offset": route_offset_expression(styles),
        },
    }


def highlight_layer(layers: DatasetLayers, styles: dict) -> dict:
    return {
        "id": layers.highlight,
        "type": "line",
        "source": layers.source,
        "layout": {"line-join": "round", "line-cap": "round"},
        "paint": {
            "line-color": route_color_expression(styles),
            "line-width": 0,
            "line-opacity": HIGHLIGHT_OPACITY,
            "line-offset": route_offset_expression(styles),
        },
        "filter": id_filter(None),
    }


def hitbox_layer(layers: DatasetLayers) -> dict:
    # Invisible but still hit-tested; wider than the drawn line.
    return {
        "id": layers.hitbox,
        "type": "line",
        "source": layers.source,
        "paint": {"line-color": "#000000", "line-width": HITBOX_WIDTH, "line-opacity": 0},
    }


def station_layers(source_id: str = STATIONS_SOURCE) -> list[dict]:
    return [
        {
            "id": source_id,
            "type": "circle",
            "source": source_id,
            "paint": {
                "circle-radius": 4,
                "circle-color": "#ffffff",
                "circle-stroke-color": "#333333",
                "circle-stroke-width": 1.5,
            },
        },
        {
            "id": source_id + "-labels",
            "type": "symbol",
            "source": source_id,
            "layout": {
                "text-field": ["get", "label"],
                "text-size": 11,
                "text-offset": [0, 1.2],
                "text-anchor": "top",
            },
            "paint": {"text-halo-color": "#ffffff", "text-halo-width": 1.5},
        },
    ]


def basemap_source() -> dict:
    return {"type": "raster", "tiles": list(BASEMAP_TILES), "tileSize": 256,
            "attribution": BASEMAP_ATTRIBUTION}


def basemap_layer() -> dict:
    # Greyscale so the line colours stand out
    return {
        "id": BASEMAP_SOURCE,
        "type": "raster",
        "source": BASEMAP_SOURCE,
        "minzoom": 0,
        "maxzoom": 19,
        "paint": {"raster-saturation": -1},
    }


# ── Session ──────────────────────────────────────────────────────────

class RailMapSession:
    """Owns the selection, visibility and per-dataset registries of one map."""

    def __init__(self, surface, chrome, styles=None, rng=None, visibility=None):
        self.surface = surface
        self.chrome = chrome
        self.styles = styles if styles is not None else load_route_styles()
        self.registries: dict[DatasetSource, FeatureRegistry] = {}
        self.failed: dict[DatasetSource, str] = {}
        self.visibility = visibility or VisibilityController(surface)
        self.hover = HoverController(surface, chrome, self.visibility, self.registries,
                                     self.styles, rng)
        self.visibility.add_listener(self.hover.force_idle)
        self._subscriptions: list[tuple[str, str, object]] = []

    @property
    def selection(self):
        return self.hover.state

    def mount_basemap(self) -> None:
        if self.surface.has_layer(BASEMAP_SOURCE):
            return
        self.surface.add_source(BASEMAP_SOURCE, basemap_source())
        existing = self.surface.layer_ids()
        self.surface.add_layer(basemap_layer(), before=existing[0] if existing else None)

    # Datasets

    def load_primary(self, raw_features: list, strict: bool = False) -> FeatureRegistry:
        """Dissolve raw fragments and mount them as the primary dataset."""
        raw = {"type": "FeatureCollection", "features": raw_features}
        dissolved = dissolve_collection(raw, strict=strict)
        return self._mount(DatasetSource.PRIMARY, dissolved["features"])

    def load_alternate(self, features: list) -> FeatureRegistry:
        """Mount already-merged online geometry as the alternate dataset."""
        lines = [f for f in features if (f.get("geometry") or {}).get("type") in _LINE_TYPES]
        return self._mount(DatasetSource.ALTERNATE, lines)

    def dataset_failed(self, source, error) -> None:
        source = parse_dataset(source)
        self.failed[source] = str(error)
        logger.warning(f"{source.value} dataset failed to load ({error}); its layers will not be shown")
        self._fall_back()

    def _fall_back(self) -> None:
        """Switch away from a selected dataset that failed, if another one loaded."""
        active = self.visibility.dataset
        if active not in self.failed:
            return
        for source in DatasetSource:
            if source != active and source in self.registries and source not in self.failed:
                logger.warning(f"{active.value} dataset unavailable, showing {source.value} instead")
                self.visibility.set_dataset(source)
                return

    def _layer_anchor(self) -> str | None:
        # Route layers go under the station markers when those already exist.
        return STATIONS_SOURCE if self.surface.has_layer(STATIONS_SOURCE) else None

    def _mount(self, source: DatasetSource, features: list) -> FeatureRegistry:
        source_id = _DATASET_SOURCES[source]
        registry = FeatureRegistry.from_features(features)

        if source in self.registries:
            if source == self.visibility.dataset:
                self.hover.force_idle(f"{source.value} dataset reloaded")
            self.registries[source] = registry
            self.surface.add_source(source_id, {"type": "geojson", "data": registry.feature_collection()})
            logger.info(f"Reloaded {source.value} dataset ({len(registry)} routes)")
            return registry

        layers = DatasetLayers.for_source(source_id)
        self.surface.add_source(source_id, {"type": "geojson", "data": registry.feature_collection()})
        before = self._layer_anchor()
        self.surface.add_layer(line_layer(layers, self.styles), before)
        self.surface.add_layer(highlight_layer(layers, self.styles), before)
        self.surface.add_layer(hitbox_layer(layers), before)

        self.registries[source] = registry
        self.failed.pop(source, None)
        self.visibility.register_dataset(source, layers)
        self._subscribe(source, layers.hitbox)
        logger.info(f"Mounted {source.value} dataset: {len(registry)} routes {registry.route_keys()}")
        self._fall_back()
        return registry

    def _subscribe(self, source: DatasetSource, layer_id: str) -> None:
        def only_when_active(handler):
            def routed(event=None):
                if self.visibility.dataset == source:
                    handler(event)
            return routed

        for event_type, handler in (("mousemove", self.hover.on_pointer_move),
                                    ("mouseleave", self.hover.on_pointer_leave),
                                    ("click", self.hover.on_click)):
            routed = only_when_active(handler)
            self.surface.on(event_type, layer_id, routed)
            self._subscriptions.append((event_type, layer_id, routed))

        # Cursor handlers run for every dataset, active or not
        for event_type, cursor in (("mouseenter", "pointer"), ("mouseleave", "")):
            handler = lambda event=None, cursor=cursor: self.chrome.set_cursor(cursor)
            self.surface.on(event_type, layer_id, handler)
            self._subscriptions.append((event_type, layer_id, handler))

    # Stations

    def load_stations(self, points: list, label_field=None) -> list[dict]:
        route_names = [style.display_name for style in self.styles.values()]
        kwargs = {"route_names": route_names}
        if label_field:
            kwargs["label_field"] = label_field
        stations = build_station_features(points, **kwargs)
        data = {"type": "FeatureCollection", "features": stations}
        self.surface.add_source(STATIONS_SOURCE, {"type": "geojson", "data": data})
        if not self.surface.has_layer(STATIONS_SOURCE):
            for layer in station_layers():
                self.surface.add_layer(layer)
        return stations

    # Toggles

    def toggle_route_family(self, name: str, visible: bool) -> None:
        self.visibility.set_route_family(name, visible)

    def select_dataset(self, source) -> None:
        self.visibility.set_dataset(source)

    def close(self) -> None:
        """Tear down the hover state and every event subscription."""
        self.hover.close()
        for event_type, layer_id, handler in self._subscriptions:
            self.surface.off(event_type, layer_id, handler)
        self._subscriptions.clear()
        logger.info("Rail map session closed")
