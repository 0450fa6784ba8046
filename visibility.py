"""
visibility.py — Route-family and dataset toggles.

Two independent switches decide what is drawn and what can be hovered:
  * route families (e.g. Te Huia) are hidden with a filter applied to the
    line, hitbox and highlight layers together, so a hidden line never
    leaves a hoverable hitbox behind;
  * the dataset switch shows exactly one of the two route datasets (locally
    dissolved vs. fetched online) by flipping layer visibility.

Listeners (the hover controller) are told before anything changes so an
active highlight can be torn down while its layer is still showing.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from config import (
    DEFAULT_DATASET, DEFAULT_HIDDEN_FAMILIES, HIGHLIGHT_SUFFIX, HITBOX_SUFFIX,
    OBJECT_ID_FIELD, ROUTE_FAMILIES, ROUTE_KEY_FIELD,
)

logger = logging.getLogger(__name__)

# Highlight filter value matching no feature (ObjectIds start at 1)
NO_FEATURE_ID = -1


class DatasetSource(Enum):
    PRIMARY = "primary"
    ALTERNATE = "alternate"


def parse_dataset(value) -> DatasetSource:
    if isinstance(value, DatasetSource):
        return value
    try:
        return DatasetSource(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(d.value for d in DatasetSource)
        raise ValueError(f"Unknown dataset '{value}' (expected one of: {choices})") from None


@dataclass(frozen=True)
class DatasetLayers:
    source: str
    line: str
    hitbox: str
    highlight: str

    @classmethod
    def for_source(cls, source_id: str) -> "DatasetLayers":
        return cls(source_id, source_id, source_id + HITBOX_SUFFIX, source_id + HIGHLIGHT_SUFFIX)

    def all(self) -> tuple[str, str, str]:
        return self.line, self.hitbox, self.highlight


@dataclass(frozen=True)
class VisibilityFilter:
    hidden_routes: frozenset = field(default_factory=frozenset)
    dataset: DatasetSource = DatasetSource.PRIMARY

    def route_visible(self, route_key) -> bool:
        return route_key not in self.hidden_routes

    def dataset_visible(self, source: DatasetSource) -> bool:
        return source == self.dataset


def id_filter(object_id: int | None, id_field: str = OBJECT_ID_FIELD) -> list:
    oid = NO_FEATURE_ID if object_id is None else object_id
    return ["==", ["get", id_field], oid]


def _hidden_from_families(families: dict, names) -> frozenset:
    hidden = set()
    for name in names:
        if name not in families:
            raise ValueError(f"Unknown route family '{name}'")
        hidden |= set(families[name])
    return frozenset(hidden)


class VisibilityController:
    """Keeps every dataset's layers consistent with the current VisibilityFilter."""

    def __init__(self, surface, families: dict = ROUTE_FAMILIES,
                 hidden_families=DEFAULT_HIDDEN_FAMILIES, dataset=DEFAULT_DATASET,
                 route_field: str = ROUTE_KEY_FIELD, id_field: str = OBJECT_ID_FIELD):
        self.surface = surface
        self.families = {name: frozenset(keys) for name, keys in families.items()}
        self.route_field = route_field
        self.id_field = id_field
        self.filter = VisibilityFilter(_hidden_from_families(self.families, hidden_families),
                                       parse_dataset(dataset))
        self._layers: dict[DatasetSource, DatasetLayers] = {}
        self._listeners: list[Callable[[str], None]] = []

    @property
    def dataset(self) -> DatasetSource:
        return self.filter.dataset

    @property
    def hidden_routes(self) -> frozenset:
        return self.filter.hidden_routes

    def add_listener(self, callback: Callable[[str], None]) -> None:
        self._listeners.append(callback)

    def register_dataset(self, source: DatasetSource, layers: DatasetLayers) -> None:
        """Adopt a dataset whose layers now exist on the surface.

        Applies the current filter straight away, so the on-load default holds
        whichever dataset finishes loading first.
        """
        self._layers[source] = layers
        self._apply_dataset(source)

    def layers_for(self, source: DatasetSource) -> DatasetLayers | None:
        return self._layers.get(source)

    def active_layers(self) -> DatasetLayers | None:
        return self._layers.get(self.dataset)

    # Predicates and filter expressions

    def is_eligible(self, route_key, source: DatasetSource | None = None) -> bool:
        if source is not None and not self.filter.dataset_visible(source):
            return False
        return self.filter.route_visible(route_key)

    def route_filter(self) -> list | None:
        if not self.hidden_routes:
            return None
        return ["!", ["in", ["get", self.route_field], ["literal", sorted(self.hidden_routes)]]]

    def highlight_filter(self, object_id: int | None) -> list:
        base = id_filter(object_id, self.id_field)
        routes = self.route_filter()
        return ["all", base, routes] if routes else base

    # Toggles

    def set_route_family(self, name: str, visible: bool) -> None:
        if name not in self.families:
            raise ValueError(f"Unknown route family '{name}'")
        routes = self.families[name]
        hidden = self.hidden_routes - routes if visible else self.hidden_routes | routes
        self._update(replace(self.filter, hidden_routes=frozenset(hidden)),
                     f"route family '{name}' {'shown' if visible else 'hidden'}")

    def hide_routes(self, route_keys) -> None:
        self._update(replace(self.filter, hidden_routes=self.hidden_routes | set(route_keys)),
                     f"routes hidden: {sorted(route_keys)}")

    def show_routes(self, route_keys) -> None:
        self._update(replace(self.filter, hidden_routes=self.hidden_routes - set(route_keys)),
                     f"routes shown: {sorted(route_keys)}")

    def set_dataset(self, source) -> None:
        source = parse_dataset(source)
        self._update(replace(self.filter, dataset=source), f"dataset -> {source.value}")

    def _update(self, new_filter: VisibilityFilter, reason: str) -> None:
        if new_filter == self.filter:
            return
        for callback in list(self._listeners):
            callback(reason)
        self.filter = new_filter
        logger.info(f"Visibility changed: {reason}")
        self.apply()

    # Surface sync

    def apply(self) -> None:
        for source in self._layers:
            self._apply_dataset(source)

    def _apply_dataset(self, source: DatasetSource) -> None:
        layers = self._layers[source]
        visible = self.filter.dataset_visible(source)
        routes = self.route_filter()
        for layer_id in layers.all():
            self.surface.set_layer_visibility(layer_id, visible)
        self.surface.set_filter(layers.line, routes)
        self.surface.set_filter(layers.hitbox, routes)
        self.surface.set_filter(layers.highlight, self.highlight_filter(None))
