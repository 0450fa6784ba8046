"""
hover.py — Hover selection state machine for the rail lines.

States:
  IDLE       nothing highlighted
  SELECTING  (transient) pointer is over one or more eligible routes
  SELECTED   one ObjectId highlighted, breathing, tooltip shown

transition() is pure: it takes the current SelectionState and one
interaction event and returns the next state plus a list of effects.
HoverController owns the live state for a map and applies those effects to
the render surface, the UI chrome and the breathing animator.

Lost-selection policy: while SELECTED, a pointer move that still reports the
selected id keeps it (only the tooltip moves).  A move that no longer reports
it, zero candidates included, drops back to IDLE without picking a
replacement; the next move with candidates selects again, skipping the line
that was just released.
"""

import html
import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Union

from breathing import BreathingAnimator
from config import (
    BREATH_AMPLITUDE, BREATH_BASE_WIDTH, BREATH_PERIOD, DEFAULT_ROUTE_COLOR,
    ROUTE_STYLES, TOOLTIP_OFFSET,
)

logger = logging.getLogger(__name__)


# ── Route styles ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class RouteStyle:
    color: str
    display_name: str
    lateral_offset: float = 0


def load_route_styles(table: dict = ROUTE_STYLES) -> dict[str, RouteStyle]:
    return {key: RouteStyle(*entry) for key, entry in table.items()}


def style_for(route_key: str | None, styles: dict[str, RouteStyle]) -> RouteStyle:
    """Style for a route key, falling back to the default colour and raw key."""
    style = styles.get(route_key) if route_key is not None else None
    if style is None:
        return RouteStyle(DEFAULT_ROUTE_COLOR, route_key or "")
    return style


# ── State ────────────────────────────────────────────────────────────

class HoverPhase(Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    SELECTED = "selected"


@dataclass(frozen=True)
class SelectionState:
    selected_object_id: int | None = None
    previous_object_id: int | None = None
    animating: bool = False
    animation_start_time: float | None = None

    @property
    def phase(self) -> HoverPhase:
        if self.selected_object_id is None:
            return HoverPhase.IDLE
        return HoverPhase.SELECTED


# ── Events ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PointerMove:
    candidates: tuple[int, ...]
    point: tuple[float, float]
    now: float


@dataclass(frozen=True)
class PointerLeave:
    pass


@dataclass(frozen=True)
class Click:
    feature: dict | None
    point: tuple[float, float]
    lnglat: tuple[float, float] | None = None


@dataclass(frozen=True)
class ForceIdle:
    reason: str = ""


InteractionEvent = Union[PointerMove, PointerLeave, Click, ForceIdle]


# ── Effects ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HighlightFeature:
    object_id: int | None


@dataclass(frozen=True)
class SetHighlightWidth:
    width: float


@dataclass(frozen=True)
class StartBreathing:
    start_time: float


@dataclass(frozen=True)
class StopBreathing:
    pass


@dataclass(frozen=True)
class ShowTooltip:
    text: str
    color: str
    x: float
    y: float


@dataclass(frozen=True)
class MoveTooltip:
    x: float
    y: float


@dataclass(frozen=True)
class HideTooltip:
    pass


@dataclass(frozen=True)
class ShowPopup:
    anchor: tuple[float, float]
    rows: tuple[tuple[str, object], ...] = field(default_factory=tuple)


# ── Transitions ──────────────────────────────────────────────────────

def eligible_candidates(candidates, registry, is_eligible=None) -> list[int]:
    """Dedupe hit-test ids, dropping unknown ids and hidden routes."""
    eligible = []
    for oid in candidates:
        if oid in eligible or oid not in registry:
            continue
        if is_eligible is not None and not is_eligible(registry.route_key(oid)):
            continue
        eligible.append(oid)
    return eligible


def choose_candidate(candidates: list[int], previous: int | None, rng) -> int:
    """Pick one of several overlapping routes.

    A single candidate wins outright.  Otherwise draw uniformly, leaving out
    the route that was just released unless it is the only one left.
    """
    if len(candidates) == 1:
        return candidates[0]
    pool = [c for c in candidates if c != previous] or list(candidates)
    return rng.choice(pool)


def tooltip_position(point, offset=TOOLTIP_OFFSET) -> tuple[float, float]:
    return point[0] + offset[0], point[1] + offset[1]


def _exit(state: SelectionState):
    if state.selected_object_id is None:
        return state, []
    new_state = SelectionState(previous_object_id=state.selected_object_id)
    return new_state, [StopBreathing(), SetHighlightWidth(0), HighlightFeature(None), HideTooltip()]


def _on_move(state, event, registry, styles, is_eligible, rng, tooltip_offset):
    eligible = eligible_candidates(event.candidates, registry, is_eligible)

    if state.selected_object_id is not None:
        if state.selected_object_id in eligible:
            return state, [MoveTooltip(*tooltip_position(event.point, tooltip_offset))]
        return _exit(state)

    if not eligible:
        return state, []

    chosen = choose_candidate(eligible, state.previous_object_id, rng)
    new_state = replace(state, selected_object_id=chosen, animating=True,
                        animation_start_time=event.now)
    style = style_for(registry.route_key(chosen), styles)
    x, y = tooltip_position(event.point, tooltip_offset)
    return new_state, [
        HighlightFeature(chosen),
        StartBreathing(event.now),
        ShowTooltip(style.display_name, style.color, x, y),
    ]


def _on_click(state, event):
    if not event.feature:
        return state, []
    props = event.feature.get("properties") or {}
    anchor = event.lnglat if event.lnglat is not None else event.point
    return state, [ShowPopup(anchor, tuple(props.items()))]


def transition(state: SelectionState, event: InteractionEvent, *, registry,
               styles: dict[str, RouteStyle] | None = None,
               is_eligible: Callable[[str], bool] | None = None,
               rng=None, tooltip_offset=TOOLTIP_OFFSET):
    """Advance the hover state machine by one event.

    Returns (new_state, effects).  Clicks never change the state; leaving
    while already idle is a no-op.
    """
    if isinstance(event, PointerMove):
        return _on_move(state, event, registry, styles or {}, is_eligible,
                        rng or random, tooltip_offset)
    if isinstance(event, (PointerLeave, ForceIdle)):
        return _exit(state)
    if isinstance(event, Click):
        return _on_click(state, event)
    raise TypeError(f"Unknown interaction event: {event!r}")


# ── Popup table ──────────────────────────────────────────────────────

_CELL = "border:1px solid #ccc;padding:2px 6px;"


def render_attribute_table(rows) -> str:
    """Render feature attributes as the HTML table shown in the click popup."""
    out = ['<table style="border-collapse:collapse;">']
    for key, value in rows:
        out.append(
            f"<tr><td style='{_CELL}'><strong>{html.escape(str(key))}</strong></td>"
            f"<td style='{_CELL}'>{html.escape(str(value))}</td></tr>"
        )
    out.append("</table>")
    return "".join(out)


# ── Controller ───────────────────────────────────────────────────────

class HoverController:
    """Owns the map's SelectionState and wires transitions to the surface.

    registries maps each dataset to its FeatureRegistry; the visibility
    controller decides which one is active and which routes are eligible.
    """

    def __init__(self, surface, chrome, visibility, registries: dict,
                 styles: dict[str, RouteStyle] | None = None, rng=None,
                 tooltip_offset=TOOLTIP_OFFSET,
                 base_width: float = BREATH_BASE_WIDTH,
                 amplitude: float = BREATH_AMPLITUDE,
                 period: float = BREATH_PERIOD):
        self.surface = surface
        self.chrome = chrome
        self.visibility = visibility
        self.registries = registries
        self.styles = styles if styles is not None else load_route_styles()
        self.rng = rng or random.Random()
        self.tooltip_offset = tooltip_offset
        self.state = SelectionState()
        self.animator = BreathingAnimator(surface.frames, lambda: self.state,
                                          self._set_width, base_width, amplitude, period)
        self._generation = 0

    # Surface callbacks

    def on_pointer_move(self, event) -> None:
        registry = self.registry
        if registry is None:
            return
        candidates = []
        for feat in event.features:
            oid = registry.object_id_of(feat)
            if oid is not None:
                candidates.append(oid)
        ox, oy = self.surface.container_origin()
        point = (event.point[0] + ox, event.point[1] + oy)
        self.dispatch(PointerMove(tuple(candidates), point, self.surface.frames.now()))

    def on_pointer_leave(self, event=None) -> None:
        self.dispatch(PointerLeave())

    def on_click(self, event) -> None:
        feature = event.features[0] if event.features else None
        self.dispatch(Click(feature, event.point, event.lnglat))

    def force_idle(self, reason: str = "") -> None:
        self.dispatch(ForceIdle(reason))

    def close(self) -> None:
        self.force_idle("closed")
        self.animator.close()

    # State machine plumbing

    @property
    def registry(self):
        return self.registries.get(self.visibility.dataset)

    def _is_eligible(self, route_key) -> bool:
        return self.visibility.is_eligible(route_key)

    def dispatch(self, event: InteractionEvent) -> list:
        """Run one transition and apply its effects.

        A dispatch triggered while effects of an earlier one are still being
        applied supersedes it; the earlier one stops applying effects.
        """
        registry = self.registry
        if registry is None:
            return []
        self._generation += 1
        generation = self._generation

        old_phase = self.state.phase
        self.state, effects = transition(
            self.state, event, registry=registry, styles=self.styles,
            is_eligible=self._is_eligible, rng=self.rng,
            tooltip_offset=self.tooltip_offset,
        )
        if self.state.phase != old_phase:
            logger.debug(f"Hover {old_phase.value} -> {self.state.phase.value} "
                         f"({type(event).__name__}, id={self.state.selected_object_id})")

        for effect in effects:
            if generation != self._generation:
                logger.debug(f"Dropping stale effects of {type(event).__name__}")
                break
            self._apply(effect)
        return effects

    def _highlight_layer(self) -> str | None:
        layers = self.visibility.active_layers()
        return layers.highlight if layers else None

    def _set_width(self, width: float) -> None:
        layer = self._highlight_layer()
        if layer:
            self.surface.set_paint_property(layer, "line-width", width)

    def _apply(self, effect) -> None:
        if isinstance(effect, HighlightFeature):
            layer = self._highlight_layer()
            if layer:
                self.surface.set_filter(layer, self.visibility.highlight_filter(effect.object_id))
        elif isinstance(effect, SetHighlightWidth):
            self._set_width(effect.width)
        elif isinstance(effect, StartBreathing):
            self.animator.start()
        elif isinstance(effect, StopBreathing):
            self.animator.stop()
        elif isinstance(effect, ShowTooltip):
            self.chrome.show_tooltip(effect.text, effect.color, effect.x, effect.y)
        elif isinstance(effect, MoveTooltip):
            self.chrome.move_tooltip(effect.x, effect.y)
        elif isinstance(effect, HideTooltip):
            self.chrome.hide_tooltip()
        elif isinstance(effect, ShowPopup):
            self.chrome.show_popup(effect.anchor, list(effect.rows))
