"""Station points: clean raw stop names into map labels."""

import copy
import logging
import re

from config import STATION_LABEL_FIELD

logger = logging.getLogger(__name__)

# Generic suffixes stripped from station names
_SUFFIX_RE = re.compile(
    r"\s*\b(?:(?:train|railway|rail)\s+)?(?:station|stn|platform\s*\w*)\s*$",
    re.IGNORECASE,
)

# Trailing connectors left over once suffixes / line names are gone
_CONNECTOR_RE = re.compile(
    r"\s*(\band\b|&|\bat\b|[-,/])\s*$",
    re.IGNORECASE,
)


def normalize_station_label(name: str, route_names=()) -> str:
    """Shorten a raw stop name for use as a map label.

    Steps (in order):
      1. Strip generic suffixes: "Train Station", "Railway Station", "Stn", …
      2. Strip line names ("Onehunga Line") that the station is already drawn on.
      3. Clean up leftover connectors ("and", "&", "-", …).
      4. Fall back to the suffix-stripped version if step 2 left fewer than
         3 characters, and to the raw name if even that is too short.
    """
    name = (name or "").strip()
    after_suffix = _SUFFIX_RE.sub("", name).strip()

    after_routes = after_suffix
    for rname in sorted(route_names, key=len, reverse=True):
        if len(rname) < 5:
            continue
        candidate = re.sub(r"\b" + re.escape(rname) + r"\b", "", after_routes, flags=re.IGNORECASE)
        if len(re.sub(r"[\s,.\-&/]+", " ", candidate).strip()) < 3:
            continue
        after_routes = candidate

    for _ in range(3):
        after_routes = _CONNECTOR_RE.sub("", after_routes).strip(" ,.-&/")

    result = after_routes if len(after_routes) >= 3 else after_suffix
    return result.strip() if len(result.strip()) >= 3 else name


def build_station_features(points: list, label_field: str = STATION_LABEL_FIELD,
                           route_names=()) -> list[dict]:
    """Keep Point features that have a label, adding a cleaned `label` property."""
    stations, skipped = [], 0
    for feat in points:
        geometry = feat.get("geometry") or {}
        props = feat.get("properties") or {}
        raw = props.get(label_field)
        if geometry.get("type") != "Point" or len(geometry.get("coordinates") or []) < 2 or not raw:
            skipped += 1
            continue
        new_props = copy.deepcopy(props)
        new_props["label"] = normalize_station_label(str(raw), route_names)
        stations.append({"type": "Feature", "geometry": copy.deepcopy(geometry),
                         "properties": new_props})
    if skipped:
        logger.warning(f"Skipped {skipped} station features without a point or '{label_field}'")
    logger.info(f"Prepared {len(stations)} station labels")
    return stations
