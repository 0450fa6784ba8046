"""
dissolve.py — Merge raw rail line fragments into one polyline per route.

The open-data rail export ships each route as a pile of disconnected track
segments in arbitrary order.  The map wants exactly one feature per route so
that a hover can highlight "the Eastern Line" rather than one 200 m piece of it.

How it works:
  1. Group features by route key, keeping the order in which keys were first seen.
  2. Combine each group's fragments with shapely's linemerge.  Touching
     fragments collapse into a single LineString; anything still disconnected
     stays a MultiLineString.
  3. Tag every merged route with a synthetic OBJECTID (1, 2, 3, … in group order).

The strict variant (dissolve_buffered) bridges near-but-not-touching fragments
by buffering, unioning and re-extracting the polygon outline.  It is an
approximation, not a centerline: open routes come back as a closed outline
hugging both sides of the track.
"""

import copy
import logging

from pyproj import Transformer
from shapely.errors import GEOSException
from shapely.geometry import MultiLineString, mapping, shape
from shapely.ops import linemerge, transform, unary_union

from config import OBJECT_ID_FIELD, ROUTE_KEY_FIELD, STRICT_BUFFER_M

logger = logging.getLogger(__name__)

_LINE_TYPES = ("LineString", "MultiLineString")
_GEOMETRY_ERRORS = (ValueError, TypeError, KeyError, GEOSException)


# ── Grouping ─────────────────────────────────────────────────────────

def _key_accessor(route_key):
    if callable(route_key):
        return route_key
    return lambda feat: (feat.get("properties") or {}).get(route_key)


def group_by_route(features: list, route_key=ROUTE_KEY_FIELD) -> dict[str, list[dict]]:
    """Group features by route key in first-seen order.

    route_key is either a property name or a callable taking a feature and
    returning its key.  Features without a key are skipped.
    """
    get_key = _key_accessor(route_key)
    groups: dict[str, list[dict]] = {}
    skipped = 0
    for feat in features:
        key = get_key(feat)
        if key is None or key == "":
            skipped += 1
            continue
        groups.setdefault(str(key), []).append(feat)
    if skipped:
        logger.warning(f"Skipped {skipped} features with no route key")
    return groups


# ── Geometry helpers ─────────────────────────────────────────────────

def _as_lists(coords):
    """Turn shapely's nested coordinate tuples into plain JSON-style lists."""
    if coords and isinstance(coords[0], (list, tuple)):
        return [_as_lists(c) for c in coords]
    return [float(c) for c in coords]


def _to_geojson(geom) -> dict:
    gj = mapping(geom)
    return {"type": gj["type"], "coordinates": _as_lists(gj["coordinates"])}


def _line_parts(geom) -> list:
    """Explode a (Multi)LineString into its LineString parts."""
    if geom.geom_type in ("LineString", "LinearRing"):
        return [geom]
    if geom.geom_type in ("MultiLineString", "GeometryCollection"):
        parts = []
        for g in geom.geoms:
            parts.extend(_line_parts(g))
        return parts
    return []


def _fragment_shape(feat: dict):
    """Return the shapely geometry of a line fragment.

    Raises ValueError (or a shapely error) when the fragment is unusable.
    """
    geometry = feat.get("geometry")
    if not isinstance(geometry, dict) or geometry.get("type") not in _LINE_TYPES:
        raise ValueError(f"not a line geometry: {str(geometry)[:80]}")
    geom = shape(geometry)
    if geom.is_empty:
        raise ValueError("empty geometry")
    return geom


def _usable_fragments(fragments: list) -> list[tuple[dict, object]]:
    usable = []
    for feat in fragments:
        try:
            usable.append((feat, _fragment_shape(feat)))
        except _GEOMETRY_ERRORS as e:
            logger.warning(f"Skipping malformed fragment: {e}")
    return usable


def merge_fragments(fragments: list) -> dict | None:
    """Combine fragment geometries into one GeoJSON line geometry.

    A lone usable fragment is returned unchanged.  Several fragments are
    line-merged: connected pieces flatten to a LineString, disconnected ones
    stay a MultiLineString.  Returns None if no fragment is usable.
    """
    usable = _usable_fragments(fragments)
    if not usable:
        return None
    if len(usable) == 1:
        return copy.deepcopy(usable[0][0]["geometry"])

    parts = []
    for _, geom in usable:
        parts.extend(_line_parts(geom))
    try:
        merged = linemerge(MultiLineString(parts))
    except _GEOMETRY_ERRORS as e:
        logger.warning(f"linemerge failed ({e}); keeping fragments as a multi-line")
        merged = MultiLineString(parts)
    return _to_geojson(merged)


# ── Dissolve ─────────────────────────────────────────────────────────

def _dissolved_feature(route: str, first: dict, geometry: dict, object_id: int,
                       route_field: str, id_field: str) -> dict:
    props = copy.deepcopy(first.get("properties") or {})
    props[route_field] = route
    props[id_field] = object_id
    return {"type": "Feature", "geometry": geometry, "properties": props}


def _route_field(route_key) -> str:
    return route_key if isinstance(route_key, str) else ROUTE_KEY_FIELD


def dissolve(features: list, route_key=ROUTE_KEY_FIELD,
             id_field: str = OBJECT_ID_FIELD) -> list[dict]:
    """Dissolve raw line fragments into one feature per route key.

    ObjectIds are assigned 1..n in first-seen route order.  Each output
    feature keeps the first fragment's properties (opaque attributes) with
    the route key and ObjectId written on top.  Groups that yield no usable
    geometry are skipped and do not consume an id.
    """
    groups = group_by_route(features, route_key)
    logger.info(f"Grouped {len(features)} fragments into {len(groups)} routes: {list(groups)}")

    route_field = _route_field(route_key)
    dissolved = []
    object_id = 1
    for route, fragments in groups.items():
        geometry = merge_fragments(fragments)
        if geometry is None:
            logger.warning(f"Route {route}: no usable fragments, skipping")
            continue
        logger.debug(f"Route {route}: {len(fragments)} fragments -> {geometry['type']}")
        dissolved.append(_dissolved_feature(route, fragments[0], geometry, object_id,
                                            route_field, id_field))
        object_id += 1
    logger.info(f"Dissolved into {len(dissolved)} route features")
    return dissolved


# ── Strict variant: buffer → union → outline ─────────────────────────

def utm_transformers(lon: float, lat: float) -> tuple[Transformer, Transformer]:
    """Forward / inverse transformers between WGS84 and the local UTM zone."""
    zone = int((lon + 180) // 6) % 60 + 1
    hemisphere_code = "7" if lat < 0 else "6"
    utm_epsg = f"EPSG:32{hemisphere_code}{zone:02d}"
    forward = Transformer.from_crs("EPSG:4326", utm_epsg, always_xy=True)
    inverse = Transformer.from_crs(utm_epsg, "EPSG:4326", always_xy=True)
    return forward, inverse


def buffer_merge(geoms: list, buffer_m: float) -> dict | None:
    """Buffer lines (lon/lat) by buffer_m metres, union them, return the outline."""
    if not geoms:
        return None
    centroid = unary_union(geoms).centroid
    forward, inverse = utm_transformers(centroid.x, centroid.y)

    buffers = []
    for geom in geoms:
        try:
            buffers.append(transform(forward.transform, geom).buffer(buffer_m))
        except _GEOMETRY_ERRORS as e:
            logger.warning(f"Buffering failed for one fragment ({e}), skipping")
    if not buffers:
        return None

    outline = _line_parts(unary_union(buffers).boundary)
    if not outline:
        return None
    merged = linemerge(MultiLineString(outline))
    return _to_geojson(transform(inverse.transform, merged))


def dissolve_buffered(features: list, buffer_m: float = STRICT_BUFFER_M,
                      route_key=ROUTE_KEY_FIELD,
                      id_field: str = OBJECT_ID_FIELD) -> list[dict]:
    """Strict dissolve that bridges small gaps between fragments.

    Same grouping and ObjectId rules as dissolve(); each route geometry is the
    merged outline of the unioned buffers, so both sides of an open line come
    back.  Callers must tolerate (or filter) that doubled outline.
    """
    groups = group_by_route(features, route_key)
    route_field = _route_field(route_key)
    dissolved = []
    object_id = 1
    for route, fragments in groups.items():
        usable = _usable_fragments(fragments)
        geometry = buffer_merge([geom for _, geom in usable], buffer_m)
        if geometry is None:
            logger.warning(f"Route {route}: strict dissolve produced no outline, skipping")
            continue
        dissolved.append(_dissolved_feature(route, fragments[0], geometry, object_id,
                                            route_field, id_field))
        object_id += 1
    logger.info(f"Strict dissolve ({buffer_m} m buffer) produced {len(dissolved)} route features")
    return dissolved


def dissolve_collection(collection: dict, strict: bool = False, **kwargs) -> dict:
    """Dissolve a GeoJSON FeatureCollection, returning a new FeatureCollection."""
    lines = [f for f in collection.get("features", [])
             if (f.get("geometry") or {}).get("type") in _LINE_TYPES]
    if strict:
        features = dissolve_buffered(lines, **kwargs)
    else:
        features = dissolve(lines, **kwargs)
    return {"type": "FeatureCollection", "features": features}
