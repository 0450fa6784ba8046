#!/usr/bin/env python3
"""
build_map.py — Auckland rail map data pipeline.

Stages:
  1. Fetch     — load raw rail line fragments (file or URL), stations and,
                 optionally, the alternate online route dataset
  2. Filter    — drop excluded route keys
  3. Dissolve  — merge fragments into one polyline per route (OBJECTID 1..n)
  4. Stations  — clean raw stop names into map labels
  5. Style     — mount everything on a headless map and export a MapLibre
                 style plus the GeoJSON it references

Usage:
    python3 build_map.py                          # defaults from config.py
    python3 build_map.py --lines URL_OR_PATH      # raw fragments from elsewhere
    python3 build_map.py --offline                # use the cached line fragments
    python3 build_map.py --strict                 # buffer-union dissolve (bridges gaps)
    python3 build_map.py --exclude HUIA,PUKE      # drop routes before dissolving
    python3 build_map.py --hide huia              # start with a route family hidden
    python3 build_map.py --alternate-url URL      # also mount the online dataset
    python3 build_map.py --dataset alternate      # show the online dataset on load
    python3 build_map.py --out DIR --stats

Output (in --out, default current directory):
    dissolved.geojson, stations.geojson, style.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from config import (
    ALTERNATE_LINES_URL, ALTERNATE_SOURCE, DEFAULT_DATASET, DEFAULT_HIDDEN_FAMILIES, DISSOLVED_FILE,
    LOG_FILE, LOG_FORMAT, PRIMARY_SOURCE, RAIL_LINES_FILE, RAIL_STATIONS_FILE,
    ROUTE_FAMILIES, ROUTE_KEY_FIELD, STATIONS_OUT_FILE, STATIONS_SOURCE, STYLE_FILE,
)
from fetch_rail import RailDataDownloader
from rail_map import RailMapSession
from surface import InMemorySurface, RecordingChrome
from visibility import DatasetSource, VisibilityController, parse_dataset

logger = logging.getLogger("build_map")


def configure_logging(verbose: bool = False, log_file: str | None = LOG_FILE) -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


# ── Stage 2: Filter excluded routes ──────────────────────────────────

def parse_route_list(value: str | None) -> set[str]:
    if not value:
        return set()
    return {part.strip() for part in value.split(",") if part.strip()}


def filter_routes(features: list, exclude: set[str], route_key=ROUTE_KEY_FIELD) -> list:
    kept = [f for f in features if (f.get("properties") or {}).get(route_key) not in exclude]
    logger.info(f"[filter] Removed {len(features) - len(kept)} fragments belonging to excluded routes")
    return kept


# ── Stage 5: Style export ────────────────────────────────────────────

def build_session(lines: list, stations: list, alternate: list | None,
                  strict: bool, hidden_families, dataset,
                  alternate_error: str | None = None) -> tuple[RailMapSession, InMemorySurface]:
    """Mount basemap, datasets and stations on a headless map.

    A missing alternate dataset is recorded as failed, so a session that asked
    for it on load falls back to the dissolved dataset.
    """
    surface = InMemorySurface()
    visibility = VisibilityController(surface, hidden_families=hidden_families, dataset=dataset)
    session = RailMapSession(surface, RecordingChrome(), visibility=visibility)
    session.mount_basemap()
    if stations:
        session.load_stations(stations)
    session.load_primary(lines, strict=strict)
    if alternate is not None:
        session.load_alternate(alternate)
    elif alternate_error or visibility.dataset == DatasetSource.ALTERNATE:
        session.dataset_failed(DatasetSource.ALTERNATE, alternate_error or "not configured")
    return session, surface


def _external_style(style: dict, data_files: dict) -> dict:
    """Point geojson sources at the written files instead of inlining them."""
    for source_id, filename in data_files.items():
        if source_id in style["sources"]:
            style["sources"][source_id] = {"type": "geojson", "data": filename}
    return style


def write_outputs(session: RailMapSession, surface: InMemorySurface, out_dir: Path,
                  alternate_url: str | None = None) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    dissolved = session.registries[DatasetSource.PRIMARY].feature_collection()
    (out_dir / DISSOLVED_FILE).write_text(json.dumps(dissolved))
    logger.info(f"[write] {len(dissolved['features'])} routes → {out_dir / DISSOLVED_FILE}")

    data_files = {PRIMARY_SOURCE: DISSOLVED_FILE}
    if alternate_url and DatasetSource.ALTERNATE in session.registries:
        data_files[ALTERNATE_SOURCE] = alternate_url
    stations = surface.sources.get(STATIONS_SOURCE)
    if stations:
        (out_dir / STATIONS_OUT_FILE).write_text(json.dumps(stations["data"]))
        data_files[STATIONS_SOURCE] = STATIONS_OUT_FILE
        logger.info(f"[write] {len(stations['data']['features'])} stations → {out_dir / STATIONS_OUT_FILE}")

    style = _external_style(surface.to_style(), data_files)
    (out_dir / STYLE_FILE).write_text(json.dumps(style, indent=2))
    logger.info(f"[write] Style with {len(style['layers'])} layers → {out_dir / STYLE_FILE}")


# ── Main ─────────────────────────────────────────────────────────────

def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Auckland Rail Map Builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument("--lines", default=RAIL_LINES_FILE,
                   help="Raw rail line fragments (GeoJSON path or URL)")
    p.add_argument("--stations", default=RAIL_STATIONS_FILE,
                   help="Station points (GeoJSON path or URL)")
    p.add_argument("--no-stations", action="store_true", help="Skip station labels")
    p.add_argument("--alternate-url", default=ALTERNATE_LINES_URL,
                   help="Already-dissolved online route dataset (GeoJSON URL or path)")
    p.add_argument("--dataset", default=DEFAULT_DATASET, choices=[d.value for d in DatasetSource],
                   help="Dataset shown when the map loads")
    p.add_argument("--offline", action="store_true",
                   help="Use the cached line fragments instead of --lines")
    p.add_argument("--strict", action="store_true",
                   help="Buffer-union dissolve that bridges small gaps (doubles open lines)")
    p.add_argument("--exclude", metavar="KEYS",
                   help="Comma-separated route keys to drop before dissolving")
    p.add_argument("--hide", metavar="FAMILIES",
                   help=f"Route families hidden on load ({', '.join(ROUTE_FAMILIES)})")
    p.add_argument("--out", metavar="DIR", default=".", help="Output directory")
    p.add_argument("--stats", action="store_true", help="Log fragment statistics")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None) -> bool:
    args = parse_args(argv)
    configure_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("  Auckland Rail Map Builder")
    logger.info("=" * 60)

    downloader = RailDataDownloader(lines_source=args.lines, stations_source=args.stations)

    # Stage 1 — fetch
    data = downloader.load_cached_lines() if args.offline else downloader.load_lines()
    if data is None:
        logger.error("[fetch] No rail line data, giving up")
        return False
    lines, _ = downloader.split_features(data)

    stations = []
    if not args.no_stations:
        station_data = downloader.load_stations()
        if station_data is None:
            logger.warning("[fetch] Stations unavailable — continuing without labels")
        else:
            _, stations = downloader.split_features(station_data)

    alternate = None
    if args.alternate_url:
        alt_data = downloader.load(args.alternate_url)
        if alt_data is None:
            logger.warning("[fetch] Alternate dataset failed — only the dissolved dataset will be shown")
        else:
            alternate, _ = downloader.split_features(alt_data)

    if args.stats:
        logger.info(f"[stats] {json.dumps(downloader.get_statistics(lines), indent=2)}")

    # Stage 2 — filter
    lines = filter_routes(lines, parse_route_list(args.exclude))

    # Stages 3–5 — dissolve, stations, style
    hidden = parse_route_list(args.hide) if args.hide else DEFAULT_HIDDEN_FAMILIES
    try:
        session, surface = build_session(
            lines, stations, alternate, args.strict, hidden, parse_dataset(args.dataset),
            alternate_error="fetch failed" if args.alternate_url and alternate is None else None)
    except ValueError as e:
        logger.error(f"[style] {e}")
        return False

    write_outputs(session, surface, Path(args.out), args.alternate_url)
    session.close()
    logger.info("Pipeline completed successfully")
    return True


if __name__ == "__main__":
    sys.exit(0 if main() else 1)
