import json
import logging
import math
import os
import time

import requests

from config import (
    CACHE_FILE, HTTP_MAX_RETRIES, HTTP_RETRY_DELAY, HTTP_TIMEOUT,
    RAIL_LINES_FILE, RAIL_STATIONS_FILE, ROUTE_KEY_FIELD,
)

logger = logging.getLogger(__name__)

_LINE_TYPES = ("LineString", "MultiLineString")


class RailDataDownloader:
    """Loads rail line / station GeoJSON from local files or URLs."""

    def __init__(self, lines_source=RAIL_LINES_FILE, stations_source=RAIL_STATIONS_FILE,
                 cache_file=CACHE_FILE):
        self.lines_source = lines_source
        self.stations_source = stations_source
        self.cache_file = cache_file
        self.timeout = HTTP_TIMEOUT
        self.max_retries = HTTP_MAX_RETRIES
        self.retry_delay = HTTP_RETRY_DELAY

    @staticmethod
    def is_url(source) -> bool:
        return str(source).lower().startswith(("http://", "https://"))

    def fetch_json(self, url):
        """GET a JSON document with retry logic. Returns None on failure."""
        logger.info(f"Fetching {url}")

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Attempt {attempt + 1}/{self.max_retries}")
                response = requests.get(url, timeout=self.timeout)

                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        logger.error(f"Invalid JSON from {url}: {e}")
                        return None
                elif response.status_code == 429:
                    logger.warning("Rate limited, retrying...")
                    time.sleep(self.retry_delay * (attempt + 1))
                else:
                    logger.error(f"Error fetching data: {response.status_code}")

            except requests.exceptions.Timeout:
                logger.warning(f"Request timeout on attempt {attempt + 1}, retrying...")
                time.sleep(self.retry_delay)
            except requests.exceptions.RequestException as e:
                logger.error(f"Network error: {e}")
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay)

        logger.error(f"Failed to fetch {url} after all retries")
        return None

    def read_json(self, path):
        """Read a GeoJSON file. Returns None if missing or unparsable."""
        if not os.path.exists(path):
            logger.error(f"File not found: {path}")
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {path}: {e}")
            return None

    def load(self, source):
        """Load a FeatureCollection from a path or URL, validating its shape."""
        data = self.fetch_json(source) if self.is_url(source) else self.read_json(source)
        if data is None:
            return None
        errors = self.validate_feature_collection(data)
        if errors:
            for err in errors[:10]:
                logger.error(f"{source}: {err}")
            return None
        logger.info(f"Loaded {len(data['features'])} features from {source}")
        return data

    def load_lines(self):
        data = self.load(self.lines_source)
        if data is not None and self.is_url(self.lines_source):
            self.save_cache(data)
        return data

    def load_cached_lines(self):
        logger.info(f"Offline mode — loading {self.cache_file}")
        return self.load(self.cache_file)

    def load_stations(self):
        return self.load(self.stations_source)

    def save_cache(self, data) -> bool:
        try:
            with open(self.cache_file, "w", encoding="utf-8") as f:
                json.dump(data, f)
            logger.info(f"Cached to {self.cache_file}")
            return True
        except IOError as e:
            logger.error(f"Error saving cache: {e}")
            return False

    @staticmethod
    def validate_feature_collection(data) -> list[str]:
        """Return a list of problems with a FeatureCollection (empty if fine)."""
        if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
            return ["root object must be a FeatureCollection"]
        if not isinstance(data.get("features"), list):
            return ["missing 'features' list"]
        errors = []
        for i, feat in enumerate(data["features"]):
            if not isinstance(feat, dict) or feat.get("type") != "Feature":
                errors.append(f"feature {i}: not a Feature")
            elif "geometry" not in feat:
                errors.append(f"feature {i}: missing geometry")
        return errors

    @staticmethod
    def split_features(data) -> tuple[list, list]:
        """Split a FeatureCollection into (line features, point features)."""
        lines, points = [], []
        for feat in data.get("features", []):
            gtype = (feat.get("geometry") or {}).get("type")
            if gtype in _LINE_TYPES:
                lines.append(feat)
            elif gtype == "Point":
                points.append(feat)
        return lines, points

    @staticmethod
    def _haversine_km(lat1, lon1, lat2, lon2):
        """Return the great-circle distance in km between two points."""
        R = 6371.0  # Earth radius in km
        dlat = math.radians(lat2 - lat1)
        dlon = math.radians(lon2 - lon1)
        a = (math.sin(dlat / 2) ** 2 +
             math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
             math.sin(dlon / 2) ** 2)
        return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    def _line_length_km(self, geometry):
        parts = geometry.get("coordinates") or []
        if geometry.get("type") == "LineString":
            parts = [parts]
        total = 0.0
        for coords in parts:
            for i in range(len(coords) - 1):
                lon1, lat1 = coords[i][:2]
                lon2, lat2 = coords[i + 1][:2]
                total += self._haversine_km(lat1, lon1, lat2, lon2)
        return total

    def get_statistics(self, features, route_key=ROUTE_KEY_FIELD):
        """Return fragment counts per route and total track length."""
        if not features:
            return {}

        routes = {}
        total_length_km = 0.0
        for feat in features:
            key = (feat.get("properties") or {}).get(route_key, "unknown")
            routes[key] = routes.get(key, 0) + 1
            geometry = feat.get("geometry") or {}
            if geometry.get("type") in _LINE_TYPES:
                total_length_km += self._line_length_km(geometry)

        return {
            "total_features": len(features),
            "routes": routes,
            "total_length_km": round(total_length_km, 2),
        }
