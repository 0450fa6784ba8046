"""Feature registry: ObjectId -> route feature lookups for the hover layer."""

import logging

from config import OBJECT_ID_FIELD, ROUTE_KEY_FIELD

logger = logging.getLogger(__name__)


def _valid_id(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        oid = int(value)
    except (TypeError, ValueError):
        return None
    return oid if oid > 0 else None


class FeatureRegistry:
    """Tracks which rendered route feature each ObjectId addresses.

    Features coming out of dissolve() already carry ids.  Features from other
    sources (the alternate online dataset) may not, or may repeat one; those
    are adopted with fresh ids counting up from the current maximum.
    """

    def __init__(self, route_field=ROUTE_KEY_FIELD, id_field=OBJECT_ID_FIELD):
        self.route_field = route_field
        self.id_field = id_field
        self._features: dict[int, dict] = {}

    @classmethod
    def from_features(cls, features: list, route_field=ROUTE_KEY_FIELD,
                      id_field=OBJECT_ID_FIELD) -> "FeatureRegistry":
        registry = cls(route_field, id_field)
        registry.register(features)
        return registry

    def register(self, features: list) -> list[dict]:
        """Index features by ObjectId, assigning ids where missing or taken.

        Returns the registered features (adopted ones are tagged copies).
        """
        registered, pending = [], []
        for feat in features:
            oid = _valid_id((feat.get("properties") or {}).get(self.id_field))
            if oid is None or oid in self._features:
                pending.append(feat)
                continue
            self._features[oid] = feat
            registered.append(feat)

        next_id = max(self._features, default=0) + 1
        for feat in pending:
            props = dict(feat.get("properties") or {})
            props[self.id_field] = next_id
            adopted = {**feat, "properties": props}
            self._features[next_id] = adopted
            registered.append(adopted)
            next_id += 1
        if pending:
            logger.info(f"Assigned fresh {self.id_field} to {len(pending)} features")
        return registered

    def object_id_of(self, feature: dict) -> int | None:
        """Extract a registered ObjectId from a (hit-tested) feature."""
        oid = _valid_id((feature.get("properties") or {}).get(self.id_field))
        return oid if oid in self._features else None

    def route_key(self, object_id: int) -> str | None:
        feat = self._features.get(object_id)
        if feat is None:
            return None
        return (feat.get("properties") or {}).get(self.route_field)

    def feature(self, object_id: int) -> dict | None:
        return self._features.get(object_id)

    def ids_for_route(self, route_key: str) -> list[int]:
        return [oid for oid in self._features if self.route_key(oid) == route_key]

    def ids(self) -> list[int]:
        return list(self._features)

    def route_keys(self) -> list[str]:
        keys = []
        for oid in self._features:
            key = self.route_key(oid)
            if key is not None and key not in keys:
                keys.append(key)
        return keys

    def feature_collection(self) -> dict:
        return {"type": "FeatureCollection", "features": list(self._features.values())}

    def __contains__(self, object_id) -> bool:
        return object_id in self._features

    def __len__(self) -> int:
        return len(self._features)
