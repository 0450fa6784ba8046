"""Tests for registry.py"""

from dissolve import dissolve
from registry import FeatureRegistry


def _line(route, coords, **props):
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": {"ROUTENUMBER": route, **props},
    }


RAW = [
    _line("EAST", [[174.70, -36.85], [174.71, -36.85]]),
    _line("WEST", [[174.60, -36.90], [174.61, -36.91]]),
    _line("EAST", [[174.71, -36.85], [174.72, -36.85]]),
    _line("HUIA", [[174.80, -36.95], [174.81, -36.96]]),
]


class TestFromDissolved:
    def setup_method(self):
        self.registry = FeatureRegistry.from_features(dissolve(RAW))

    def test_ids_and_routes(self):
        assert self.registry.ids() == [1, 2, 3]
        assert self.registry.route_key(1) == "EAST"
        assert self.registry.route_key(2) == "WEST"
        assert self.registry.route_key(3) == "HUIA"
        assert len(self.registry) == 3

    def test_route_keys_in_order(self):
        assert self.registry.route_keys() == ["EAST", "WEST", "HUIA"]

    def test_ids_for_route(self):
        assert self.registry.ids_for_route("HUIA") == [3]
        assert self.registry.ids_for_route("NORTH") == []

    def test_unknown_id(self):
        assert self.registry.route_key(42) is None
        assert self.registry.feature(42) is None
        assert 42 not in self.registry
        assert 1 in self.registry

    def test_object_id_of_hit_feature(self):
        hit = {"type": "Feature", "properties": {"OBJECTID": 2, "ROUTENUMBER": "WEST"}}
        assert self.registry.object_id_of(hit) == 2

    def test_object_id_of_accepts_stringified_ids(self):
        # Renderers sometimes hand properties back as strings
        assert self.registry.object_id_of({"properties": {"OBJECTID": "3"}}) == 3

    def test_object_id_of_unknown(self):
        assert self.registry.object_id_of({"properties": {"OBJECTID": 99}}) is None
        assert self.registry.object_id_of({"properties": {}}) is None

    def test_feature_collection(self):
        fc = self.registry.feature_collection()
        assert fc["type"] == "FeatureCollection"
        assert len(fc["features"]) == 3


class TestAdoption:
    def test_missing_ids_assigned_after_max(self):
        feats = [
            _line("EAST", [[0, 0], [1, 0]], OBJECTID=7),
            _line("WEST", [[0, 1], [1, 1]]),
            _line("ONE", [[0, 2], [1, 2]], OBJECTID=0),
        ]
        registry = FeatureRegistry.from_features(feats)
        assert registry.route_key(7) == "EAST"
        assert registry.route_key(8) == "WEST"
        assert registry.route_key(9) == "ONE"

    def test_duplicate_id_gets_fresh_one(self):
        feats = [
            _line("EAST", [[0, 0], [1, 0]], OBJECTID=1),
            _line("WEST", [[0, 1], [1, 1]], OBJECTID=1),
        ]
        registry = FeatureRegistry.from_features(feats)
        assert registry.ids_for_route("EAST") == [1]
        assert registry.ids_for_route("WEST") == [2]

    def test_adopted_feature_is_a_tagged_copy(self):
        feat = _line("WEST", [[0, 1], [1, 1]])
        registered = FeatureRegistry.from_features([feat]).feature(1)
        assert registered["properties"]["OBJECTID"] == 1
        assert "OBJECTID" not in feat["properties"]

    def test_boolean_id_rejected(self):
        registry = FeatureRegistry.from_features([_line("EAST", [[0, 0], [1, 0]], OBJECTID=True)])
        assert registry.feature(1)["properties"]["OBJECTID"] == 1
        assert registry.feature(1)["properties"]["OBJECTID"] is not True
