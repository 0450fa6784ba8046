"""Tests for build_map.py"""

import json

import pytest

from build_map import filter_routes, main, parse_args, parse_route_list
from config import ALTERNATE_SOURCE, PRIMARY_SOURCE, STATIONS_SOURCE
from visibility import DatasetLayers


def _frag(route, coords):
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": {"ROUTENUMBER": route},
    }


LINES = {
    "type": "FeatureCollection",
    "features": [
        _frag("EAST", [[174.750, -36.8485], [174.765, -36.8485]]),
        _frag("EAST", [[174.765, -36.8485], [174.780, -36.8485]]),
        _frag("HUIA", [[174.750, -36.840], [174.780, -36.840]]),
        _frag("WEST", [[174.750, -36.860], [174.780, -36.860]]),
    ],
}

STATIONS = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "geometry": {"type": "Point", "coordinates": [174.7679, -36.8442]},
         "properties": {"STOPNAME": "Britomart Train Station"}},
    ],
}

ONLINE = {
    "type": "FeatureCollection",
    "features": [_frag("PUKE", [[174.75, -36.87], [174.78, -36.87]])],
}


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "lines.geojson").write_text(json.dumps(LINES))
    (tmp_path / "stations.geojson.in").write_text(json.dumps(STATIONS))
    (tmp_path / "online.geojson").write_text(json.dumps(ONLINE))
    return tmp_path


def _run(workdir, *extra):
    argv = ["--lines", "lines.geojson", "--stations", "stations.geojson.in",
            "--out", str(workdir / "out"), *extra]
    return main(argv)


def _read(workdir, name):
    return json.loads((workdir / "out" / name).read_text())


class TestHelpers:
    def test_parse_route_list(self):
        assert parse_route_list("HUIA, PUKE,,") == {"HUIA", "PUKE"}
        assert parse_route_list(None) == set()

    def test_filter_routes(self):
        kept = filter_routes(LINES["features"], {"HUIA"})
        assert [f["properties"]["ROUTENUMBER"] for f in kept] == ["EAST", "EAST", "WEST"]

    def test_defaults(self):
        args = parse_args([])
        assert args.dataset == "primary"
        assert not args.strict
        assert args.out == "."


class TestMain:
    def test_writes_outputs(self, workdir):
        assert _run(workdir) is True

        dissolved = _read(workdir, "dissolved.geojson")
        assert [(f["properties"]["OBJECTID"], f["properties"]["ROUTENUMBER"])
                for f in dissolved["features"]] == [(1, "EAST"), (2, "HUIA"), (3, "WEST")]
        assert dissolved["features"][0]["geometry"]["type"] == "LineString"

        stations = _read(workdir, "stations.geojson")
        assert stations["features"][0]["properties"]["label"] == "Britomart"

        style = _read(workdir, "style.json")
        assert style["version"] == 8
        assert style["sources"][PRIMARY_SOURCE] == {"type": "geojson", "data": "dissolved.geojson"}
        assert style["sources"][STATIONS_SOURCE] == {"type": "geojson", "data": "stations.geojson"}
        layer_ids = [layer["id"] for layer in style["layers"]]
        assert PRIMARY_SOURCE + "-hitbox" in layer_ids
        assert layer_ids.index(PRIMARY_SOURCE + "-hitbox") < layer_ids.index(STATIONS_SOURCE)

    def test_exclude(self, workdir):
        assert _run(workdir, "--exclude", "HUIA")
        keys = [f["properties"]["ROUTENUMBER"] for f in _read(workdir, "dissolved.geojson")["features"]]
        assert keys == ["EAST", "WEST"]

    def test_hide_family(self, workdir):
        assert _run(workdir, "--hide", "huia")
        style = _read(workdir, "style.json")
        hitbox = next(l for l in style["layers"] if l["id"] == PRIMARY_SOURCE + "-hitbox")
        assert hitbox["filter"] == ["!", ["in", ["get", "ROUTENUMBER"], ["literal", ["HUIA"]]]]

    def test_unknown_family_fails(self, workdir):
        assert _run(workdir, "--hide", "express") is False

    def test_no_stations(self, workdir):
        assert _run(workdir, "--no-stations")
        assert not (workdir / "out" / "stations.geojson").exists()
        assert STATIONS_SOURCE not in _read(workdir, "style.json")["sources"]

    def test_missing_stations_is_not_fatal(self, workdir):
        assert main(["--lines", "lines.geojson", "--stations", "missing.geojson",
                     "--out", str(workdir / "out")])
        assert not (workdir / "out" / "stations.geojson").exists()

    def test_missing_lines_fails(self, workdir):
        assert main(["--lines", "missing.geojson", "--out", str(workdir / "out")]) is False

    def test_offline_without_cache_fails(self, workdir):
        assert _run(workdir, "--offline") is False

    def test_alternate_dataset_on_load(self, workdir):
        assert _run(workdir, "--alternate-url", "online.geojson", "--dataset", "alternate")
        style = _read(workdir, "style.json")
        assert style["sources"][ALTERNATE_SOURCE] == {"type": "geojson", "data": "online.geojson"}
        layers = {l["id"]: l for l in style["layers"]}
        assert layers[PRIMARY_SOURCE]["layout"]["visibility"] == "none"
        assert layers[ALTERNATE_SOURCE]["layout"]["visibility"] == "visible"

    def test_failed_alternate_keeps_primary(self, workdir):
        assert _run(workdir, "--alternate-url", "missing.geojson")
        style = _read(workdir, "style.json")
        assert ALTERNATE_SOURCE not in style["sources"]
        layers = {l["id"]: l for l in style["layers"]}
        assert layers[PRIMARY_SOURCE]["layout"]["visibility"] == "visible"

    def test_failed_alternate_on_load_shows_primary(self, workdir):
        assert _run(workdir, "--dataset", "alternate", "--alternate-url", "missing.geojson")
        style = _read(workdir, "style.json")
        assert ALTERNATE_SOURCE not in style["sources"]
        layers = {l["id"]: l for l in style["layers"]}
        for layer_id in DatasetLayers.for_source(PRIMARY_SOURCE).all():
            assert layers[layer_id]["layout"]["visibility"] == "visible"

    def test_strict(self, workdir):
        assert _run(workdir, "--strict", "--stats")
        dissolved = _read(workdir, "dissolved.geojson")
        assert len(dissolved["features"]) == 3
