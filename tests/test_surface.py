"""Tests for surface.py"""

import pytest

from surface import InMemorySurface, MapEvent, RecordingChrome, evaluate


def _collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}


def _line(oid, key, coords):
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": {"OBJECTID": oid, "ROUTENUMBER": key},
    }


class TestEvaluate:
    def test_get_and_compare(self):
        props = {"ROUTENUMBER": "EAST", "OBJECTID": 2}
        assert evaluate(["==", ["get", "OBJECTID"], 2], props) is True
        assert evaluate(["!=", ["get", "OBJECTID"], 2], props) is False
        assert evaluate(["get", "missing"], props) is None

    def test_in_and_not(self):
        expr = ["!", ["in", ["get", "ROUTENUMBER"], ["literal", ["HUIA"]]]]
        assert evaluate(expr, {"ROUTENUMBER": "EAST"}) is True
        assert evaluate(expr, {"ROUTENUMBER": "HUIA"}) is False

    def test_all_any(self):
        assert evaluate(["all", True, ["==", 1, 1]], {}) is True
        assert evaluate(["any", False, ["==", 1, 2]], {}) is False

    def test_match(self):
        expr = ["match", ["get", "ROUTENUMBER"], "EAST", "#FFD100", ["SOUTH", "STH"], "#E4002B", "#e63946"]
        assert evaluate(expr, {"ROUTENUMBER": "EAST"}) == "#FFD100"
        assert evaluate(expr, {"ROUTENUMBER": "STH"}) == "#E4002B"
        assert evaluate(expr, {"ROUTENUMBER": "NORTH"}) == "#e63946"

    def test_unsupported_operator(self):
        with pytest.raises(ValueError):
            evaluate(["interpolate", ["linear"], ["zoom"]], {})


class TestCamera:
    def setup_method(self):
        self.surface = InMemorySurface(center=(174.7633, -36.8485), zoom=12, size=(1024, 768))

    def test_center_projects_to_middle(self):
        assert self.surface.project(174.7633, -36.8485) == pytest.approx((512, 384))

    def test_unproject_round_trip(self):
        lon, lat = self.surface.unproject(*self.surface.project(174.80, -36.90))
        assert lon == pytest.approx(174.80)
        assert lat == pytest.approx(-36.90)

    def test_north_is_up(self):
        _, y_north = self.surface.project(174.7633, -36.80)
        assert y_north < 384

    def test_jump_to(self):
        self.surface.jump_to(center=(174.80, -36.90), zoom=14)
        assert self.surface.project(174.80, -36.90) == pytest.approx((512, 384))
        assert self.surface.zoom == 14


class TestStyle:
    def setup_method(self):
        self.surface = InMemorySurface()
        self.surface.add_source("rail", {"type": "geojson", "data": _collection()})

    def test_duplicate_layer(self):
        self.surface.add_layer({"id": "rail", "type": "line", "source": "rail"})
        with pytest.raises(ValueError):
            self.surface.add_layer({"id": "rail", "type": "line", "source": "rail"})

    def test_missing_source(self):
        with pytest.raises(ValueError):
            self.surface.add_layer({"id": "x", "type": "line", "source": "nope"})

    def test_before_inserts_below(self):
        self.surface.add_layer({"id": "top", "type": "line", "source": "rail"})
        self.surface.add_layer({"id": "below", "type": "line", "source": "rail"}, before="top")
        self.surface.add_layer({"id": "end", "type": "line", "source": "rail"}, before="missing")
        assert self.surface.layer_ids() == ["below", "top", "end"]

    def test_add_source_replaces_data(self):
        data = _collection(_line(1, "EAST", [[0, 0], [1, 1]]))
        self.surface.add_source("rail", {"type": "geojson", "data": data})
        assert self.surface.sources["rail"]["data"] is data

    def test_paint_filter_visibility(self):
        self.surface.add_layer({"id": "rail", "type": "line", "source": "rail",
                                "paint": {"line-width": 3}})
        self.surface.set_paint_property("rail", "line-width", 7)
        assert self.surface.get_paint_property("rail", "line-width") == 7
        self.surface.set_filter("rail", ["==", ["get", "OBJECTID"], 1])
        assert self.surface.get_filter("rail") == ["==", ["get", "OBJECTID"], 1]
        self.surface.set_filter("rail", None)
        assert self.surface.get_filter("rail") is None
        self.surface.set_layer_visibility("rail", False)
        assert not self.surface.is_visible("rail")
        assert self.surface.to_style()["layers"][0]["layout"]["visibility"] == "none"

    def test_unknown_layer(self):
        with pytest.raises(KeyError):
            self.surface.set_paint_property("ghost", "line-width", 1)

    def test_to_style(self):
        style = self.surface.to_style()
        assert style["version"] == 8
        assert "rail" in style["sources"]


class TestHitTesting:
    def setup_method(self):
        self.surface = InMemorySurface()
        center_lat = self.surface.center[1]
        self.east = _line(1, "EAST", [[174.75, center_lat], [174.78, center_lat]])
        self.huia = _line(2, "HUIA", [[174.75, center_lat], [174.78, center_lat]])
        self.surface.add_source("rail", {"type": "geojson", "data": _collection(self.east, self.huia)})
        self.surface.add_layer({"id": "hitbox", "type": "line", "source": "rail",
                                "paint": {"line-width": 18, "line-opacity": 0}})
        self.on_line = self.surface.project(174.76, center_lat)
        self.near_line = (self.on_line[0], self.on_line[1] + 8)
        self.off_line = (self.on_line[0], self.on_line[1] + 40)

    def test_hits_within_half_width(self):
        hits = self.surface.query_rendered_features(self.near_line, ["hitbox"])
        assert [h["properties"]["OBJECTID"] for h in hits] == [1, 2]
        assert hits[0]["layer"] == {"id": "hitbox"}

    def test_miss_outside_tolerance(self):
        assert self.surface.query_rendered_features(self.off_line, ["hitbox"]) == []

    def test_filter_excludes(self):
        self.surface.set_filter("hitbox", ["!", ["in", ["get", "ROUTENUMBER"], ["literal", ["HUIA"]]]])
        hits = self.surface.query_rendered_features(self.on_line)
        assert [h["properties"]["ROUTENUMBER"] for h in hits] == ["EAST"]

    def test_hidden_layer_not_hit(self):
        self.surface.set_layer_visibility("hitbox", False)
        assert self.surface.query_rendered_features(self.on_line) == []

    def test_zero_width_not_hit(self):
        self.surface.set_paint_property("hitbox", "line-width", 0)
        assert self.surface.query_rendered_features(self.on_line) == []

    def test_top_layer_first(self):
        self.surface.add_layer({"id": "upper", "type": "line", "source": "rail",
                                "paint": {"line-width": 4}})
        hits = self.surface.query_rendered_features(self.on_line)
        assert hits[0]["layer"]["id"] == "upper"
        assert hits[-1]["layer"]["id"] == "hitbox"


class TestPointerEvents:
    def setup_method(self):
        self.surface = InMemorySurface(origin=(5, 5))
        lat = self.surface.center[1]
        self.surface.add_source("rail", {"type": "geojson",
                                         "data": _collection(_line(1, "EAST", [[174.75, lat], [174.78, lat]]))})
        self.surface.add_layer({"id": "hitbox", "type": "line", "source": "rail",
                                "paint": {"line-width": 18}})
        self.on_line = self.surface.project(174.76, lat)
        self.off_line = (self.on_line[0], self.on_line[1] + 100)
        self.log = []
        for event_type in ("mouseenter", "mousemove", "mouseleave", "click"):
            self.surface.on(event_type, "hitbox",
                            lambda event, t=event_type: self.log.append((t, event)))

    def test_enter_move_leave(self):
        self.surface.pointer_move(self.on_line)
        self.surface.pointer_move(self.on_line)
        self.surface.pointer_move(self.off_line)
        assert [t for t, _ in self.log] == ["mouseenter", "mousemove", "mousemove", "mouseleave"]
        move = self.log[1][1]
        assert isinstance(move, MapEvent)
        assert move.features[0]["properties"]["OBJECTID"] == 1
        assert move.lnglat[0] == pytest.approx(174.76)

    def test_move_off_line_without_entering(self):
        self.surface.pointer_move(self.off_line)
        assert self.log == []

    def test_pointer_out(self):
        self.surface.pointer_move(self.on_line)
        self.surface.pointer_out()
        assert self.log[-1][0] == "mouseleave"
        self.surface.pointer_out()
        assert [t for t, _ in self.log].count("mouseleave") == 1

    def test_click(self):
        self.surface.click(self.on_line)
        self.surface.click(self.off_line)
        clicks = [e for t, e in self.log if t == "click"]
        assert len(clicks) == 1
        assert clicks[0].features[0]["properties"]["ROUTENUMBER"] == "EAST"

    def test_off_unsubscribes(self):
        surface = InMemorySurface()
        calls = []
        handler = calls.append
        surface.on("click", "hitbox", handler)
        surface.off("click", "hitbox", handler)
        surface.off("click", "hitbox", handler)
        assert surface._handlers[("click", "hitbox")] == []

    def test_unsupported_event(self):
        with pytest.raises(ValueError):
            self.surface.on("wheel", "hitbox", print)

    def test_container_origin(self):
        assert self.surface.container_origin() == (5, 5)


class TestRecordingChrome:
    def test_tooltip_lifecycle(self):
        chrome = RecordingChrome()
        chrome.move_tooltip(1, 1)
        assert chrome.tooltip is None
        chrome.show_tooltip("Eastern Line", "#FFD100", 10, 20)
        chrome.move_tooltip(30, 40)
        assert chrome.tooltip == {"text": "Eastern Line", "color": "#FFD100", "x": 30, "y": 40}
        chrome.hide_tooltip()
        assert chrome.tooltip is None

    def test_popup_html(self):
        chrome = RecordingChrome()
        chrome.show_popup((174.7, -36.8), [("STOPNAME", "Britomart <CBD>")])
        assert chrome.popups[0]["anchor"] == (174.7, -36.8)
        assert "Britomart &lt;CBD&gt;" in chrome.popups[0]["html"]

    def test_cursor(self):
        chrome = RecordingChrome()
        assert chrome.cursor == ""
        chrome.set_cursor("pointer")
        assert chrome.cursor == "pointer"
        chrome.set_cursor("")
        assert chrome.cursor == ""
