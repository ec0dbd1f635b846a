"""
Tests for the geographic overlay and the run configuration.
"""

import os
import sys
import textwrap

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from raildata.rail_config import DEFAULT_CONFIG, RailConfig
from raildata.rail_errors import StructuralParseError
from raildata.rail_overlay import Coordinate, GeoOverlay, haversine

OVERLAY_YAML = textwrap.dedent(
    """
    w1:
      north: {lat: 52.52, lon: 13.37, ref: "4711"}
      south: {lat: 52.40, lon: 13.37}
    w2:
      east: {lat: 52.52, lon: 13.50}
    """
)


def test_from_yaml():
    overlay = GeoOverlay.from_yaml(OVERLAY_YAML)
    assert len(overlay) == 2
    assert overlay.has_path("w1")
    assert not overlay.has_path("w3")
    north = overlay.node("w1", "north")
    assert north.coordinate == Coordinate(52.52, 13.37)
    assert north.attribute("ref") == "4711"
    assert overlay.node("w1", "east") is None
    assert [(n.path, n.name) for n in overlay.nodes()] == [
        ("w1", "north"),
        ("w1", "south"),
        ("w2", "east"),
    ]


def test_lookup_by_coordinate():
    overlay = GeoOverlay.from_yaml(OVERLAY_YAML)
    found = overlay.at(Coordinate(52.520001, 13.370001))
    assert [n.name for n in found] == ["north"]
    assert overlay.at(Coordinate(0.0, 0.0)) == []


def test_load_from_file(tmp_path):
    path = tmp_path / "overlay.yaml"
    path.write_text(OVERLAY_YAML, encoding="utf-8")
    assert len(GeoOverlay.load(str(path))) == 2


@pytest.mark.parametrize(
    "text",
    [
        "- a list\n",
        "w1: 12\n",
        "w1:\n  north: {lat: 52.5}\n",
        "w1:\n  north: {lat: abc, lon: 13.3}\n",
        "w1:\n  north: {lat: 95, lon: 13.3}\n",
        "w1: [unclosed\n",
    ],
)
def test_malformed_overlay(text):
    with pytest.raises(StructuralParseError):
        GeoOverlay.from_yaml(text)


def test_haversine():
    berlin = Coordinate(52.5200, 13.4050)
    potsdam = Coordinate(52.3906, 13.0645)
    assert 26000 < haversine(berlin, potsdam) < 28000
    assert berlin.distance_to(berlin) == 0.0
    assert 4.0 < haversine(Coordinate(52.52, 13.37), Coordinate(52.52004, 13.37)) < 5.0


def test_config_defaults():
    assert DEFAULT_CONFIG.parse_workers >= 1
    assert DEFAULT_CONFIG.site_tolerance == 25.0
    assert DEFAULT_CONFIG.suggestions == 3


def test_config_with_workers():
    config = RailConfig.with_workers(3, suggestions=1)
    assert config.parse_workers == config.check_workers == 3
    assert config.suggestions == 1


@pytest.mark.parametrize(
    "kwargs",
    [{"parse_workers": 0}, {"check_workers": -1}, {"site_tolerance": -1.0}, {"suggestions": -2}],
)
def test_config_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        RailConfig(**kwargs)
