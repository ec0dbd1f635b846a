"""
Tests for the check engine and the default battery of checks.

This module tests:
1. Engine behaviour: ordering, isolation, selection and registration
2. Each default check against small hand-written datasets
"""

import dataclasses
import os
import sys
import textwrap
import threading
import time

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from raildata.checks import DEFAULT_CHECKS, CheckEngine, default_engine, finding, geometry
from raildata.checks.chronology import certainly_before
from raildata.rail_config import RailConfig
from raildata.rail_findings import (
    CHECK_INTERNAL,
    DANGLING_LINK,
    DATE_ORDER,
    DUPLICATE_SITE,
    LINE_ENDPOINTS,
    REFERENCE_CYCLE,
    SECTION_ENDPOINT,
    TYPE_MISMATCH,
    Severity,
)
from raildata.rail_model import Date, DocumentType, Link, Origin, Precision
from raildata.rail_overlay import GeoOverlay
from raildata.rail_parser import RawRecord
from raildata.rail_resolver import resolve
from raildata.rail_store import Store, load_store


def record(text, path="data.yaml"):
    return RawRecord(None, textwrap.dedent(text), Origin(path, 1))


def point(key, extra=""):
    return record(f"key: {key}\ntype: point\n{extra}")


def organization(key, extra=""):
    return record(f"key: {key}\ntype: organization\nsubtype: company\n{extra}")


def line(key, points, extra=""):
    return record(f"key: {key}\ntype: line\npoints: [{', '.join(points)}]\n{extra}")


def resolved(*records, overlay=None):
    return resolve(load_store(records), overlay=overlay)


def run(store, *names, overlay=None, config=None):
    engine = default_engine()
    if names:
        engine = engine.select(names)
    return engine.run(store, overlay=overlay, config=config)


def clean_dataset():
    return resolved(
        point("berlin-hbf"),
        point("potsdam"),
        organization("org.bpme"),
        line(
            "line.de.6001",
            ["berlin-hbf", "potsdam"],
            textwrap.dedent(
                """
                events:
                  - date: 1838-09-22
                    start: berlin-hbf
                    end: potsdam
                    operator: org.bpme
                  - date: 1838-10-29
                    status: open
                """
            ),
        ),
    )


class TestEngine:
    def test_clean_dataset_has_no_findings(self):
        assert run(clean_dataset()) == []

    def test_default_registration_order(self):
        assert default_engine().names() == [check.name for check in DEFAULT_CHECKS]

    def test_findings_are_tagged_with_check_name(self):
        store = resolved(point("p1"), line("l1", ["p1"]))
        findings = run(store)
        assert [(f.check, f.code) for f in findings] == [("line-endpoints", LINE_ENDPOINTS)]

    def test_raising_check_is_isolated(self):
        engine = CheckEngine()

        @engine.register("broken")
        def broken(context):
            raise RuntimeError("boom")

        @engine.register("endpoints")
        def endpoints(context):
            return DEFAULT_CHECKS[2].func(context)

        findings = engine.run(resolved(point("p1"), line("l1", ["p1"])))
        assert [f.check for f in findings] == ["broken", "endpoints"]
        internal = findings[0]
        assert internal.code == CHECK_INTERNAL
        assert internal.severity == Severity.ERROR
        assert internal.key == ""
        assert "boom" in internal.message
        assert internal.location() == "(dataset)"

    def test_output_follows_registration_order(self):
        engine = CheckEngine()
        second_done = threading.Event()
        store = resolved(point("p1"))
        document = store.get(0)

        @engine.register("slow")
        def slow(context):
            second_done.wait(timeout=2)
            time.sleep(0.05)
            return [finding(document, "slow one")]

        @engine.register("fast")
        def fast(context):
            second_done.set()
            return [finding(document, "fast one")]

        findings = engine.run(store, config=RailConfig.with_workers(2))
        assert [f.message for f in findings] == ["slow one", "fast one"]

    def test_results_do_not_depend_on_worker_count(self):
        store = resolved(point("p1"), point("p1b", "events:\n  - master: p1\n"), line("l1", ["p1", "p1"]))
        one = run(store, config=RailConfig.with_workers(1))
        many = run(store, config=RailConfig.with_workers(8))
        assert one == many

    def test_select_and_skip(self):
        engine = default_engine()
        assert engine.select(["link-types", "referential-integrity"]).names() == [
            "referential-integrity",
            "link-types",
        ]
        assert "duplicate-sites" not in engine.skip(["duplicate-sites"]).names()
        with pytest.raises(ValueError):
            engine.select(["no-such-check"])
        with pytest.raises(ValueError):
            engine.skip(["no-such-check"])

    def test_duplicate_registration(self):
        engine = default_engine()
        with pytest.raises(ValueError):
            engine.add_check("link-types", lambda context: [])

    def test_store_is_not_changed(self):
        store = clean_dataset()
        before = store.documents
        run(store)
        assert store.documents is before


class TestIntegrity:
    def test_type_mismatch_is_reported_once(self):
        store = resolved(
            point("berlin-hbf"),
            organization("org.db"),
            line("l1", ["berlin-hbf", "org.db"]),
        )
        assert store.findings == ()
        findings = run(store)
        assert len(findings) == 1
        mismatch = findings[0]
        assert mismatch.code == TYPE_MISMATCH
        assert mismatch.check == "link-types"
        assert mismatch.field == "points[1]"
        assert mismatch.message == "'org.db' is a organization document, expected a point"

    def test_untyped_links_are_not_type_checked(self):
        store = resolved(
            point("p1"),
            record("key: src.1\ntype: source\nregards: [p1]\n"),
        )
        assert run(store, "link-types") == []

    def test_dangling_links(self):
        store = resolved(point("a"), point("b"), line("l1", ["a", "b"]))
        tampered = dataclasses.replace(
            store.get_by_key("l1"),
            points=(Link(7, "a", DocumentType.POINT), Link(0, "b", DocumentType.POINT)),
        )
        store = Store(store.documents[:2] + (tampered,), resolved=True)
        findings = run(store, "referential-integrity")
        assert [(f.field, f.code) for f in findings] == [
            ("points[0]", DANGLING_LINK),
            ("points[1]", DANGLING_LINK),
        ]
        assert "invalid target 7" in findings[0].message
        assert "points at document 'a'" in findings[1].message
        # an invalid target is not also a type problem
        assert run(store, "link-types") == []


class TestTopology:
    def test_short_line(self):
        findings = run(resolved(point("p1"), line("l1", ["p1"])), "line-endpoints")
        assert [(f.field, f.code) for f in findings] == [("points", LINE_ENDPOINTS)]

    def test_stub_line_may_be_short(self):
        store = resolved(record("key: l1\ntype: line\nprogress: stub\n"))
        assert run(store, "line-endpoints") == []

    def test_repeated_point(self):
        store = resolved(point("a"), point("b"), line("l1", ["a", "b", "b", "a"]))
        findings = run(store, "line-endpoints")
        assert [f.field for f in findings] == ["points[2]"]

    def test_section_outside_line(self):
        store = resolved(
            point("a"),
            point("b"),
            point("c"),
            line(
                "l1",
                ["a", "b"],
                "events:\n  - sections:\n      - {start: a, end: b}\n      - {start: b, end: c}\n",
            ),
        )
        findings = run(store, "line-sections")
        assert [(f.field, f.code) for f in findings] == [
            ("events[0].sections[1].end", SECTION_ENDPOINT)
        ]

    def test_master_cycle(self):
        store = resolved(
            point("a", "events:\n  - master: b\n"),
            point("b", "events:\n  - master: c\n"),
            point("c", "events:\n  - master: a\n"),
            point("d", "events:\n  - master: a\n"),
        )
        findings = run(store, "reference-cycles")
        assert len(findings) == 1
        cycle = findings[0]
        assert cycle.code == REFERENCE_CYCLE
        assert cycle.key == "a"
        assert cycle.field == "events[0].master[0]"
        assert cycle.message == "master chain loops: a -> b -> c -> a"

    def test_successor_self_loop(self):
        store = resolved(organization("org.a", "events:\n  - successor: org.a\n"))
        findings = run(store, "reference-cycles")
        assert [f.message for f in findings] == ["successor chain loops: org.a -> org.a"]

    def test_chains_without_loops(self):
        store = resolved(
            organization("org.a", "events:\n  - successor: org.b\n"),
            organization("org.b", "events:\n  - successor: org.c\n"),
            organization("org.c"),
        )
        assert run(store, "reference-cycles") == []


class TestChronology:
    def test_certainly_before(self):
        assert certainly_before(Date(1880), Date(1881))
        assert not certainly_before(Date(1881, 5), Date(1881))
        assert certainly_before(Date(1881, 4), Date(1881, 5))
        assert not certainly_before(Date(1881, 5, 2), Date(1881, 5))
        assert not certainly_before(Date(1881, precision=Precision.CIRCA), Date(1881, 3))

    def test_events_out_of_order(self):
        store = resolved(
            point("p1", "events:\n  - date: 1890\n  - date: 1885-03\n  - date: 1895\n")
        )
        findings = run(store, "event-order")
        assert [(f.field, f.code) for f in findings] == [("events[1].date", DATE_ORDER)]

    def test_dates_inside_an_event(self):
        store = resolved(point("p1", "events:\n  - date: [1890, 1889]\n"))
        findings = run(store, "event-order")
        assert [f.field for f in findings] == ["events[0].date[1]"]

    def test_fuzzy_dates_are_not_out_of_order(self):
        store = resolved(point("p1", "events:\n  - date: 1890-05\n  - date: c1890\n"))
        assert run(store, "event-order") == []

    def test_concession_ends_before_event(self):
        store = resolved(
            point("a"),
            point("b"),
            line("l1", ["a", "b"], "events:\n  - date: 1850\n    concession:\n      until: 1849\n"),
        )
        findings = run(store, "event-order")
        assert [f.field for f in findings] == ["events[0].concession.until"]


class TestGeometry:
    OVERLAY = {
        "w1": {
            "north": {"lat": 52.52, "lon": 13.37},
            "north2": {"lat": 52.52004, "lon": 13.37},
            "south": {"lat": 52.40, "lon": 13.37},
        }
    }

    def test_duplicate_sites(self):
        overlay = GeoOverlay.from_mapping(self.OVERLAY)
        store = resolved(
            point("a", "events:\n  - site: {w1: north}\n"),
            point("b", "events:\n  - site: {w1: north2}\n"),
            point("c", "events:\n  - site: {w1: south}\n"),
            overlay=overlay,
        )
        findings = run(store, "duplicate-sites", overlay=overlay)
        assert len(findings) == 1
        warning = findings[0]
        assert warning.code == DUPLICATE_SITE
        assert warning.severity == Severity.WARNING
        assert warning.key == "a"
        assert warning.field == "events[0].site[0]"
        assert "'b'" in warning.message

    def test_tolerance_is_configurable(self):
        overlay = GeoOverlay.from_mapping(self.OVERLAY)
        store = resolved(
            point("a", "events:\n  - site: {w1: north}\n"),
            point("b", "events:\n  - site: {w1: north2}\n"),
            overlay=overlay,
        )
        config = RailConfig(site_tolerance=1.0)
        assert run(store, "duplicate-sites", overlay=overlay, config=config) == []

    def test_same_point_twice_is_fine(self):
        overlay = GeoOverlay.from_mapping(self.OVERLAY)
        store = resolved(
            point("a", "events:\n  - site: {w1: north}\n  - site: {w1: north2}\n"),
            overlay=overlay,
        )
        assert run(store, "duplicate-sites", overlay=overlay) == []

    def test_only_nearby_sites_are_measured(self, monkeypatch):
        nodes = {f"n{i}": {"lat": 50.0 + i * 0.001, "lon": 10.0} for i in range(300)}
        nodes["close"] = {"lat": 50.15002, "lon": 10.0}
        overlay = GeoOverlay.from_mapping({"w1": nodes})
        records = [point(f"p{i}", f"events:\n  - site: {{w1: n{i}}}\n") for i in range(300)]
        records.append(point("q", "events:\n  - site: {w1: close}\n"))
        store = resolved(*records, overlay=overlay)

        calls = []
        measure = geometry.haversine

        def counting_haversine(a, b):
            calls.append((a, b))
            return measure(a, b)

        monkeypatch.setattr(geometry, "haversine", counting_haversine)
        findings = run(store, "duplicate-sites", overlay=overlay)
        assert [(f.key, f.field) for f in findings] == [("p150", "events[0].site[0]")]
        assert len(calls) == 1

    def test_no_overlay_no_findings(self):
        store = resolved(point("a", "events:\n  - site: {w1: north}\n"))
        assert run(store, "duplicate-sites") == []
