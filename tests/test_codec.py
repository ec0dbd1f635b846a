"""
Tests for the binary cache codec.
"""

import dataclasses
import os
import sys
import textwrap
import zlib

import msgpack
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from raildata.rail_codec import FORMAT, SCHEMA, VERSION, decode, encode, schema_fingerprint
from raildata.rail_config import RailConfig
from raildata.rail_errors import CorruptCacheError
from raildata.rail_model import DocumentType, Link, Origin
from raildata.rail_overlay import GeoOverlay
from raildata.rail_parser import RawRecord
from raildata.rail_resolver import resolve
from raildata.rail_store import Store, load_store


def records():
    def record(text, path):
        return RawRecord(None, textwrap.dedent(text), Origin(path, 1))

    return [
        record(
            """
            key: berlin-hbf
            type: point
            subtype: border
            events:
              - date: [c1838-10, 1839?]
                name: {de: Berlin Hbf, en: Berlin Central}
                site: {w1: north}
            """,
            "points/berlin.yaml",
        ),
        record("key: potsdam\ntype: point\n", "points/potsdam.yaml"),
        record("key: org.bpme\ntype: organization\nsubtype: company\n", "orgs/bpme.yaml"),
        record(
            """
            key: line.de.6001
            type: line
            label: [freight]
            points: [berlin-hbf, potsdam, munich-ost]
            events:
              - date: 1838-10-29
                start: berlin-hbf
                end: potsdam
                gauge: 1435mm
                operator: org.bpme
                concession:
                  by: org.bpme
                  until: 1900
            """,
            "lines/6001.yaml",
        ),
    ]


def build(workers=2):
    return resolve(load_store(records(), RailConfig.with_workers(workers)))


def envelope(data):
    return msgpack.unpackb(data, raw=False)


def repack(envelope_dict):
    return msgpack.packb(envelope_dict, use_bin_type=True)


def test_round_trip():
    store = build()
    decoded = decode(encode(store))
    assert decoded == store
    assert decoded.resolved
    assert len(decoded.findings) == 1
    assert decoded.findings[0].field == "points[2]"
    assert decoded.lookup("potsdam") == 1
    assert decoded.get_by_key("line.de.6001").points[0] == Link(0, "berlin-hbf", DocumentType.POINT)
    assert [b.source for b in decoded.backlinks(2)] == [3, 3]


def test_unresolved_store_round_trip():
    store = load_store(records())
    decoded = decode(encode(store))
    assert decoded == store
    assert not decoded.resolved


def test_encoding_is_deterministic():
    assert encode(build(1)) == encode(build(1))
    assert encode(build(1)) == encode(build(8))


def test_envelope_layout():
    outer = envelope(encode(build()))
    assert outer["format"] == FORMAT
    assert outer["version"] == VERSION
    assert outer["schema"] == SCHEMA == schema_fingerprint()
    assert outer["overlay"] is None
    assert isinstance(zlib.decompress(outer["payload"]), bytes)


@pytest.mark.parametrize(
    "field,value",
    [
        ("format", "other-cache"),
        ("version", VERSION + 1),
        ("schema", "0" * 64),
        ("overlay", "0" * 64),
        ("payload", b"not zlib at all"),
    ],
)
def test_envelope_mismatch_is_rejected(field, value):
    outer = envelope(encode(build()))
    outer[field] = value
    with pytest.raises(CorruptCacheError):
        decode(repack(outer))


@pytest.mark.parametrize("data", [b"", b"\x00\x01garbage", b"\xc1"])
def test_garbage_is_rejected(data):
    with pytest.raises(CorruptCacheError):
        decode(data)


def test_truncated_cache_is_rejected():
    data = encode(build())
    with pytest.raises(CorruptCacheError):
        decode(data[: len(data) // 2])


def test_out_of_range_link_is_rejected():
    store = build()
    line = store.get_by_key("line.de.6001")
    broken = dataclasses.replace(line, points=(Link(42, "berlin-hbf", DocumentType.POINT),))
    tampered = Store(store.documents[:3] + (broken,), resolved=True)
    with pytest.raises(CorruptCacheError):
        decode(encode(tampered))


def test_link_to_wrong_key_is_rejected():
    store = build()
    line = store.get_by_key("line.de.6001")
    broken = dataclasses.replace(line, points=(Link(1, "berlin-hbf", DocumentType.POINT),))
    tampered = Store(store.documents[:3] + (broken,), resolved=True)
    with pytest.raises(CorruptCacheError):
        decode(encode(tampered))


def test_malformed_body_is_rejected():
    outer = envelope(encode(build()))
    outer["payload"] = zlib.compress(msgpack.packb({"documents": []}, use_bin_type=True))
    with pytest.raises(CorruptCacheError):
        decode(repack(outer))


def test_unknown_record_class_is_rejected():
    outer = envelope(encode(build()))
    bogus = msgpack.ExtType(1, msgpack.packb([999, "x"], use_bin_type=True))
    body = {"resolved": True, "documents": [bogus], "findings": []}
    outer["payload"] = zlib.compress(msgpack.packb(body, use_bin_type=True))
    with pytest.raises(CorruptCacheError):
        decode(repack(outer))


class Snapshot:
    """Just the attributes encode() reads, without the store's own validation."""

    def __init__(self, documents):
        self.resolved = True
        self.documents = tuple(documents)
        self.findings = ()

    def __len__(self):
        return len(self.documents)


@pytest.mark.parametrize(
    "tamper",
    [
        lambda docs: [dataclasses.replace(docs[0], key=12345)] + docs[1:],
        lambda docs: [dataclasses.replace(docs[0], origin=Origin("points/berlin.yaml", "1"))]
        + docs[1:],
        lambda docs: docs[:3]
        + [dataclasses.replace(docs[3], points=(Link("0", "berlin-hbf", DocumentType.POINT),))],
    ],
    ids=["document-key", "origin-line", "link-target"],
)
def test_wrongly_typed_field_is_rejected(tamper):
    documents = list(build().documents)
    with pytest.raises(CorruptCacheError):
        decode(encode(Snapshot(tamper(documents))))


OVERLAY_YAML = "w1:\n  north: {lat: 52.52, lon: 13.37}\n"


def test_cache_remembers_its_overlay():
    overlay = GeoOverlay.from_yaml(OVERLAY_YAML)
    store = resolve(load_store(records()), overlay)
    data = encode(store, overlay)
    assert envelope(data)["overlay"] == overlay.fingerprint()
    assert decode(data, GeoOverlay.from_yaml(OVERLAY_YAML)) == store
    with pytest.raises(CorruptCacheError):
        decode(data)
    other = GeoOverlay.from_yaml("w1:\n  north: {lat: 52.53, lon: 13.37}\n")
    with pytest.raises(CorruptCacheError):
        decode(data, other)
    with pytest.raises(CorruptCacheError):
        decode(encode(store), overlay)
