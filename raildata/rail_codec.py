"""
Cache codec: a compact binary form of a resolved store.

Layout: a msgpack envelope {format, version, schema, overlay, payload}. The
payload is a zlib-compressed msgpack body holding the documents, the resolution
state and the resolution findings. Dataclass records and enum members are
msgpack extension types naming their class by position in a fixed class
registry. `schema` is a SHA-256 fingerprint of that registry's class and
field names, so any model change invalidates existing caches. `overlay`
fingerprints the overlay the store was resolved against, or is null.

Decoding fails closed: anything unexpected raises CorruptCacheError and
callers re-parse the raw input instead. The key index is always rebuilt
from the decoded documents and every link is re-validated.
"""

import dataclasses
import hashlib
import logging
import zlib
from typing import Any, Dict, Optional, Tuple

import msgpack

from .rail_errors import CorruptCacheError, DuplicateKeyError
from .rail_findings import Finding, Severity
from .rail_overlay import GeoOverlay
from .rail_model import (
    Alternative,
    Basis,
    CodedText,
    Concession,
    Contract,
    Date,
    DeRang,
    DocumentBase,
    DocumentType,
    Freight,
    Line,
    LineCategory,
    LineEvent,
    LineLabel,
    LinePosition,
    LineStatus,
    Link,
    Organization,
    OrganizationEvent,
    OrganizationStatus,
    OrganizationSubtype,
    Origin,
    Passenger,
    Point,
    PointCategory,
    PointEvent,
    PointStatus,
    PointSubtype,
    Precision,
    Progress,
    Property,
    PropertyRole,
    Reference,
    Section,
    Service,
    SiteNode,
    Source,
    SourceSubtype,
    Staff,
    Structure,
    StructureEvent,
    StructureSubtype,
)
from .rail_store import Store

logger = logging.getLogger(__name__)

FORMAT = "raildata-cache"
VERSION = 1

EXT_RECORD = 1
EXT_ENUM = 2

# Append only; positions are part of the cache format.
RECORD_CLASSES: Tuple[type, ...] = (
    Origin,
    Date,
    CodedText,
    Reference,
    Link,
    Contract,
    Alternative,
    Basis,
    Section,
    Concession,
    LineEvent,
    LinePosition,
    SiteNode,
    PointEvent,
    Property,
    OrganizationEvent,
    StructureEvent,
    Line,
    Point,
    Organization,
    Source,
    Structure,
    Finding,
)

ENUM_CLASSES: Tuple[type, ...] = (
    DocumentType,
    Progress,
    Precision,
    LineLabel,
    LineCategory,
    Freight,
    Passenger,
    LineStatus,
    PointSubtype,
    PointCategory,
    Service,
    Staff,
    PointStatus,
    DeRang,
    OrganizationSubtype,
    OrganizationStatus,
    PropertyRole,
    SourceSubtype,
    StructureSubtype,
    Severity,
)

_RECORD_INDEX: Dict[type, int] = {cls: idx for idx, cls in enumerate(RECORD_CLASSES)}
_ENUM_INDEX: Dict[type, int] = {cls: idx for idx, cls in enumerate(ENUM_CLASSES)}


def schema_fingerprint() -> str:
    """SHA-256 over the registry's class names, field names and enum values."""
    lines = []
    for cls in RECORD_CLASSES:
        names = ",".join(f.name for f in dataclasses.fields(cls))
        lines.append(f"record {cls.__name__}({names})")
    for cls in ENUM_CLASSES:
        values = ",".join(member.value for member in cls)
        lines.append(f"enum {cls.__name__}({values})")
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


SCHEMA = schema_fingerprint()


def overlay_fingerprint(overlay: Optional[GeoOverlay]) -> Optional[str]:
    return None if overlay is None else overlay.fingerprint()


# Scalar fields the store and index rely on; checked on every decoded record.
_SCALAR_FIELDS: Dict[type, Tuple[Tuple[str, Any], ...]] = {
    Origin: (("path", str), ("line", (int, type(None)))),
    Date: (("year", int),),
    Reference: (("key", str),),
    Link: (("target", int), ("key", str)),
    Finding: (("check", str), ("key", str), ("message", str)),
}
_SCALAR_FIELDS.update(
    {cls: (("key", str), ("origin", Origin)) for cls in (Line, Point, Organization, Source, Structure)}
)


# === Encoding ===


def _pack(value: Any) -> bytes:
    return msgpack.packb(value, default=_default, use_bin_type=True)


def _default(obj: Any) -> msgpack.ExtType:
    idx = _RECORD_INDEX.get(type(obj))
    if idx is not None:
        values = [getattr(obj, f.name) for f in dataclasses.fields(obj)]
        return msgpack.ExtType(EXT_RECORD, _pack([idx] + values))
    idx = _ENUM_INDEX.get(type(obj))
    if idx is not None:
        return msgpack.ExtType(EXT_ENUM, _pack([idx, obj.value]))
    raise TypeError(f"cannot encode {type(obj).__name__}")


def encode(store: Store, overlay: Optional[GeoOverlay] = None) -> bytes:
    """
    Encode a store into cache bytes.

    The same store always encodes to the same bytes. The fingerprint of the
    overlay the store was resolved against is recorded in the envelope.
    """
    body = {
        "resolved": store.resolved,
        "documents": store.documents,
        "findings": store.findings,
    }
    payload = zlib.compress(_pack(body), 6)
    envelope = {
        "format": FORMAT,
        "version": VERSION,
        "schema": SCHEMA,
        "overlay": overlay_fingerprint(overlay),
        "payload": payload,
    }
    data = msgpack.packb(envelope, use_bin_type=True)
    logger.info("Encoded %d documents into %d bytes", len(store), len(data))
    return data


# === Decoding ===


def _unpack(data: bytes) -> Any:
    return msgpack.unpackb(data, ext_hook=_ext_hook, use_list=False, raw=False)


def _ext_hook(code: int, data: bytes) -> Any:
    items = _unpack(data)
    if not isinstance(items, tuple) or not items or not isinstance(items[0], int):
        raise CorruptCacheError("malformed extension value")
    idx = items[0]
    if code == EXT_RECORD:
        if not 0 <= idx < len(RECORD_CLASSES):
            raise CorruptCacheError(f"unknown record class {idx}")
        cls = RECORD_CLASSES[idx]
        if len(items) - 1 != len(dataclasses.fields(cls)):
            raise CorruptCacheError(f"wrong field count for {cls.__name__}")
        return _check_fields(cls(*items[1:]))
    if code == EXT_ENUM:
        if not 0 <= idx < len(ENUM_CLASSES) or len(items) != 2:
            raise CorruptCacheError(f"unknown enum class {idx}")
        return ENUM_CLASSES[idx](items[1])
    raise CorruptCacheError(f"unknown extension type {code}")


def _check_fields(obj: Any) -> Any:
    for name, expected in _SCALAR_FIELDS.get(type(obj), ()):
        value = getattr(obj, name)
        if isinstance(value, bool) or not isinstance(value, expected):
            raise CorruptCacheError(
                f"{type(obj).__name__}.{name} has type {type(value).__name__}"
            )
    return obj


def _check_envelope(envelope: Any, overlay: Optional[str]) -> bytes:
    if not isinstance(envelope, dict):
        raise CorruptCacheError("cache envelope is not a mapping")
    if envelope.get("format") != FORMAT:
        raise CorruptCacheError(f"unknown cache format {envelope.get('format')!r}")
    if envelope.get("version") != VERSION:
        raise CorruptCacheError(
            f"cache version {envelope.get('version')!r}, expected {VERSION}"
        )
    if envelope.get("schema") != SCHEMA:
        raise CorruptCacheError("cache was written for a different document model")
    if envelope.get("overlay") != overlay:
        raise CorruptCacheError("cache was resolved against a different overlay")
    payload = envelope.get("payload")
    if not isinstance(payload, bytes):
        raise CorruptCacheError("cache payload missing")
    return payload


def _check_body(body: Any) -> Store:
    if not isinstance(body, dict) or set(body) != {"resolved", "documents", "findings"}:
        raise CorruptCacheError("malformed cache body")
    documents = body["documents"]
    findings = body["findings"]
    if not isinstance(body["resolved"], bool):
        raise CorruptCacheError("malformed resolution flag")
    if not isinstance(documents, tuple) or not all(
        isinstance(d, DocumentBase) for d in documents
    ):
        raise CorruptCacheError("malformed document list")
    if not isinstance(findings, tuple) or not all(isinstance(f, Finding) for f in findings):
        raise CorruptCacheError("malformed finding list")

    for document in documents:
        for path, link in document.links():
            if not 0 <= link.target < len(documents):
                raise CorruptCacheError(
                    f"{document.key} {path}: link target {link.target} out of range"
                )
            if documents[link.target].key != link.key:
                raise CorruptCacheError(
                    f"{document.key} {path}: link to '{link.key}' points at "
                    f"'{documents[link.target].key}'"
                )
    try:
        return Store(documents, resolved=body["resolved"], findings=findings)
    except DuplicateKeyError as e:
        raise CorruptCacheError(f"cache holds duplicate keys: {e}") from e


def decode(data: bytes, overlay: Optional[GeoOverlay] = None) -> Store:
    """
    Decode cache bytes into a store.

    Raises:
        CorruptCacheError: On unknown format or version, schema mismatch,
            truncated or undecodable data, unknown classes, wrongly typed
            fields, links that do not match the decoded documents, or an
            overlay other than the one the cache was resolved against.
    """
    try:
        envelope = msgpack.unpackb(data, raw=False)
        payload = _check_envelope(envelope, overlay_fingerprint(overlay))
        body = _unpack(zlib.decompress(payload))
        store = _check_body(body)
    except (ValueError, TypeError, IndexError, KeyError, zlib.error) as e:
        raise CorruptCacheError(f"undecodable cache: {e}") from e
    logger.info("Decoded %d documents from cache", len(store))
    return store
