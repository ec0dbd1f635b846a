"""
Rail record parser: turns raw records into typed documents.

A raw record is a YAML text (or an already decoded mapping) for exactly one
document plus its origin and an optional declared type. Parsing is pure:
it never touches the key index or the store. Every structural problem is
collected as a StructuralParseError naming the field and the expected
shape, so that one pass over the dataset lists all of them. Unknown fields
are reported, never dropped.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, Union

import yaml

from .rail_errors import StructuralParseError
from .rail_model import (
    DOCUMENT_CLASSES,
    Alternative,
    Basis,
    CodedText,
    Concession,
    Contract,
    Date,
    DeRang,
    Document,
    DocumentType,
    Freight,
    LineCategory,
    LineEvent,
    LineLabel,
    LinePosition,
    LineStatus,
    OrganizationEvent,
    OrganizationStatus,
    OrganizationSubtype,
    Origin,
    Passenger,
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
    SourceSubtype,
    Staff,
    StructureEvent,
    StructureSubtype,
    canonical,
)
from .rail_transformer import parse_date, parse_gauge

logger = logging.getLogger(__name__)

# === YAML Loading ===

_BOOL_TAG = "tag:yaml.org,2002:bool"
_INT_TAG = "tag:yaml.org,2002:int"
_FLOAT_TAG = "tag:yaml.org,2002:float"
_TIMESTAMP_TAG = "tag:yaml.org,2002:timestamp"


class RecordLoader(yaml.SafeLoader):  # pylint: disable=too-many-ancestors
    """
    Safe YAML loader with YAML 1.2 core schema scalars.

    Only true/false are booleans, so country codes like 'no' survive, and
    timestamps stay strings so that dates go through the date grammar.
    Integers are decimal, 0o octal or 0x hex. The YAML 1.1 forms with
    underscores, sexagesimal colons or a bare leading zero as octal are
    not read as such.
    """


RecordLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in (_BOOL_TAG, _INT_TAG, _FLOAT_TAG, _TIMESTAMP_TAG)
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
RecordLoader.add_implicit_resolver(
    _BOOL_TAG,
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)
RecordLoader.add_implicit_resolver(
    _INT_TAG,
    re.compile(r"^(?:[-+]?[0-9]+|0o[0-7]+|0x[0-9a-fA-F]+)$"),
    list("-+0123456789"),
)
RecordLoader.add_implicit_resolver(
    _FLOAT_TAG,
    re.compile(
        r"^(?:[-+]?(?:\.[0-9]+|[0-9]+(?:\.[0-9]*)?)(?:[eE][-+]?[0-9]+)?"
        r"|[-+]?\.(?:inf|Inf|INF)|\.(?:nan|NaN|NAN))$"
    ),
    list("-+0123456789."),
)


def _construct_int(loader, node) -> int:
    value = loader.construct_scalar(node)
    if value.startswith(("0o", "0x")):
        return int(value, 0)
    return int(value, 10)


RecordLoader.add_constructor(_INT_TAG, _construct_int)


def load_yaml(text: str) -> Any:
    """Decode one YAML document with the record loader."""
    return yaml.load(text, Loader=RecordLoader)  # nosec: RecordLoader is a SafeLoader


# === Raw Records ===


@dataclass(frozen=True)
class RawRecord:
    """One input record: declared type tag, raw data and source location."""

    doctype: Optional[DocumentType]
    data: Union[str, Mapping[str, Any]]
    origin: Origin


@dataclass(frozen=True)
class ParseResult:
    """The outcome of parsing one record: a document or its errors."""

    document: Optional[Document]
    errors: Tuple[StructuralParseError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.document is not None and not self.errors


# Symbolic stand-ins accepted where a date is expected.
STAND_IN_DATES: Dict[str, Date] = {
    "de.Bft": Date(1990, precision=Precision.CIRCA),
    "dd.rkl.65": Date(1965, precision=Precision.CIRCA),
    "de.lknr.30": Date(1930, precision=Precision.CIRCA),
    "de.lknr.kb": Date(1935, precision=Precision.CIRCA),
    "de.vzg.dr": Date(1990, precision=Precision.CIRCA),
    "de.ds100.dr": Date(1992, 1, 1),
    "org.de.DB.start": Date(1949, 7, 1),
    "org.dd.DR.start": Date(1949),
}

_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2}$")
_LANGUAGE_CODE = re.compile(r"^[A-Za-z]{3}$")


class FieldError(ValueError):
    """A single field value has the wrong shape."""

    def __init__(self, message: str, expected: str = ""):
        super().__init__(message)
        self.message = message
        self.expected = expected


class _Context:
    """Per-record error collector."""

    def __init__(self, key: Optional[str], origin: Origin):
        self.key = key
        self.origin = origin
        self.errors: List[StructuralParseError] = []

    def error(self, field: str, message: str, expected: str = ""):
        logger.debug("%s: %s %s: %s", self.origin, self.key, field, message)
        self.errors.append(
            StructuralParseError(
                message,
                key=self.key,
                origin=self.origin,
                field=field,
                expected=expected,
            )
        )


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


Converter = Callable[[_Context, Any, str], Any]

_DEFAULT = object()


class FieldReader:
    """
    Reads the fields of one mapping, tracking which ones were consumed.

    Conversion failures are recorded on the context and the field's default
    is used instead, so reading continues and further errors are found.
    """

    def __init__(self, data: Mapping[str, Any], ctx: _Context, path: str = ""):
        self._data = data
        self._seen = set()
        self.ctx = ctx
        self.path = path

    def error(self, name: str, message: str, expected: str = ""):
        self.ctx.error(_join(self.path, name), message, expected)

    def take(
        self,
        name: str,
        convert: Converter,
        default: Any = None,
        *,
        none: Any = _DEFAULT,
        required: bool = False,
    ) -> Any:
        """
        Read and convert one field.

        Args:
            name: Field name as written in the record.
            convert: Converter called as convert(ctx, value, path).
            default: Value used when the field is absent or invalid.
            none: Value used for an explicit null (defaults to default).
            required: Whether absence is an error.

        Returns:
            The converted value, or the default.
        """
        path = _join(self.path, name)
        if name not in self._data:
            if required:
                self.ctx.error(path, "missing required field")
            return default
        self._seen.add(name)
        value = self._data[name]
        if value is None:
            if required:
                self.ctx.error(path, "required field is null")
                return default
            return default if none is _DEFAULT else none
        try:
            return convert(self.ctx, value, path)
        except FieldError as e:
            self.ctx.error(path, e.message, e.expected)
            return default

    def finish(self):
        """Report every field that nobody consumed."""
        for name in self._data:
            if name not in self._seen:
                self.ctx.error(_join(self.path, str(name)), "unknown field")


# === Converters ===


def _type_name(value: Any) -> str:
    return type(value).__name__


def string(_ctx, value, _path) -> str:
    """A text value. Codes that look like numbers must be quoted."""
    if not isinstance(value, str):
        raise FieldError(f"expected a string, got {_type_name(value)}", "string")
    return canonical(value)


def numeral(_ctx, value, _path) -> str:
    """Text or a plain number, such as a page count or a kilometre post."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise FieldError(f"expected a string or number, got {_type_name(value)}", "string")
    return canonical(str(value))


def boolean(_ctx, value, _path) -> bool:
    if not isinstance(value, bool):
        raise FieldError(f"expected a boolean, got {_type_name(value)}", "boolean")
    return value


def integer(_ctx, value, _path) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise FieldError(f"expected an integer, got {_type_name(value)}", "integer")
    return value


def number(_ctx, value, _path) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FieldError(f"expected a number, got {_type_name(value)}", "number")
    return float(value)


def url(ctx, value, path) -> str:
    text = string(ctx, value, path)
    if not text.startswith(("http://", "https://")):
        raise FieldError(f"invalid URL '{text}'", "http or https URL")
    return text


def gauge(_ctx, value, _path) -> int:
    if not isinstance(value, str):
        raise FieldError(f"expected a gauge, got {_type_name(value)}", "<int>mm")
    try:
        return parse_gauge(value)
    except ValueError as e:
        raise FieldError(str(e), "<int>mm") from e


def date(_ctx, value, _path) -> Date:
    """A single date: date text, stand-in name or bare integer year."""
    if isinstance(value, bool):
        raise FieldError("expected a date, got bool", "date")
    if isinstance(value, int):
        if not 0 < value <= 9999:
            raise FieldError(f"year out of range: {value}", "date")
        return Date(value)
    if not isinstance(value, str):
        raise FieldError(f"expected a date, got {_type_name(value)}", "date")
    stand_in = STAND_IN_DATES.get(value)
    if stand_in is not None:
        return stand_in
    try:
        return parse_date(value)
    except ValueError as e:
        raise FieldError(str(e), "date") from e


def event_date(ctx, value, path) -> Tuple[Date, ...]:
    """An event date: null (unknown), one date, or a list of dates."""
    if value is None:
        return ()
    return one_or_many(date)(ctx, value, path)


def enum_of(cls: Type[Enum]) -> Converter:
    by_value = {member.value: member for member in cls}

    def convert(_ctx, value, _path):
        if isinstance(value, str) and value in by_value:
            return by_value[value]
        raise FieldError(
            f"unknown value '{value}'", ", ".join(sorted(by_value))
        )

    return convert


def one_or_many(item: Converter) -> Converter:
    """A single value or a sequence of values, as a tuple."""

    def convert(ctx, value, path):
        if isinstance(value, list):
            return tuple(
                item(ctx, entry, f"{path}[{idx}]") for idx, entry in enumerate(value)
            )
        return (item(ctx, value, path),)

    return convert


def _sort_key(value):
    return value.value if isinstance(value, Enum) else value


def set_of(item: Converter) -> Converter:
    """Like one_or_many, but sorted and without duplicates."""
    many = one_or_many(item)

    def convert(ctx, value, path):
        return tuple(sorted(set(many(ctx, value, path)), key=_sort_key))

    return convert


def _coded_text(valid_code: Callable[[str], bool], expected: str) -> Converter:
    def convert(_ctx, value, _path):
        if isinstance(value, str):
            return CodedText.plain(canonical(value))
        if not isinstance(value, dict) or not value:
            raise FieldError(
                f"expected text or a mapping of codes, got {_type_name(value)}",
                expected,
            )
        entries = []
        for code, text in value.items():
            if not isinstance(code, str) or not valid_code(code):
                raise FieldError(f"invalid code '{code}'", expected)
            if not isinstance(text, str):
                raise FieldError(
                    f"expected a string for '{code}', got {_type_name(text)}",
                    "string",
                )
            entries.append((code.upper(), canonical(text)))
        return CodedText(entries=tuple(entries))

    return convert


def _local_code(code: str) -> bool:
    return bool(_COUNTRY_CODE.match(code) or _LANGUAGE_CODE.match(code))


local_text = _coded_text(
    _local_code, "text or mapping of country or language code to text"
)
language_text = _coded_text(
    lambda code: bool(_LANGUAGE_CODE.match(code)),
    "text or mapping of language code to text",
)


def reference(doctype: Optional[DocumentType], role: Optional[str] = None) -> Converter:
    """A key naming another document of the given type (None for any type)."""

    def convert(_ctx, value, _path):
        if not isinstance(value, str) or not value.strip():
            raise FieldError(
                f"expected a document key, got {value!r}",
                f"{doctype.value if doctype else 'document'} key",
            )
        return Reference(key=canonical(value), doctype=doctype, role=role)

    return convert


def document_key(_ctx, value, _path) -> str:
    if not isinstance(value, str) or not value.strip():
        raise FieldError(f"expected a document key, got {value!r}", "key")
    return canonical(value)


def references(doctype: Optional[DocumentType], role: Optional[str] = None) -> Converter:
    return one_or_many(reference(doctype, role))


def record(build: Callable[[FieldReader], Any]) -> Converter:
    """A nested mapping read field by field with build()."""

    def convert(ctx, value, path):
        if not isinstance(value, dict):
            raise FieldError(f"expected a mapping, got {_type_name(value)}", "mapping")
        reader = FieldReader(value, ctx, path)
        result = build(reader)
        reader.finish()
        return result

    return convert


def line_positions(ctx, value, path) -> Tuple[LinePosition, ...]:
    """Mapping of line key to kilometre, or a list of line keys."""
    line_ref = reference(DocumentType.LINE)
    if isinstance(value, (list, str)):
        return tuple(
            LinePosition(line=ref) for ref in one_or_many(line_ref)(ctx, value, path)
        )
    if not isinstance(value, dict):
        raise FieldError(f"expected a mapping, got {_type_name(value)}", "line key: km")
    positions = []
    for key, km in value.items():
        field = f"{path}[{key}]"
        positions.append(
            LinePosition(
                line=line_ref(ctx, key, field),
                km=None if km is None else numeral(ctx, km, field),
            )
        )
    return tuple(positions)


def site_nodes(_ctx, value, _path) -> Tuple[SiteNode, ...]:
    """Mapping of overlay path identifier to node name."""
    if not isinstance(value, dict):
        raise FieldError(f"expected a mapping, got {_type_name(value)}", "path: node")
    nodes = []
    for path_id, node in value.items():
        if isinstance(node, bool) or not isinstance(node, (str, int)):
            raise FieldError(f"invalid node for path '{path_id}'", "node name")
        nodes.append(SiteNode(path=canonical(str(path_id)), node=canonical(str(node))))
    return tuple(nodes)


ORG = DocumentType.ORGANIZATION
POINT = DocumentType.POINT
LINE = DocumentType.LINE
SOURCE = DocumentType.SOURCE


# === Shared Sub-records ===


def _contract(r: FieldReader) -> Contract:
    return Contract(parties=r.take("parties", references(ORG, "party"), ()))


def _alternative(r: FieldReader) -> Alternative:
    return Alternative(
        date=r.take("date", event_date, ()),
        document=r.take("document", references(SOURCE), ()),
        source=r.take("source", references(SOURCE), ()),
    )


def _basis(r: FieldReader) -> Basis:
    return Basis(
        date=r.take("date", event_date),
        document=r.take("document", references(SOURCE), ()),
        source=r.take("source", references(SOURCE), ()),
        contract=r.take("contract", record(_contract)),
        treaty=r.take("treaty", record(_contract)),
        note=r.take("note", language_text),
    )


def _common_event(r: FieldReader) -> Dict[str, Any]:
    return dict(
        date=r.take("date", event_date, ()),
        document=r.take("document", references(SOURCE), ()),
        source=r.take("source", references(SOURCE), ()),
        note=r.take("note", language_text),
    )


# === Line ===


def _section(r: FieldReader) -> Section:
    return Section(
        start=r.take("start", reference(POINT)),
        end=r.take("end", reference(POINT)),
    )


def _concession(r: FieldReader) -> Concession:
    return Concession(
        by=r.take("by", references(ORG, "grantor"), ()),
        for_=r.take("for", references(ORG, "grantee"), ()),
        until=r.take("until", date),
    )


def _line_event(r: FieldReader) -> LineEvent:
    sections = r.take("sections", one_or_many(record(_section)))
    start = r.take("start", reference(POINT))
    end = r.take("end", reference(POINT))
    if sections is not None and (start is not None or end is not None):
        r.error("start", "'start' and 'end' are not allowed with 'sections'")
    elif sections is None:
        if start is not None or end is not None:
            sections = (Section(start=start, end=end),)
        else:
            sections = ()
    return LineEvent(
        sections=sections,
        alternative=r.take("alternative", one_or_many(record(_alternative)), ()),
        basis=r.take("basis", one_or_many(record(_basis)), ()),
        concession=r.take("concession", record(_concession)),
        expropriation=r.take("expropriation", record(_concession)),
        contract=r.take("contract", record(_contract)),
        treaty=r.take("treaty", record(_contract)),
        category=r.take("category", set_of(enum_of(LineCategory))),
        constructor=r.take("constructor", references(ORG, "constructor")),
        electrified=r.take("electrified", set_of(string), none=()),
        freight=r.take("freight", enum_of(Freight)),
        gauge=r.take("gauge", set_of(gauge)),
        name=r.take("name", local_text),
        operator=r.take("operator", references(ORG, "operator")),
        owner=r.take("owner", references(ORG, "owner")),
        passenger=r.take("passenger", enum_of(Passenger)),
        rails=r.take("rails", integer),
        region=r.take("region", references(ORG, "region")),
        reused=r.take("reused", references(LINE)),
        status=r.take("status", enum_of(LineStatus)),
        tracks=r.take("tracks", integer),
        de_vzg=r.take("de.VzG", string),
        **_common_event(r),
    )


def _line(r: FieldReader) -> Dict[str, Any]:
    return dict(
        label=r.take("label", set_of(enum_of(LineLabel)), ()),
        note=r.take("note", language_text),
        points=r.take("points", references(POINT), ()),
        events=r.take("events", one_or_many(record(_line_event)), ()),
    )


# === Point ===


def _point_event(r: FieldReader) -> PointEvent:
    return PointEvent(
        category=r.take("category", set_of(enum_of(PointCategory))),
        connection=r.take("connection", references(POINT)),
        designation=r.take("designation", local_text),
        location=r.take("location", line_positions),
        master=r.take("master", references(POINT), none=()),
        merged=r.take("merged", reference(POINT)),
        name=r.take("name", local_text),
        plc=r.take("PLC", string),
        public_name=r.take("public_name", one_or_many(local_text)),
        site=r.take("site", site_nodes),
        short_name=r.take("short_name", local_text),
        staff=r.take("staff", enum_of(Staff)),
        status=r.take("status", enum_of(PointStatus)),
        service=r.take("service", enum_of(Service)),
        split_from=r.take("split_from", reference(POINT)),
        de_ds100=r.take("de.DS100", string),
        de_dstnr=r.take("de.dstnr", string),
        de_lknr=r.take("de.lknr", set_of(string)),
        de_name16=r.take("de.name16", string),
        de_rang=r.take("de.rang", enum_of(DeRang)),
        de_vbl=r.take("de.VBL", string),
        dk_ref=r.take("dk.ref", string),
        no_fs=r.take("no.fs", string),
        no_njk=r.take("no.NJK", string),
        no_nsb=r.take("no.NSB", string),
        **_common_event(r),
    )


def _point(r: FieldReader) -> Dict[str, Any]:
    return dict(
        subtype=r.take("subtype", enum_of(PointSubtype), PointSubtype.POST),
        junction=r.take("junction", boolean),
        events=r.take("events", one_or_many(record(_point_event)), ()),
    )


# === Organization ===


def _property(r: FieldReader) -> Property:
    return Property(
        role=r.take("role", enum_of(PropertyRole), PropertyRole.OWNER, required=True),
        constructor=r.take("constructor", references(ORG, "constructor"), ()),
        operator=r.take("operator", references(ORG, "operator"), ()),
        owner=r.take("owner", references(ORG, "owner"), ()),
    )


def _organization_event(r: FieldReader) -> OrganizationEvent:
    return OrganizationEvent(
        basis=r.take("basis", one_or_many(record(_basis)), ()),
        domicile=r.take("domicile", references(ORG, "domicile"), ()),
        master=r.take("master", reference(ORG, "master")),
        name=r.take("name", local_text),
        owner=r.take("owner", references(ORG, "owner")),
        property=r.take("property", record(_property)),
        short_name=r.take("short_name", local_text),
        status=r.take("status", enum_of(OrganizationStatus)),
        successor=r.take("successor", reference(ORG, "successor")),
        **_common_event(r),
    )


def _organization(r: FieldReader) -> Dict[str, Any]:
    return dict(
        subtype=r.take(
            "subtype",
            enum_of(OrganizationSubtype),
            OrganizationSubtype.COMPANY,
            required=True,
        ),
        events=r.take("events", one_or_many(record(_organization_event)), ()),
    )


# === Source ===


def _source(r: FieldReader) -> Dict[str, Any]:
    return dict(
        subtype=r.take("subtype", enum_of(SourceSubtype), SourceSubtype.MISC),
        author=r.take("author", references(ORG, "author"), ()),
        collection=r.take("collection", reference(SOURCE)),
        date=r.take("date", date),
        designation=r.take("designation", string),
        digital=r.take("digital", one_or_many(url), ()),
        edition=r.take("edition", numeral),
        editor=r.take("editor", references(ORG, "editor"), ()),
        isbn=r.take("isbn", string),
        number=r.take("number", numeral),
        organization=r.take("organization", references(ORG), ()),
        pages=r.take("pages", numeral),
        publisher=r.take("publisher", references(ORG, "publisher"), ()),
        revision=r.take("revision", numeral),
        short_title=r.take("short_title", string),
        title=r.take("title", string),
        url=r.take("url", url),
        volume=r.take("volume", numeral),
        also=r.take("also", references(SOURCE), ()),
        attribution=r.take("attribution", string),
        crossref=r.take("crossref", references(SOURCE), ()),
        note=r.take("note", language_text),
        regards=r.take("regards", references(None), ()),
    )


# === Structure ===


def _structure_event(r: FieldReader) -> StructureEvent:
    return StructureEvent(
        length=r.take("length", number),
        name=r.take("name", local_text),
        **_common_event(r),
    )


def _structure(r: FieldReader) -> Dict[str, Any]:
    return dict(
        subtype=r.take(
            "subtype",
            enum_of(StructureSubtype),
            StructureSubtype.BRIDGE,
            required=True,
        ),
        events=r.take("events", one_or_many(record(_structure_event)), ()),
    )


_BUILDERS: Dict[DocumentType, Callable[[FieldReader], Dict[str, Any]]] = {
    DocumentType.LINE: _line,
    DocumentType.POINT: _point,
    DocumentType.ORGANIZATION: _organization,
    DocumentType.SOURCE: _source,
    DocumentType.STRUCTURE: _structure,
}


# === Entry Point ===


def _decode(record: RawRecord, ctx: _Context) -> Optional[Mapping[str, Any]]:
    data = record.data
    if isinstance(data, str):
        try:
            data = load_yaml(data)
        except yaml.YAMLError as e:
            ctx.error("", f"invalid YAML: {e}", "YAML mapping")
            return None
    if not isinstance(data, Mapping):
        ctx.error("", f"expected a mapping, got {_type_name(data)}", "mapping")
        return None
    return data


def parse_record(record: RawRecord) -> ParseResult:
    """
    Parse one raw record into a document.

    Args:
        record: The raw record with its declared type and origin.

    Returns:
        ParseResult holding either the document or every structural error
        found in the record.
    """
    ctx = _Context(None, record.origin)
    data = _decode(record, ctx)
    if data is None:
        return ParseResult(None, tuple(ctx.errors))

    reader = FieldReader(data, ctx)
    key = reader.take("key", document_key, required=True)
    if key is None:
        return ParseResult(None, tuple(ctx.errors))
    ctx.key = key

    doctype = reader.take("type", enum_of(DocumentType))
    if doctype is None:
        doctype = record.doctype
    elif record.doctype is not None and doctype != record.doctype:
        reader.error(
            "type",
            f"record type '{doctype.value}' differs from declared type "
            f"'{record.doctype.value}'",
            record.doctype.value,
        )
    if doctype is None:
        reader.error("type", "document type is unknown", "document type")
        return ParseResult(None, tuple(ctx.errors))

    progress = reader.take("progress", enum_of(Progress), Progress.IN_PROGRESS)
    fields = _BUILDERS[doctype](reader)
    reader.finish()

    if ctx.errors:
        return ParseResult(None, tuple(ctx.errors))
    document = DOCUMENT_CLASSES[doctype](
        key=key, origin=record.origin, progress=progress, **fields
    )
    return ParseResult(document)


def parse_text(
    text: str,
    doctype: Optional[DocumentType] = None,
    path: str = "<string>",
) -> Document:
    """
    Parse a single YAML document, raising on the first problem.

    Convenience for tests and interactive use; load_store() is the bulk path.
    """
    result = parse_record(RawRecord(doctype, text, Origin(path, 1)))
    if result.errors:
        raise result.errors[0]
    return result.document
