"""
Typed document model for the railway history dataset.

Every record kind is a frozen dataclass. Documents never hold other
documents: they point at each other through a symbolic Reference (a key,
before resolution) or a Link (a dense integer identifier, after
resolution). That keeps the document graph an index-addressed array, so
cycles between lines and points need no special handling anywhere.

The variants form a closed union (see DOCUMENT_CLASSES). Enumerating and
rewriting references is done generically by walking dataclass fields, so
each variant "knows" its references without per-class code.
"""

import dataclasses
import unicodedata
from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    Optional,
    Tuple,
    Type,
    Union,
)


def canonical(text: str) -> str:
    """Return the canonical (NFC) form of a text value or key."""
    return unicodedata.normalize("NFC", text)


# === Enumerations ===


class DocumentType(Enum):
    """The closed set of document variants."""

    LINE = "line"
    POINT = "point"
    ORGANIZATION = "organization"
    SOURCE = "source"
    STRUCTURE = "structure"


class Progress(Enum):
    STUB = "stub"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


class Precision(Enum):
    """How exact a date is."""

    EXACT = "exact"
    CIRCA = "circa"
    BEFORE = "before"
    AFTER = "after"


# Before < Exact < Circa < After
_PRECISION_RANK = {
    Precision.BEFORE: 0,
    Precision.EXACT: 1,
    Precision.CIRCA: 2,
    Precision.AFTER: 3,
}

_PRECISION_PREFIX = {
    Precision.EXACT: "",
    Precision.CIRCA: "c",
    Precision.BEFORE: "<",
    Precision.AFTER: ">",
}


class LineLabel(Enum):
    CONNECTION = "connection"
    FREIGHT = "freight"
    PORT = "port"
    DE_S_BAHN = "de.S-Bahn"


class LineCategory(Enum):
    DE_HAUPTBAHN = "de.Hauptbahn"
    DE_NEBENBAHN = "de.Nebenbahn"
    DE_KLEINBAHN = "de.Kleinbahn"
    DE_ANSCHL = "de.Anschl"
    DE_BFGLEIS = "de.Bfgleis"
    DE_STRAB = "de.Strab"


class Freight(Enum):
    NONE = "none"
    RESTRICTED = "restricted"
    FULL = "full"


class Passenger(Enum):
    NONE = "none"
    RESTRICTED = "restricted"
    HISTORIC = "historic"
    SEASONAL = "seasonal"
    TOURIST = "tourist"
    FULL = "full"


class LineStatus(Enum):
    PLANNED = "planned"
    CONSTRUCTION = "construction"
    OPEN = "open"
    SUSPENDED = "suspended"
    REOPENED = "reopened"
    CLOSED = "closed"
    REMOVED = "removed"
    RELEASED = "released"


class PointSubtype(Enum):
    BORDER = "border"
    BREAK = "break"
    POST = "post"
    REFERENCE = "reference"


class PointCategory(Enum):
    DE_ABZW = "de.Abzw"
    DE_ANST = "de.Anst"
    DE_AWANST = "de.Awanst"
    DE_BF = "de.Bf"
    DE_BFT = "de.Bft"
    DE_BK = "de.Bk"
    DE_DKST = "de.Dkst"
    DE_GLGR = "de.Glgr"
    DE_HP = "de.Hp"
    DE_HST = "de.Hst"
    DE_KR = "de.Kr"
    DE_LDST = "de.Ldst"
    DE_MUSEUM = "de.Museum"
    DE_PO = "de.Po"
    DE_STRW = "de.Strw"
    DE_STW = "de.Stw"
    DE_UEHST = "de.Ühst"
    DE_UEST = "de.Üst"
    DE_AHST = "de.Ahst"
    DE_GNST = "de.Gnst"
    DE_GA = "de.Ga"
    DE_UST = "de.Ust"
    DE_TP = "de.Tp"
    DE_EGR = "de.EGr"
    DE_GP = "de.Gp"
    DE_LGR = "de.LGr"
    DE_RBGR = "de.RBGr"
    DK_ST = "dk.St"
    DK_T = "dk.T"
    DK_SMD = "dk.Smd"
    DK_GR = "dk.Gr"
    NO_S = "no.s"
    NO_SP = "no.sp"
    NO_HP = "no.hp"


class Service(Enum):
    FULL = "full"
    NONE = "none"
    PASSENGER = "passenger"
    FREIGHT = "freight"


class Staff(Enum):
    FULL = "full"
    AGENT = "agent"
    NONE = "none"


class PointStatus(Enum):
    OPEN = "open"
    SUSPENDED = "suspended"
    CLOSED = "closed"
    MERGED = "merged"


class DeRang(Enum):
    I = "I"  # noqa: E741
    II = "II"
    III = "III"
    IV = "IV"
    V = "V"
    VI = "VI"
    U = "U"
    S = "S"


class OrganizationSubtype(Enum):
    COMPANY = "company"
    COUNTRY = "country"
    PERSON = "person"
    PLACE = "place"
    REGION = "region"


class OrganizationStatus(Enum):
    FORMING = "forming"
    OPEN = "open"
    CLOSED = "closed"


class PropertyRole(Enum):
    CONSTRUCTOR = "constructor"
    OWNER = "owner"
    OPERATOR = "operator"


class SourceSubtype(Enum):
    ARTICLE = "article"
    BOOK = "book"
    INARTICLE = "inarticle"
    ISSUE = "issue"
    JOURNAL = "journal"
    MAP = "map"
    ONLINE = "online"
    SERIES = "series"
    VOLUME = "volume"
    MISC = "misc"


class StructureSubtype(Enum):
    BRIDGE = "bridge"
    TUNNEL = "tunnel"


# === Scalar Value Types ===


@dataclass(frozen=True)
class Origin:
    """Where a record came from: a file path and an optional line number."""

    path: str
    line: Optional[int] = None

    def __str__(self) -> str:
        if self.line is None:
            return self.path
        return f"{self.path}:{self.line}"


@total_ordering
@dataclass(frozen=True)
class Date:
    """
    A possibly fuzzy historical date.

    Ordering is by year, then month, then day (a missing month or day sorts
    after any given one), then precision (before < exact < circa < after),
    then doubt (doubtful dates sort after certain ones).
    """

    year: int
    month: Optional[int] = None
    day: Optional[int] = None
    precision: Precision = Precision.EXACT
    doubt: bool = False

    def sort_key(self) -> Tuple[int, int, int, int, bool]:
        return (
            self.year,
            13 if self.month is None else self.month,
            32 if self.day is None else self.day,
            _PRECISION_RANK[self.precision],
            self.doubt,
        )

    def __lt__(self, other):
        if not isinstance(other, Date):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def is_leap(self) -> bool:
        return (self.year % 4 == 0 and self.year % 100 != 0) or self.year % 400 == 0

    def is_valid(self) -> bool:
        if self.month is None:
            # No month, no day.
            return self.day is None
        if not 1 <= self.month <= 12:
            return False
        if self.day is None:
            return True
        if self.month == 2:
            return 1 <= self.day <= (29 if self.is_leap() else 28)
        if self.month in (4, 6, 9, 11):
            return 1 <= self.day <= 30
        return 1 <= self.day <= 31

    def __str__(self) -> str:
        text = f"{_PRECISION_PREFIX[self.precision]}{self.year:04d}"
        if self.month is not None:
            text += f"-{self.month:02d}"
            if self.day is not None:
                text += f"-{self.day:02d}"
        if self.doubt:
            text += "?"
        return text


EventDate = Tuple[Date, ...]


@dataclass(frozen=True)
class CodedText:
    """
    Text that is either plain or keyed by country/language code.

    Plain text is stored as a single entry with a code of None.
    """

    entries: Tuple[Tuple[Optional[str], str], ...]

    @classmethod
    def plain(cls, text: str) -> "CodedText":
        return cls(entries=((None, text),))

    def is_plain(self) -> bool:
        return len(self.entries) == 1 and self.entries[0][0] is None

    def first(self) -> str:
        return self.entries[0][1]

    def get(self, code: str, fallback: bool = False) -> Optional[str]:
        """Text for a code; plain text matches any code."""
        code = code.upper()
        for entry_code, text in self.entries:
            if entry_code is None or entry_code == code:
                return text
        return self.first() if fallback else None

    def __iter__(self):
        return iter(self.entries)

    def __str__(self) -> str:
        return self.first()


# === References ===


@dataclass(frozen=True)
class Reference:
    """An unresolved pointer to another document by key."""

    key: str
    doctype: Optional[DocumentType] = None  # None accepts any type
    role: Optional[str] = None


@dataclass(frozen=True)
class Link:
    """A resolved pointer: the target's document identifier plus context."""

    target: int
    key: str
    doctype: Optional[DocumentType] = None
    role: Optional[str] = None

    @classmethod
    def from_reference(cls, reference: Reference, target: int) -> "Link":
        return cls(
            target=target,
            key=reference.key,
            doctype=reference.doctype,
            role=reference.role,
        )


Ref = Union[Reference, Link]
Refs = Tuple[Ref, ...]


def _join(path: str, name: str) -> str:
    # Fields like `for_` are written without the underscore in records
    name = name.rstrip("_")
    return f"{path}.{name}" if path else name


def walk_references(node: Any, path: str = "") -> Iterator[Tuple[str, Ref]]:
    """Yield (field path, reference or link) for everything below node."""
    if isinstance(node, (Reference, Link)):
        yield path, node
    elif dataclasses.is_dataclass(node) and not isinstance(node, type):
        for f in dataclasses.fields(node):
            yield from walk_references(getattr(node, f.name), _join(path, f.name))
    elif isinstance(node, tuple):
        for idx, item in enumerate(node):
            yield from walk_references(item, f"{path}[{idx}]")


def rewrite_references(
    node: Any, func: Callable[[str, Reference], Ref], path: str = ""
) -> Any:
    """
    Return node with every unresolved Reference replaced by func(path, ref).

    Links are left untouched, so rewriting an already rewritten tree is a
    no-op. Unchanged subtrees are returned as the very same objects.
    """
    if isinstance(node, Reference):
        return func(path, node)
    if isinstance(node, Link):
        return node
    if dataclasses.is_dataclass(node) and not isinstance(node, type):
        changes = {}
        for f in dataclasses.fields(node):
            old = getattr(node, f.name)
            new = rewrite_references(old, func, _join(path, f.name))
            if new is not old:
                changes[f.name] = new
        return dataclasses.replace(node, **changes) if changes else node
    if isinstance(node, tuple):
        items = tuple(
            rewrite_references(item, func, f"{path}[{idx}]")
            for idx, item in enumerate(node)
        )
        if any(new is not old for new, old in zip(items, node)):
            return items
        return node
    return node


# === Shared Sub-records ===


@dataclass(frozen=True)
class Contract:
    parties: Refs = ()


@dataclass(frozen=True)
class Alternative:
    """An alternative date for an event, with its own sources."""

    date: EventDate = ()
    document: Refs = ()
    source: Refs = ()


@dataclass(frozen=True)
class Basis:
    """The legal basis of an event."""

    date: Optional[EventDate] = None
    document: Refs = ()
    source: Refs = ()
    contract: Optional[Contract] = None
    treaty: Optional[Contract] = None
    note: Optional[CodedText] = None


# === Line ===


@dataclass(frozen=True)
class Section:
    start: Optional[Ref] = None
    end: Optional[Ref] = None


@dataclass(frozen=True)
class Concession:
    by: Refs = ()
    for_: Refs = ()  # "for" in the records
    until: Optional[Date] = None


@dataclass(frozen=True)
class LineEvent:
    date: EventDate = ()
    sections: Tuple[Section, ...] = ()
    document: Refs = ()
    source: Refs = ()
    alternative: Tuple[Alternative, ...] = ()
    basis: Tuple[Basis, ...] = ()
    note: Optional[CodedText] = None

    concession: Optional[Concession] = None
    expropriation: Optional[Concession] = None
    contract: Optional[Contract] = None
    treaty: Optional[Contract] = None

    category: Optional[Tuple[LineCategory, ...]] = None
    constructor: Optional[Refs] = None
    electrified: Optional[Tuple[str, ...]] = None  # () means explicitly none
    freight: Optional[Freight] = None
    gauge: Optional[Tuple[int, ...]] = None
    name: Optional[CodedText] = None
    operator: Optional[Refs] = None
    owner: Optional[Refs] = None
    passenger: Optional[Passenger] = None
    rails: Optional[int] = None
    region: Optional[Refs] = None
    reused: Optional[Refs] = None
    status: Optional[LineStatus] = None
    tracks: Optional[int] = None

    de_vzg: Optional[str] = None


# === Point ===


@dataclass(frozen=True)
class LinePosition:
    """A point's position on a line, in kilometres (as written)."""

    line: Ref
    km: Optional[str] = None


@dataclass(frozen=True)
class SiteNode:
    """A named node on an overlay path; not a document reference."""

    path: str
    node: str


@dataclass(frozen=True)
class PointEvent:
    date: EventDate = ()
    document: Refs = ()
    source: Refs = ()
    note: Optional[CodedText] = None

    category: Optional[Tuple[PointCategory, ...]] = None
    connection: Optional[Refs] = None
    designation: Optional[CodedText] = None
    location: Optional[Tuple[LinePosition, ...]] = None
    master: Optional[Refs] = None  # () means explicitly no master
    merged: Optional[Ref] = None
    name: Optional[CodedText] = None
    plc: Optional[str] = None
    public_name: Optional[Tuple[CodedText, ...]] = None
    site: Optional[Tuple[SiteNode, ...]] = None
    short_name: Optional[CodedText] = None
    staff: Optional[Staff] = None
    status: Optional[PointStatus] = None

    service: Optional[Service] = None
    split_from: Optional[Ref] = None

    de_ds100: Optional[str] = None
    de_dstnr: Optional[str] = None
    de_lknr: Optional[Tuple[str, ...]] = None
    de_name16: Optional[str] = None
    de_rang: Optional[DeRang] = None
    de_vbl: Optional[str] = None

    dk_ref: Optional[str] = None

    no_fs: Optional[str] = None
    no_njk: Optional[str] = None
    no_nsb: Optional[str] = None


# === Organization ===


@dataclass(frozen=True)
class Property:
    role: PropertyRole
    constructor: Refs = ()
    operator: Refs = ()
    owner: Refs = ()


@dataclass(frozen=True)
class OrganizationEvent:
    date: EventDate = ()
    document: Refs = ()
    source: Refs = ()
    basis: Tuple[Basis, ...] = ()
    note: Optional[CodedText] = None

    domicile: Refs = ()
    master: Optional[Ref] = None
    name: Optional[CodedText] = None
    owner: Optional[Refs] = None
    property: Optional[Property] = None
    short_name: Optional[CodedText] = None
    status: Optional[OrganizationStatus] = None
    successor: Optional[Ref] = None


# === Structure ===


@dataclass(frozen=True)
class StructureEvent:
    date: EventDate = ()
    document: Refs = ()
    source: Refs = ()
    note: Optional[CodedText] = None

    length: Optional[float] = None
    name: Optional[CodedText] = None


# === Documents ===


@dataclass(frozen=True)
class DocumentBase:
    """Attributes shared by all document variants."""

    key: str
    origin: Origin
    progress: Progress = Progress.IN_PROGRESS

    doctype: ClassVar[DocumentType]

    def references(self) -> Iterator[Tuple[str, Ref]]:
        """All outgoing references and links with their field paths."""
        return walk_references(self)

    def links(self) -> Iterator[Tuple[str, Link]]:
        for path, ref in walk_references(self):
            if isinstance(ref, Link):
                yield path, ref

    def unresolved(self) -> Iterator[Tuple[str, Reference]]:
        for path, ref in walk_references(self):
            if isinstance(ref, Reference):
                yield path, ref

    def with_links(self, func: Callable[[str, Reference], Ref]):
        return rewrite_references(self, func)

    def is_resolved(self) -> bool:
        return next(self.unresolved(), None) is None


@dataclass(frozen=True)
class Line(DocumentBase):
    label: Tuple[LineLabel, ...] = ()
    note: Optional[CodedText] = None
    points: Refs = ()
    events: Tuple[LineEvent, ...] = ()

    doctype: ClassVar[DocumentType] = DocumentType.LINE

    def code(self) -> Optional[Tuple[str, str]]:
        """The (country, code) pair of a key like 'line.de.1234'."""
        key = self.key
        if key.startswith("line.") and key[7:8] == ".":
            return key[5:7], key[8:]
        return None

    def endpoints(self) -> Tuple[Optional[Ref], Optional[Ref]]:
        if not self.points:
            return None, None
        return self.points[0], self.points[-1]


@dataclass(frozen=True)
class Point(DocumentBase):
    subtype: PointSubtype = PointSubtype.POST
    junction: Optional[bool] = None
    events: Tuple[PointEvent, ...] = ()

    doctype: ClassVar[DocumentType] = DocumentType.POINT

    def is_never_junction(self) -> bool:
        return self.junction is False or self.subtype == PointSubtype.BREAK

    def sites(self) -> Iterator[Tuple[str, SiteNode]]:
        for idx, event in enumerate(self.events):
            for site_idx, site in enumerate(event.site or ()):
                yield f"events[{idx}].site[{site_idx}]", site


@dataclass(frozen=True)
class Organization(DocumentBase):
    subtype: OrganizationSubtype = OrganizationSubtype.COMPANY
    events: Tuple[OrganizationEvent, ...] = ()

    doctype: ClassVar[DocumentType] = DocumentType.ORGANIZATION


@dataclass(frozen=True)
class Source(DocumentBase):
    subtype: SourceSubtype = SourceSubtype.MISC

    author: Refs = ()
    collection: Optional[Ref] = None
    date: Optional[Date] = None
    designation: Optional[str] = None
    digital: Tuple[str, ...] = ()
    edition: Optional[str] = None
    editor: Refs = ()
    isbn: Optional[str] = None
    number: Optional[str] = None
    organization: Refs = ()
    pages: Optional[str] = None
    publisher: Refs = ()
    revision: Optional[str] = None
    short_title: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None
    volume: Optional[str] = None

    also: Refs = ()
    attribution: Optional[str] = None
    crossref: Refs = ()
    note: Optional[CodedText] = None
    regards: Refs = ()

    doctype: ClassVar[DocumentType] = DocumentType.SOURCE


@dataclass(frozen=True)
class Structure(DocumentBase):
    subtype: StructureSubtype = StructureSubtype.BRIDGE
    events: Tuple[StructureEvent, ...] = ()

    doctype: ClassVar[DocumentType] = DocumentType.STRUCTURE


Document = Union[Line, Point, Organization, Source, Structure]

DOCUMENT_CLASSES: Dict[DocumentType, Type[DocumentBase]] = {
    DocumentType.LINE: Line,
    DocumentType.POINT: Point,
    DocumentType.ORGANIZATION: Organization,
    DocumentType.SOURCE: Source,
    DocumentType.STRUCTURE: Structure,
}
