"""
Core data structures shared by the checks.

This module holds the check context handed to every check, the Check
record kept by the engine's registry, and small helpers for building
findings and walking links.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Tuple

from ..rail_config import DEFAULT_CONFIG, RailConfig
from ..rail_findings import Finding, Severity
from ..rail_model import Document, Link
from ..rail_overlay import GeoOverlay
from ..rail_store import Store

_LAST_FIELD = re.compile(r"([A-Za-z_]+)(?:\[\d+\])?$")


@dataclass(frozen=True)
class CheckContext:
    """Read-only inputs of one check run."""

    store: Store
    overlay: Optional[GeoOverlay] = None
    config: RailConfig = DEFAULT_CONFIG

    def target(self, link: Link) -> Optional[Document]:
        """The document a link points at, or None if out of range."""
        if 0 <= link.target < len(self.store):
            return self.store.get(link.target)
        return None


CheckFunc = Callable[[CheckContext], Iterable[Finding]]


@dataclass(frozen=True)
class Check:
    """A registered check: its name, function and a one-line description."""

    name: str
    func: CheckFunc
    description: str = ""


def finding(
    document: Document,
    message: str,
    *,
    field: Optional[str] = None,
    code: str = "",
    severity: Severity = Severity.ERROR,
) -> Finding:
    """
    Build a finding about a document.

    The check name is left empty; the engine tags every finding with the
    name of the check that produced it.
    """
    return Finding(
        severity=severity,
        check="",
        key=document.key,
        message=message,
        field=field,
        origin=document.origin,
        code=code,
    )


def field_name(path: str) -> str:
    """The last field name of a path: 'events[0].master[1]' -> 'master'."""
    match = _LAST_FIELD.search(path)
    return match.group(1) if match else path


def all_links(store: Store) -> Iterator[Tuple[int, Document, str, Link]]:
    """Every (source id, source document, field path, link) of the store."""
    for doc_id, document in store.items():
        for path, link in document.links():
            yield doc_id, document, path, link


def same_target(a, b) -> bool:
    """Whether two references or links name the same document."""
    if isinstance(a, Link) and isinstance(b, Link):
        return a.target == b.target
    return a.key == b.key
