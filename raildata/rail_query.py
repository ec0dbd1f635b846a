"""
Query facade: the read-only lookup surface over one resolved store.

This is what a network service or a report consumes. It is a thin handle
around a store passed in explicitly, so several stores can be queried side
by side.
"""

import logging
from typing import Iterator, List, Optional, Tuple

from .rail_config import DEFAULT_CONFIG, RailConfig
from .rail_errors import DocumentNotFound
from .rail_model import Document, Line, Link, Point, PointSubtype, Reference
from .rail_store import Backlink, Store

logger = logging.getLogger(__name__)


class StoreQuery:
    """Read-only queries over a store."""

    def __init__(self, store: Store, config: Optional[RailConfig] = None):
        self.store = store
        self.config = config or DEFAULT_CONFIG

    def get_by_key(self, key: str) -> Document:
        """Raises DocumentNotFound for an unknown key."""
        return self.store.get_by_key(key)

    def get_by_id(self, doc_id: int) -> Document:
        return self.store.get(doc_id)

    def find_by_prefix(self, prefix: str) -> Iterator[Tuple[str, int]]:
        return self.store.find_by_prefix(prefix)

    def suggest(self, key: str, limit: Optional[int] = None) -> List[str]:
        """Existing keys close to key."""
        if limit is None:
            limit = self.config.suggestions
        return self.store.index.suggest(key, limit)

    def follow(self, ref) -> Document:
        """
        Return the document a link (or a still symbolic reference) names.

        Raises:
            DocumentNotFound: If the target does not exist.
        """
        if isinstance(ref, Link):
            return self.store.get(ref.target)
        if isinstance(ref, Reference):
            return self.store.get_by_key(ref.key)
        raise TypeError(f"expected a Link or Reference, got {type(ref).__name__}")

    def _id_of(self, document_or_key) -> int:
        key = document_or_key if isinstance(document_or_key, str) else document_or_key.key
        doc_id = self.store.lookup(key)
        if doc_id is None:
            raise DocumentNotFound(key)
        return doc_id

    def referrers(self, key: str) -> Tuple[Backlink, ...]:
        """Every link pointing at the document with this key."""
        return self.store.backlinks(self._id_of(key))

    def lines_through(self, point) -> List[Line]:
        """Lines listing the point (a Point or its key) among their points."""
        lines = []
        seen = set()
        for backlink in self.store.backlinks(self._id_of(point)):
            source = self.store.get(backlink.source)
            if (
                isinstance(source, Line)
                and backlink.field.startswith("points[")
                and backlink.source not in seen
            ):
                seen.add(backlink.source)
                lines.append(source)
        return lines

    def is_junction(self, point) -> bool:
        """
        Whether a point is a junction.

        An explicit `junction` value wins and break points never are.
        Otherwise a point is a junction when it lies on more than one line
        or has connections.
        """
        if isinstance(point, str):
            point = self.get_by_key(point)
        if not isinstance(point, Point) or point.is_never_junction():
            return False
        if point.junction:
            return True
        if any(event.connection for event in point.events):
            return True
        return len(self.lines_through(point)) > 1

    def junctions(self, line) -> List[Point]:
        """
        Junctions along a line, in line order.

        The first and last points that are not breaks always count, plus
        every junction in between.
        """
        if isinstance(line, str):
            line = self.get_by_key(line)
        points = []
        for ref in line.points:
            try:
                document = self.follow(ref)
            except DocumentNotFound:
                logger.debug("%s: skipping missing point '%s'", line.key, ref.key)
                continue
            if isinstance(document, Point):
                points.append(document)
        candidates = [p for p in points if p.subtype != PointSubtype.BREAK]
        if not candidates:
            return []
        first, last = candidates[0], candidates[-1]
        result = []
        for point in candidates:
            if point is first or point is last or self.is_junction(point):
                if not result or result[-1] is not point:
                    result.append(point)
        return result
