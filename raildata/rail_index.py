"""
Key index: maps canonical document keys to dense document identifiers.

Exact lookups go through a dict. A parallel list of keys kept in code-point
order makes every prefix a contiguous range, so prefix lookup is a bisect
plus a lazy scan. The index is filled once during load and then frozen;
inserted keys are appended and the list is sorted once, when first needed.
"""

import bisect
import difflib
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .rail_errors import DuplicateKeyError, FrozenIndexError
from .rail_model import Origin, canonical

logger = logging.getLogger(__name__)


class KeyIndex:
    """Prefix-aware key to identifier index."""

    def __init__(self):
        self._ids: Dict[str, int] = {}
        self._origins: Dict[str, Optional[Origin]] = {}
        self._sorted: List[str] = []
        self._unsorted = False
        self._frozen = False

    @classmethod
    def build(cls, entries: Iterable[Tuple[str, int]]) -> "KeyIndex":
        """Build and freeze an index, raising on the first duplicate."""
        index = cls()
        for key, doc_id in entries:
            index.insert(key, doc_id)
        index.freeze()
        return index

    def insert(self, key: str, doc_id: int, origin: Optional[Origin] = None):
        """
        Add a key.

        Raises:
            DuplicateKeyError: If the canonical key is already present.
            FrozenIndexError: If the index has been frozen.
        """
        if self._frozen:
            raise FrozenIndexError(f"cannot insert '{key}' into a frozen index")
        key = canonical(key)
        if key in self._ids:
            raise DuplicateKeyError(key, origin, self._origins.get(key))
        self._ids[key] = doc_id
        self._origins[key] = origin
        self._sorted.append(key)
        self._unsorted = True

    def _ordered(self) -> List[str]:
        # Code-point order, so every prefix is a contiguous range
        if self._unsorted:
            self._sorted.sort()
            self._unsorted = False
        return self._sorted

    def freeze(self):
        self._ordered()
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, key: str) -> Optional[int]:
        """Return the identifier for key, or None if absent."""
        return self._ids.get(canonical(key))

    def __contains__(self, key: str) -> bool:
        return canonical(key) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ordered())

    def items(self) -> Iterator[Tuple[str, int]]:
        """All (key, identifier) pairs in key order."""
        for key in self._ordered():
            yield key, self._ids[key]

    def find_by_prefix(self, prefix: str) -> Iterator[Tuple[str, int]]:
        """
        Lazily yield (key, identifier) pairs whose key starts with prefix.

        Pairs come in key order. The empty prefix yields every key.
        """
        prefix = canonical(prefix)
        keys = self._ordered()
        pos = bisect.bisect_left(keys, prefix)
        while pos < len(keys):
            key = keys[pos]
            if not key.startswith(prefix):
                break
            yield key, self._ids[key]
            pos += 1

    def _shared_prefix_neighbours(self, key: str) -> List[str]:
        # Keys sharing the longest prefix with key are around its insert point
        keys = self._ordered()
        pos = bisect.bisect_left(keys, key)
        candidates = keys[max(0, pos - 2) : pos + 2]

        def shared(other: str) -> int:
            count = 0
            for a, b in zip(key, other):
                if a != b:
                    break
                count += 1
            return count

        best = max((shared(c) for c in candidates), default=0)
        if best == 0:
            return []
        return [c for c in candidates if shared(c) == best]

    def suggest(self, key: str, limit: int = 3) -> List[str]:
        """
        Suggest existing keys close to a missing one.

        Longest-shared-prefix neighbours come first, then close spellings
        found with difflib.

        Args:
            key: The key that was not found.
            limit: Maximum number of suggestions.

        Returns:
            Up to limit existing keys, best first.
        """
        if limit <= 0 or not self._sorted:
            return []
        key = canonical(key)
        suggestions: List[str] = []
        for candidate in self._shared_prefix_neighbours(key):
            if candidate != key and candidate not in suggestions:
                suggestions.append(candidate)
        for candidate in difflib.get_close_matches(key, self._ordered(), n=limit, cutoff=0.75):
            if candidate not in suggestions:
                suggestions.append(candidate)
        logger.debug("Suggestions for '%s': %s", key, suggestions[:limit])
        return suggestions[:limit]
