"""
Exceptions raised by the raildata core.

Only load-fatal conditions and programming errors are raised. Broken
references, type mismatches and faulting checks are reported as findings
(see rail_findings) so that a single run can list every data problem.
"""

from typing import List, Optional, Sequence

from .rail_model import Origin


class RailDataError(Exception):
    """Base class for all raildata errors."""


class StructuralParseError(RailDataError):
    """A record or one of its fields does not have the expected shape."""

    def __init__(
        self,
        message: str,
        *,
        key: Optional[str] = None,
        origin: Optional[Origin] = None,
        field: str = "",
        expected: str = "",
    ):
        self.message = message
        self.key = key
        self.origin = origin
        self.field = field
        self.expected = expected
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"{self.origin}: " if self.origin else ""
        what = self.key or "<unknown key>"
        if self.field:
            what = f"{what} {self.field}"
        return f"{where}{what}: {self.message}"


class DuplicateKeyError(RailDataError):
    """Two documents claim the same (canonical) key."""

    def __init__(
        self,
        key: str,
        origin: Optional[Origin] = None,
        first_origin: Optional[Origin] = None,
    ):
        self.key = key
        self.origin = origin
        self.first_origin = first_origin
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f"{self.origin}: " if self.origin else ""
        first = f", first defined at {self.first_origin}" if self.first_origin else ""
        return f"{where}duplicate document '{self.key}'{first}"


class LoadError(RailDataError):
    """Aggregate of all load-fatal errors of one load attempt."""

    def __init__(self, errors: Sequence[RailDataError]):
        self.errors: List[RailDataError] = list(errors)
        super().__init__(f"load failed with {len(self.errors)} error(s)")

    def __iter__(self):
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)


class CorruptCacheError(RailDataError):
    """The cache bytes cannot be trusted: wrong format, version or content."""


class DocumentNotFound(RailDataError, KeyError):
    """No document is stored under the requested key or identifier."""

    def __init__(self, key):
        self.key = key
        super().__init__(key)

    def __str__(self) -> str:
        return f"no such document: {self.key!r}"


class FrozenIndexError(RailDataError):
    """Attempt to modify a key index after it was frozen."""


class LoadCancelled(RailDataError):
    """A run was cancelled between two phases."""
