"""
Findings: non-fatal data-quality problems reported by resolution and checks.

A Finding never mutates the store. It names the check that produced it,
the affected document key and, where it applies, the field path inside
that document.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .rail_model import Origin

# Finding codes
BROKEN_REFERENCE = "broken-reference"
TYPE_MISMATCH = "type-mismatch"
CHECK_INTERNAL = "check-internal"
DANGLING_LINK = "dangling-link"
LINE_ENDPOINTS = "line-endpoints"
SECTION_ENDPOINT = "section-endpoint"
DATE_ORDER = "date-order"
REFERENCE_CYCLE = "reference-cycle"
DUPLICATE_SITE = "duplicate-site"


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Finding:
    """One reported problem: severity, originating check, location and message."""

    severity: Severity
    check: str
    key: str
    message: str
    field: Optional[str] = None
    origin: Optional[Origin] = None
    code: str = ""

    def location(self) -> str:
        key = self.key or "(dataset)"
        if self.field:
            return f"{key} {self.field}"
        return key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "check": self.check,
            "code": self.code,
            "key": self.key,
            "field": self.field,
            "origin": str(self.origin) if self.origin else None,
            "message": self.message,
        }

    def __str__(self) -> str:
        where = f"{self.origin}: " if self.origin else ""
        return (
            f"{where}{self.severity.value}: [{self.check}] "
            f"{self.location()}: {self.message}"
        )
