"""
Check package: the engine and the default battery of semantic checks.

- core: check context, Check record and finding helpers
- engine: CheckEngine running registered checks on a thread pool
- integrity: referential-integrity, link-types
- topology: line-endpoints, line-sections, reference-cycles
- chronology: event-order
- geometry: duplicate-sites
"""

from .chronology import event_order
from .core import Check, CheckContext, finding
from .engine import CheckEngine
from .geometry import duplicate_sites
from .integrity import link_types, referential_integrity
from .topology import line_endpoints, line_sections, reference_cycles

DEFAULT_CHECKS = (
    Check(
        "referential-integrity",
        referential_integrity,
        "every link targets an existing document with the same key",
    ),
    Check("link-types", link_types, "links point at documents of the expected type"),
    Check("line-endpoints", line_endpoints, "lines have at least two distinct points"),
    Check("line-sections", line_sections, "section ends are points of the line"),
    Check("event-order", event_order, "event dates are in chronological order"),
    Check("reference-cycles", reference_cycles, "master/successor/merged chains end"),
    Check("duplicate-sites", duplicate_sites, "points do not share an overlay site"),
)


def default_engine() -> CheckEngine:
    """A new engine with the default battery registered."""
    return CheckEngine(DEFAULT_CHECKS)


__all__ = [
    "Check",
    "CheckContext",
    "CheckEngine",
    "DEFAULT_CHECKS",
    "default_engine",
    "finding",
]
