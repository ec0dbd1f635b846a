"""
Geometry check: different points should not sit on the same spot.

Point sites name overlay nodes; two different points whose sites lie within
the configured tolerance are reported as warnings. Candidates are found
with a latitude sweep, so only nearby pairs are measured.
"""

import logging
import math
from typing import Iterator, List, Set, Tuple

from ..rail_findings import DUPLICATE_SITE, Finding, Severity
from ..rail_model import Point
from ..rail_overlay import EARTH_RADIUS_M, Coordinate, haversine
from .core import CheckContext, finding

logger = logging.getLogger(__name__)

# metres per degree of latitude
_METRES_PER_DEGREE = math.pi * EARTH_RADIUS_M / 180


def duplicate_sites(context: CheckContext) -> Iterator[Finding]:
    """Two different points have sites within site_tolerance metres."""
    overlay = context.overlay
    if overlay is None:
        return
    tolerance = context.config.site_tolerance

    # (latitude, point id, field path, coordinate)
    sites: List[Tuple[float, int, str, Coordinate]] = []
    for doc_id, document in context.store.items():
        if not isinstance(document, Point):
            continue
        for path, site in document.sites():
            node = overlay.node(site.path, site.node)
            if node is not None:
                sites.append((node.coordinate.lat, doc_id, path, node.coordinate))
    sites.sort(key=lambda s: (s[0], s[1], s[2]))
    logger.debug("Comparing %d sites within %.1f m", len(sites), tolerance)

    window = tolerance / _METRES_PER_DEGREE
    reported: Set[Tuple[int, int]] = set()
    for i, (lat, doc_id, path, coordinate) in enumerate(sites):
        for j in range(i + 1, len(sites)):
            other_lat, other_id, other_path, other = sites[j]
            if other_lat - lat > window:
                break
            if other_id == doc_id:
                continue
            pair = (min(doc_id, other_id), max(doc_id, other_id))
            if pair in reported:
                continue
            distance = haversine(coordinate, other)
            if distance <= tolerance:
                reported.add(pair)
                first = context.store.get(pair[0])
                second = context.store.get(pair[1])
                yield finding(
                    first,
                    f"site is {distance:.1f} m from a site of '{second.key}'",
                    field=path if pair[0] == doc_id else other_path,
                    code=DUPLICATE_SITE,
                    severity=Severity.WARNING,
                )
