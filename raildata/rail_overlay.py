"""
Geographic overlay: a read-only table of paths, nodes and coordinates.

The overlay is produced upstream from an external map format. Here it is
only consumed: points name overlay nodes in their `site` field, and the
resolver and checks look those nodes up.

Overlay YAML shape::

    <path id>:
      <node name>: {lat: 52.52, lon: 13.37, <attribute>: <value>, ...}
"""

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import yaml

from .rail_errors import StructuralParseError
from .rail_model import Origin, canonical
from .rail_parser import load_yaml

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371008.8


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    def rounded(self, digits: int = 5) -> Tuple[float, float]:
        return round(self.lat, digits), round(self.lon, digits)

    def distance_to(self, other: "Coordinate") -> float:
        return haversine(self, other)


def haversine(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in metres."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


@dataclass(frozen=True)
class OverlayNode:
    path: str
    name: str
    coordinate: Coordinate
    attributes: Tuple[Tuple[str, str], ...] = ()

    def attribute(self, name: str) -> Optional[str]:
        return dict(self.attributes).get(name)


class GeoOverlay:
    """Lookup table keyed by (path, node) and by rounded coordinate."""

    def __init__(self, nodes: Iterable[OverlayNode] = ()):
        self._paths: Dict[str, Dict[str, OverlayNode]] = {}
        self._by_coordinate: Dict[Tuple[float, float], List[OverlayNode]] = {}
        for node in nodes:
            self._paths.setdefault(node.path, {})[node.name] = node
            self._by_coordinate.setdefault(node.coordinate.rounded(), []).append(node)

    @classmethod
    def from_mapping(cls, data: Mapping[Any, Any], source: str = "<overlay>") -> "GeoOverlay":
        """
        Build an overlay from already decoded data.

        Raises:
            StructuralParseError: If a path or node does not have the
                expected shape.
        """
        origin = Origin(source)

        def fail(field: str, message: str, expected: str):
            raise StructuralParseError(
                message, key="overlay", origin=origin, field=field, expected=expected
            )

        if not isinstance(data, Mapping):
            fail("", "overlay must be a mapping", "path: {node: coordinate}")
        nodes = []
        for path_id, path_nodes in data.items():
            path = canonical(str(path_id))
            if not isinstance(path_nodes, Mapping):
                fail(path, "path must map node names to coordinates", "mapping")
            for node_name, entry in path_nodes.items():
                name = canonical(str(node_name))
                field = f"{path}.{name}"
                if not isinstance(entry, Mapping) or "lat" not in entry or "lon" not in entry:
                    fail(field, "node needs 'lat' and 'lon'", "{lat, lon}")
                try:
                    coordinate = Coordinate(float(entry["lat"]), float(entry["lon"]))
                except (TypeError, ValueError):
                    fail(field, "coordinates must be numbers", "number")
                if not (-90 <= coordinate.lat <= 90 and -180 <= coordinate.lon <= 180):
                    fail(field, "coordinates out of range", "lat -90..90, lon -180..180")
                attributes = tuple(
                    sorted(
                        (str(k), str(v)) for k, v in entry.items() if k not in ("lat", "lon")
                    )
                )
                nodes.append(OverlayNode(path, name, coordinate, attributes))
        overlay = cls(nodes)
        logger.info("Overlay %s: %d paths, %d nodes", source, len(overlay), len(nodes))
        return overlay

    @classmethod
    def from_yaml(cls, text: str, source: str = "<overlay>") -> "GeoOverlay":
        try:
            data = load_yaml(text)
        except yaml.YAMLError as e:
            raise StructuralParseError(
                f"invalid YAML: {e}", key="overlay", origin=Origin(source)
            ) from e
        return cls.from_mapping(data or {}, source)

    @classmethod
    def load(cls, filename: str) -> "GeoOverlay":
        with open(filename, "r", encoding="utf-8") as f:
            return cls.from_yaml(f.read(), filename)

    def has_path(self, path: str) -> bool:
        return path in self._paths

    def node(self, path: str, name: str) -> Optional[OverlayNode]:
        return self._paths.get(path, {}).get(name)

    def nodes(self) -> Iterator[OverlayNode]:
        for path in sorted(self._paths):
            yield from self._paths[path].values()

    def at(self, coordinate: Coordinate) -> List[OverlayNode]:
        """Nodes whose coordinate rounds to the same value as coordinate."""
        return list(self._by_coordinate.get(coordinate.rounded(), ()))

    def fingerprint(self) -> str:
        """SHA-256 over every node, its coordinate and its attributes."""
        lines = sorted(
            f"{n.path}\t{n.name}\t{n.coordinate.lat!r}\t{n.coordinate.lon!r}\t{n.attributes!r}"
            for n in self.nodes()
        )
        return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()

    def __len__(self) -> int:
        return len(self._paths)
