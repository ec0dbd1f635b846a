"""
Topology checks over lines, points and organization chains.
"""

import logging
from typing import Dict, Iterator, List, Set, Tuple

from ..rail_findings import LINE_ENDPOINTS, REFERENCE_CYCLE, SECTION_ENDPOINT, Finding
from ..rail_model import Line, Progress
from .core import CheckContext, field_name, finding, same_target

logger = logging.getLogger(__name__)

# Relations whose chains must not loop back on themselves.
CHAIN_FIELDS = ("master", "successor", "merged")


def line_endpoints(context: CheckContext) -> Iterator[Finding]:
    """A line has at least two points and never repeats a point in a row."""
    for document in context.store:
        if not isinstance(document, Line):
            continue
        points = document.points
        if len(points) < 2:
            if document.progress != Progress.STUB:
                yield finding(
                    document,
                    f"line needs at least two points, has {len(points)}",
                    field="points",
                    code=LINE_ENDPOINTS,
                )
            continue
        for idx in range(1, len(points)):
            if same_target(points[idx - 1], points[idx]):
                yield finding(
                    document,
                    f"point '{points[idx].key}' is listed twice in a row",
                    field=f"points[{idx}]",
                    code=LINE_ENDPOINTS,
                )


def line_sections(context: CheckContext) -> Iterator[Finding]:
    """Section starts and ends of a line's events are points of that line."""
    for document in context.store:
        if not isinstance(document, Line) or not document.points:
            continue
        keys = {point.key for point in document.points}
        for event_idx, event in enumerate(document.events):
            for section_idx, section in enumerate(event.sections):
                for name in ("start", "end"):
                    ref = getattr(section, name)
                    if ref is not None and ref.key not in keys:
                        yield finding(
                            document,
                            f"section {name} '{ref.key}' is not a point of this line",
                            field=f"events[{event_idx}].sections[{section_idx}].{name}",
                            code=SECTION_ENDPOINT,
                        )


def _chain_edges(context: CheckContext, relation: str) -> Dict[int, List[Tuple[int, str]]]:
    edges: Dict[int, List[Tuple[int, str]]] = {}
    for doc_id, document in context.store.items():
        for path, link in document.links():
            if field_name(path) == relation and context.target(link) is not None:
                edges.setdefault(doc_id, []).append((link.target, path))
    return edges


def _find_cycles(edges: Dict[int, List[Tuple[int, str]]]) -> List[List[Tuple[int, str]]]:
    """
    Find elementary cycles reachable in a small directed graph.

    Each cycle is reported once, rotated to start at its smallest node.
    """
    cycles: List[List[Tuple[int, str]]] = []
    seen: Set[Tuple[int, ...]] = set()
    done: Set[int] = set()

    for start in sorted(edges):
        if start in done:
            continue
        # Iterative DFS keeping the current path
        stack = [(start, iter(edges.get(start, ())))]
        path: List[Tuple[int, str]] = []
        on_path = {start: 0}
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                on_path.pop(node, None)
                if path:
                    path.pop()
                done.add(node)
                continue
            target, field = child
            if target in on_path:
                cycle = path[on_path[target]:] + [(node, field)]
                members = tuple(sorted(n for n, _ in cycle))
                if members not in seen:
                    seen.add(members)
                    low = min(range(len(cycle)), key=lambda i: cycle[i][0])
                    cycles.append(cycle[low:] + cycle[:low])
                continue
            if target in done:
                continue
            path.append((node, field))
            on_path[target] = len(path)
            stack.append((target, iter(edges.get(target, ()))))
    return cycles


def reference_cycles(context: CheckContext) -> Iterator[Finding]:
    """master, successor and merged chains never loop back."""
    store = context.store
    for relation in CHAIN_FIELDS:
        for cycle in _find_cycles(_chain_edges(context, relation)):
            first_id, first_field = cycle[0]
            chain = " -> ".join(store.get(n).key for n, _ in cycle)
            chain += f" -> {store.get(first_id).key}"
            logger.debug("Cycle in %s: %s", relation, chain)
            yield finding(
                store.get(first_id),
                f"{relation} chain loops: {chain}",
                field=first_field,
                code=REFERENCE_CYCLE,
            )
