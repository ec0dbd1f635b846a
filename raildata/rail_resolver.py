"""
Link resolver: rewrites symbolic references into identifier links.

Resolution is a single pass over already loaded documents. Every reference
whose key is in the key index becomes a Link; every other reference stays
symbolic and produces exactly one broken-reference Finding. Only existence
is validated here: cycles are allowed and type coherence is left to the
check engine. With a geographic overlay, point sites are validated too.

Running the resolver over a resolved store returns that store unchanged.
"""

import logging
from typing import Callable, List, Optional

from .rail_config import DEFAULT_CONFIG, RailConfig
from .rail_findings import BROKEN_REFERENCE, Finding, Severity
from .rail_model import Document, Link, Point, Reference
from .rail_overlay import GeoOverlay
from .rail_store import Store

logger = logging.getLogger(__name__)

RESOLVE_CHECK = "resolve"


def broken_reference_message(reference: Reference, suggestions: List[str]) -> str:
    message = f"link to missing document '{reference.key}'"
    if suggestions:
        message += " (did you mean " + ", ".join(f"'{s}'" for s in suggestions) + "?)"
    return message


class LinkResolver:  # pylint: disable=too-few-public-methods
    """
    Resolves all references of one store.

    Args:
        store: The loaded store.
        overlay: Optional geographic overlay for validating point sites.
        config: Run configuration (number of suggestions).
    """

    def __init__(
        self,
        store: Store,
        overlay: Optional[GeoOverlay] = None,
        config: Optional[RailConfig] = None,
    ):
        self.store = store
        self.overlay = overlay
        self.config = config or DEFAULT_CONFIG
        self.findings: List[Finding] = []

    def _broken(self, document: Document, path: str, message: str):
        self.findings.append(
            Finding(
                severity=Severity.ERROR,
                check=RESOLVE_CHECK,
                key=document.key,
                message=message,
                field=path,
                origin=document.origin,
                code=BROKEN_REFERENCE,
            )
        )

    def _link_for(self, document: Document) -> Callable[[str, Reference], object]:
        index = self.store.index

        def link(path: str, reference: Reference):
            target = index.lookup(reference.key)
            if target is None:
                suggestions = index.suggest(reference.key, self.config.suggestions)
                self._broken(document, path, broken_reference_message(reference, suggestions))
                return reference
            return Link.from_reference(reference, target)

        return link

    def _check_sites(self, point: Point):
        for path, site in point.sites():
            if not self.overlay.has_path(site.path):
                self._broken(point, path, f"unknown overlay path '{site.path}'")
            elif self.overlay.node(site.path, site.node) is None:
                self._broken(
                    point, path, f"unknown node '{site.node}' on overlay path '{site.path}'"
                )

    def resolve(
        self, progress_callback: Optional[Callable[[str, int, int], None]] = None
    ) -> Store:
        """
        Resolve every document of the store.

        Args:
            progress_callback: Optional callback(stage, done, total).

        Returns:
            A resolved Store carrying the resolution findings.
        """
        if self.store.resolved:
            logger.debug("Store already resolved, nothing to do")
            return self.store

        self.findings = []
        total = len(self.store)
        documents = []
        for doc_id, document in self.store.items():
            documents.append(document.with_links(self._link_for(document)))
            if self.overlay is not None and isinstance(document, Point):
                self._check_sites(document)
            if progress_callback:
                progress_callback("resolve", doc_id + 1, total)

        logger.info(
            "Resolved %d documents, %d broken reference(s)", total, len(self.findings)
        )
        return self.store.derive(documents, resolved=True, findings=self.findings)


def resolve(
    store: Store,
    overlay: Optional[GeoOverlay] = None,
    config: Optional[RailConfig] = None,
) -> Store:
    """Resolve a store; see LinkResolver."""
    return LinkResolver(store, overlay, config).resolve()
