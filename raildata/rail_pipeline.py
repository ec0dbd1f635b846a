"""
Pipeline: ties loading, resolution, caching and checks together.

Phases are atomic. A run can be cancelled through a threading.Event, which
is looked at between phases only, never inside one.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from .checks import CheckEngine, default_engine
from .rail_codec import decode, encode
from .rail_config import DEFAULT_CONFIG, RailConfig
from .rail_errors import CorruptCacheError, LoadCancelled
from .rail_findings import Finding
from .rail_overlay import GeoOverlay
from .rail_parser import RawRecord
from .rail_resolver import resolve
from .rail_store import Store, load_store

logger = logging.getLogger(__name__)


def _checkpoint(cancel: Optional[threading.Event], phase: str):
    if cancel is not None and cancel.is_set():
        logger.info("Run cancelled before %s", phase)
        raise LoadCancelled(f"cancelled before {phase}")


@dataclass(frozen=True)
class Report:
    """Ordered findings of one run: resolution first, then each check."""

    findings: Tuple[Finding, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.findings

    def counts(self) -> Dict[str, int]:
        """Number of findings per severity."""
        return dict(Counter(f.severity.value for f in self.findings))

    def to_dict(self):
        return {
            "ok": self.ok,
            "counts": self.counts(),
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass(frozen=True)
class OpenedStore:
    """
    Result of open_store().

    Attributes:
        store: The resolved store.
        from_cache: Whether the store was decoded from the cache.
        cache: Fresh cache bytes after a re-parse, None otherwise.
    """

    store: Store
    from_cache: bool
    cache: Optional[bytes] = None


def build_store(
    records: Iterable[RawRecord],
    overlay: Optional[GeoOverlay] = None,
    config: Optional[RailConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> Store:
    """
    Load and resolve raw records.

    Raises:
        LoadError: If any record fails to parse or a key is duplicated.
        LoadCancelled: If cancel was set between phases.
    """
    config = config or DEFAULT_CONFIG
    _checkpoint(cancel, "load")
    store = load_store(records, config)
    _checkpoint(cancel, "resolve")
    return resolve(store, overlay, config)


def open_store(
    read_records: Callable[[], Iterable[RawRecord]],
    cached: Optional[bytes] = None,
    overlay: Optional[GeoOverlay] = None,
    config: Optional[RailConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> OpenedStore:
    """
    Open a store from cache bytes, falling back to parsing raw records.

    Args:
        read_records: Called only when the cache is missing or unusable.
        cached: Cache bytes, if a fresh cache exists. A cache resolved
            against another overlay is treated like a corrupt one.
        overlay: Optional geographic overlay used when resolving.
        config: Run configuration.
        cancel: Optional event cancelling the run between phases.

    Returns:
        OpenedStore with the store, its provenance and fresh cache bytes.
    """
    if cached is not None:
        _checkpoint(cancel, "cache decode")
        try:
            return OpenedStore(decode(cached, overlay), from_cache=True)
        except CorruptCacheError as e:
            logger.warning("Ignoring cache, re-parsing: %s", e)
    _checkpoint(cancel, "read")
    store = build_store(read_records(), overlay, config, cancel)
    _checkpoint(cancel, "cache encode")
    return OpenedStore(store, from_cache=False, cache=encode(store, overlay))


def check_store(
    store: Store,
    engine: Optional[CheckEngine] = None,
    overlay: Optional[GeoOverlay] = None,
    config: Optional[RailConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> Report:
    """Run the check engine and report resolution and check findings."""
    _checkpoint(cancel, "checks")
    engine = engine or default_engine()
    findings = list(store.findings)
    findings.extend(engine.run(store, overlay, config))
    report = Report(tuple(findings))
    logger.info("Check run finished with %d finding(s)", len(report.findings))
    return report
