"""
Check engine: runs a registry of independent checks over a resolved store.

Checks run on a thread pool. Each check's findings land in the slot of its
registration position, so reports are ordered by registration and never by
completion. A check that raises yields one check-internal finding and the
remaining checks still run.
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional

from ..rail_config import DEFAULT_CONFIG, RailConfig
from ..rail_findings import CHECK_INTERNAL, Finding, Severity
from ..rail_overlay import GeoOverlay
from ..rail_store import Store
from .core import Check, CheckContext, CheckFunc

logger = logging.getLogger(__name__)


class CheckEngine:
    """Ordered registry of named checks."""

    def __init__(self, checks: Iterable[Check] = ()):
        self._checks: Dict[str, Check] = {}
        for check in checks:
            self.add_check(check.name, check.func, check.description)

    def add_check(self, name: str, func: CheckFunc, description: str = ""):
        """
        Register a check.

        Args:
            name: Unique check name, used to tag its findings.
            func: Function taking a CheckContext and returning findings.
            description: One-line description for listings.
        """
        if name in self._checks:
            raise ValueError(f"check '{name}' is already registered")
        self._checks[name] = Check(name, func, description)
        logger.debug("Registered check: %s", name)

    def register(
        self, name: str, description: str = ""
    ) -> Callable[[CheckFunc], CheckFunc]:
        """Decorator form of add_check()."""

        def decorator(func: CheckFunc) -> CheckFunc:
            self.add_check(name, func, description)
            return func

        return decorator

    @property
    def checks(self) -> List[Check]:
        return list(self._checks.values())

    def names(self) -> List[str]:
        return list(self._checks)

    def _unknown(self, names: Iterable[str]):
        unknown = sorted(set(names) - set(self._checks))
        if unknown:
            raise ValueError(f"unknown check(s): {', '.join(unknown)}")

    def select(self, names: Iterable[str]) -> "CheckEngine":
        """A new engine with only the named checks, in registration order."""
        names = set(names)
        self._unknown(names)
        return CheckEngine(c for c in self._checks.values() if c.name in names)

    def skip(self, names: Iterable[str]) -> "CheckEngine":
        """A new engine without the named checks."""
        names = set(names)
        self._unknown(names)
        return CheckEngine(c for c in self._checks.values() if c.name not in names)

    def _run_one(self, check: Check, context: CheckContext) -> List[Finding]:
        try:
            findings = [
                dataclasses.replace(f, check=check.name) for f in check.func(context)
            ]
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Check '%s' failed: %s", check.name, e, exc_info=True)
            return [
                Finding(
                    severity=Severity.ERROR,
                    check=check.name,
                    key="",
                    message=f"check failed with {type(e).__name__}: {e}",
                    code=CHECK_INTERNAL,
                )
            ]
        logger.debug("Check '%s': %d finding(s)", check.name, len(findings))
        return findings

    def run(
        self,
        store: Store,
        overlay: Optional[GeoOverlay] = None,
        config: Optional[RailConfig] = None,
    ) -> List[Finding]:
        """
        Run all registered checks.

        Args:
            store: The resolved store; it is only read.
            overlay: Optional geographic overlay for geometry checks.
            config: Run configuration (check workers, site tolerance).

        Returns:
            All findings, grouped by check in registration order.
        """
        config = config or DEFAULT_CONFIG
        if not store.resolved:
            logger.warning("Running checks on an unresolved store")
        context = CheckContext(store=store, overlay=overlay, config=config)
        checks = self.checks
        slots: List[List[Finding]] = [[] for _ in checks]
        lock = threading.Lock()

        def run_slot(position: int):
            findings = self._run_one(checks[position], context)
            with lock:
                slots[position] = findings

        logger.info(
            "Running %d checks with %d workers", len(checks), config.check_workers
        )
        with ThreadPoolExecutor(
            max_workers=config.check_workers, thread_name_prefix="raildata-check"
        ) as pool:
            futures = [pool.submit(run_slot, pos) for pos in range(len(checks))]
            for future in futures:
                future.result()

        return [f for slot in slots for f in slot]
