"""Run configuration shared by loading, resolution and checks."""

import os
from dataclasses import dataclass, field


def _default_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass(frozen=True)
class RailConfig:
    """
    Tunables for one run.

    Attributes:
        parse_workers: Thread pool size for record parsing.
        check_workers: Thread pool size for running checks.
        site_tolerance: Distance in metres under which two point sites count
            as the same place.
        suggestions: Maximum number of near-miss keys listed for a broken
            reference.
    """

    parse_workers: int = field(default_factory=_default_workers)
    check_workers: int = field(default_factory=_default_workers)
    site_tolerance: float = 25.0
    suggestions: int = 3

    def __post_init__(self):
        if self.parse_workers < 1 or self.check_workers < 1:
            raise ValueError("worker counts must be at least 1")
        if self.site_tolerance < 0:
            raise ValueError("site_tolerance must not be negative")
        if self.suggestions < 0:
            raise ValueError("suggestions must not be negative")

    @classmethod
    def with_workers(cls, workers: int, **kwargs) -> "RailConfig":
        """A config using the same pool size for parsing and checks."""
        return cls(parse_workers=workers, check_workers=workers, **kwargs)


DEFAULT_CONFIG = RailConfig()
