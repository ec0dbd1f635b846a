"""
Link integrity checks.

referential-integrity re-validates every link against the store, even
though the resolver only ever creates valid ones. link-types checks that a
link whose reference expected a document type points at that type.
"""

from typing import Iterator

from ..rail_findings import DANGLING_LINK, TYPE_MISMATCH, Finding
from .core import CheckContext, all_links, finding


def referential_integrity(context: CheckContext) -> Iterator[Finding]:
    """Every link targets an existing document whose key matches."""
    for _, document, path, link in all_links(context.store):
        target = context.target(link)
        if target is None:
            yield finding(
                document,
                f"link to '{link.key}' has invalid target {link.target}",
                field=path,
                code=DANGLING_LINK,
            )
        elif target.key != link.key:
            yield finding(
                document,
                f"link to '{link.key}' points at document '{target.key}'",
                field=path,
                code=DANGLING_LINK,
            )


def link_types(context: CheckContext) -> Iterator[Finding]:
    """Every typed link points at a document of the expected type."""
    for _, document, path, link in all_links(context.store):
        if link.doctype is None:
            continue
        target = context.target(link)
        if target is None:
            # Reported by referential-integrity
            continue
        if target.doctype != link.doctype:
            yield finding(
                document,
                f"'{link.key}' is a {target.doctype.value} document, "
                f"expected a {link.doctype.value}",
                field=path,
                code=TYPE_MISMATCH,
            )
