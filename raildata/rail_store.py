"""
Document store: owns all documents of one load and their key index.

Documents live in a dense tuple; a document's identifier is its position.
Identifiers follow input order, so loading the same input twice yields the
same identifiers regardless of how many parse workers were used.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from .rail_config import DEFAULT_CONFIG, RailConfig
from .rail_errors import DocumentNotFound, DuplicateKeyError, LoadError, RailDataError
from .rail_findings import Finding
from .rail_index import KeyIndex
from .rail_model import Document, Link
from .rail_parser import RawRecord, parse_record

logger = logging.getLogger(__name__)


class Backlink(NamedTuple):
    """An incoming link: which document links here and through which field."""

    source: int
    field: str
    link: Link


class Store:
    """
    Immutable snapshot of all documents of one load.

    Args:
        documents: The documents; identifiers are their positions.
        index: A frozen index for exactly these keys. Built when omitted.
        resolved: Whether references have been resolved into links.
        findings: Findings recorded while resolving.
    """

    def __init__(
        self,
        documents: Sequence[Document],
        *,
        index: Optional[KeyIndex] = None,
        resolved: bool = False,
        findings: Iterable[Finding] = (),
    ):
        self._documents: Tuple[Document, ...] = tuple(documents)
        if index is None:
            index = KeyIndex.build(
                (document.key, doc_id) for doc_id, document in enumerate(self._documents)
            )
        self._index = index
        self._resolved = resolved
        self._findings: Tuple[Finding, ...] = tuple(findings)
        self._backlinks = self._build_backlinks()

    def _build_backlinks(self) -> Dict[int, Tuple[Backlink, ...]]:
        incoming: Dict[int, List[Backlink]] = {}
        for doc_id, document in enumerate(self._documents):
            for path, link in document.links():
                incoming.setdefault(link.target, []).append(Backlink(doc_id, path, link))
        return {target: tuple(links) for target, links in incoming.items()}

    # === Access ===

    @property
    def documents(self) -> Tuple[Document, ...]:
        return self._documents

    @property
    def index(self) -> KeyIndex:
        return self._index

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def findings(self) -> Tuple[Finding, ...]:
        """Findings recorded while resolving this store."""
        return self._findings

    def get(self, doc_id: int) -> Document:
        """Return the document with the given identifier."""
        if not 0 <= doc_id < len(self._documents):
            raise DocumentNotFound(doc_id)
        return self._documents[doc_id]

    def lookup(self, key: str) -> Optional[int]:
        """Return the identifier for key, or None."""
        return self._index.lookup(key)

    def get_by_key(self, key: str) -> Document:
        doc_id = self._index.lookup(key)
        if doc_id is None:
            raise DocumentNotFound(key)
        return self._documents[doc_id]

    def find_by_prefix(self, prefix: str) -> Iterator[Tuple[str, int]]:
        return self._index.find_by_prefix(prefix)

    def backlinks(self, doc_id: int) -> Tuple[Backlink, ...]:
        """All links pointing at doc_id, in source identifier order."""
        return self._backlinks.get(doc_id, ())

    def __iter__(self) -> Iterator[Document]:
        return iter(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def items(self) -> Iterator[Tuple[int, Document]]:
        return enumerate(self._documents)

    def __eq__(self, other):
        if not isinstance(other, Store):
            return NotImplemented
        return (
            self._documents == other._documents
            and self._resolved == other._resolved
            and self._findings == other._findings
        )

    __hash__ = None

    def __repr__(self) -> str:
        state = "resolved" if self._resolved else "unresolved"
        return f"<Store {len(self._documents)} documents, {state}>"

    def derive(
        self,
        documents: Sequence[Document],
        *,
        resolved: bool,
        findings: Iterable[Finding] = (),
    ) -> "Store":
        """
        A new store with rewritten documents but the same keys.

        The key index is shared, so documents must keep their keys and
        positions.
        """
        return Store(documents, index=self._index, resolved=resolved, findings=findings)


def load_store(
    records: Iterable[RawRecord], config: Optional[RailConfig] = None
) -> Store:
    """
    Parse raw records and build a store.

    Records are parsed on a thread pool, results are collected in input
    order, and identifiers are assigned in that order afterwards.

    Args:
        records: The raw records, in a deterministic order.
        config: Run configuration; DEFAULT_CONFIG when omitted.

    Returns:
        An unresolved Store.

    Raises:
        LoadError: Carrying every StructuralParseError and then every
            DuplicateKeyError of the input. No store is built.
    """
    config = config or DEFAULT_CONFIG
    records = list(records)
    logger.info(
        "Parsing %d records with %d workers", len(records), config.parse_workers
    )
    with ThreadPoolExecutor(
        max_workers=config.parse_workers, thread_name_prefix="raildata-parse"
    ) as pool:
        results = list(pool.map(parse_record, records))

    errors: List[RailDataError] = [error for result in results for error in result.errors]
    documents = [result.document for result in results if result.document is not None]

    index = KeyIndex()
    for doc_id, document in enumerate(documents):
        try:
            index.insert(document.key, doc_id, document.origin)
        except DuplicateKeyError as e:
            errors.append(e)
    index.freeze()

    if errors:
        logger.error("Load failed with %d error(s)", len(errors))
        raise LoadError(errors)
    logger.info("Loaded %d documents", len(documents))
    return Store(documents, index=index)
