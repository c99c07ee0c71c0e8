"""Document store contract and the in-memory implementation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Protocol, Sequence

from knowpack.errors import DocumentNotFound, PackNotFound
from knowpack.models import EPOCH, Document, as_utc
from knowpack.text import normalize_slug, tokenize, tokenize_all


@dataclass(frozen=True)
class PackSummary:
    """Overview of a pack held by a store."""

    name: str
    document_count: int
    topics: Sequence[str]


class DocumentStore(Protocol):
    """Read-only access to knowledge document versions."""

    def fetch_candidates(
        self,
        pack: str,
        topic_hint: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> Sequence[Document]:
        """Return non-deleted versions in ``pack`` loosely matching the filters."""

    def get(self, document_id: str) -> Document:
        """Return one version by explicit id."""

    def list_packs(self) -> Sequence[PackSummary]:
        """Return an overview of every known pack."""


def _version_key(document: Document) -> tuple:
    return (as_utc(document.last_updated) or EPOCH, document.document_id)


def matches_filters(document: Document, topic_hint: str | None, tags: frozenset[str]) -> bool:
    """Loose candidate match: tag intersection or topic keyword/substring hit."""

    if not topic_hint and not tags:
        return True
    if tags and {tag.casefold() for tag in document.tags} & tags:
        return True
    if topic_hint:
        hint = topic_hint.casefold().strip()
        topic = document.topic.casefold()
        if hint and (hint in topic or topic in hint):
            return True
        hint_tokens = tokenize(topic_hint)
        doc_tokens = tokenize(document.topic, document.slug) | tokenize_all(document.tags)
        if hint_tokens & doc_tokens:
            return True
    return False


class InMemoryDocumentStore:
    """Document store over a fixed collection of versions.

    The store is immutable after construction, so concurrent readers need no
    locking. Several stores (tenants) can coexist; nothing is module-global.
    """

    def __init__(self, documents: Iterable[Document] = ()) -> None:
        by_id: dict[str, Document] = {}
        by_pack: defaultdict[str, list[Document]] = defaultdict(list)
        for document in documents:
            if document.document_id in by_id:
                raise ValueError(f"Duplicate document id: {document.document_id}")
            by_id[document.document_id] = document
            by_pack[document.pack].append(document)
        self._by_id: Mapping[str, Document] = by_id
        self._by_pack: Mapping[str, tuple[Document, ...]] = {
            pack: tuple(sorted(docs, key=_version_key)) for pack, docs in by_pack.items()
        }

    def __len__(self) -> int:
        return len(self._by_id)

    def packs(self) -> Sequence[str]:
        return sorted(self._by_pack)

    def fetch_candidates(
        self,
        pack: str,
        topic_hint: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> Sequence[Document]:
        documents = self._pack_documents(pack)
        tag_filter = frozenset(tag.casefold() for tag in (tags or ()))
        return [
            document
            for document in documents
            if not document.deleted and matches_filters(document, topic_hint, tag_filter)
        ]

    def get(self, document_id: str) -> Document:
        try:
            return self._by_id[document_id]
        except KeyError:
            raise DocumentNotFound(document_id) from None

    def versions(self, pack: str, topic: str) -> Sequence[Document]:
        """All non-deleted versions of one article, oldest first."""

        slug = normalize_slug(topic)
        return [
            document
            for document in self._pack_documents(pack)
            if not document.deleted and normalize_slug(document.slug or document.topic) == slug
        ]

    def current(self, pack: str, topic: str) -> Document:
        """The version with the latest ``last_updated``."""

        versions = self.versions(pack, topic)
        if not versions:
            raise DocumentNotFound(f"{pack}/{normalize_slug(topic)}")
        return versions[-1]

    def list_packs(self) -> Sequence[PackSummary]:
        summaries: list[PackSummary] = []
        for pack in self.packs():
            live = [doc for doc in self._by_pack[pack] if not doc.deleted]
            topics = sorted({doc.topic for doc in live})
            summaries.append(PackSummary(name=pack, document_count=len(live), topics=topics))
        return summaries

    def _pack_documents(self, pack: str) -> Sequence[Document]:
        documents = self._by_pack.get(pack)
        if not documents:
            raise PackNotFound(pack)
        return documents
