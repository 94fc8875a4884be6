"""Chunked index backfill and Firestore collection migration."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from itertools import islice
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from google.api_core import exceptions as gcp_exceptions

from plotcrm.normalization import normalize_record
from plotcrm.observability import Observability, get_observability
from plotcrm.search.projector import project_record
from plotcrm.search.vertex_index import SearchIndexError
from plotcrm.services.firestore_store import STATUS_DELETED, DocumentStoreError

if TYPE_CHECKING:
    from plotcrm.search.vertex_index import VertexSearchIndex
    from plotcrm.services.firestore_store import FirestoreCollectionStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"

DEFAULT_MIGRATION_COLLECTIONS: tuple[str, ...] = (
    "Customers",
    "Deals",
    "TreeBurialDeals",
    "BurialPersons",
    "Activities",
    "Relationships",
    "ConstructionProjects",
    "DealProducts",
    "GeneralSalesDeals",
    "Masters",
    "TrackingNoCounter",
    "Branches",
    "Employees",
    "PlotTypes",
    "RelationshipTypes",
    "StoneTypes",
)


@dataclass(slots=True)
class ChunkOutcome:
    """Result of one committed (or failed) chunk."""

    index: int
    source: int
    migrated: int = 0
    skipped: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class CollectionSyncSummary:
    """Per-collection tally across all chunks."""

    collection: str
    source: int
    migrated: int
    skipped: int
    failed_chunks: int
    status: str
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """Yield lists of at most ``size`` items, consuming ``items`` lazily."""

    if size < 1:
        raise ValueError("chunk size must be positive")
    iterator = iter(items)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


def summarize(
    collection: str,
    outcomes: Sequence[ChunkOutcome],
    *,
    source: int | None = None,
    dry_run: bool = False,
) -> CollectionSyncSummary:
    """Fold chunk outcomes into a summary.

    ``status`` is ``success`` when no chunk failed, ``error`` when every chunk
    failed and ``partial`` otherwise.
    """

    failed = [outcome for outcome in outcomes if outcome.failed]
    if not failed:
        status = STATUS_SUCCESS
    elif len(failed) == len(outcomes):
        status = STATUS_ERROR
    else:
        status = STATUS_PARTIAL
    return CollectionSyncSummary(
        collection=collection,
        source=source if source is not None else sum(outcome.source for outcome in outcomes),
        migrated=sum(outcome.migrated for outcome in outcomes),
        skipped=sum(outcome.skipped for outcome in outcomes),
        failed_chunks=len(failed),
        status=status,
        dry_run=dry_run,
        errors=[outcome.error for outcome in failed if outcome.error],
    )


class BulkSynchronizer:
    """Sequential chunk processing over the customer collection and its siblings."""

    def __init__(
        self,
        store: "FirestoreCollectionStore",
        index: Optional["VertexSearchIndex"] = None,
        *,
        index_batch_size: int = 1000,
        observability: Optional[Observability] = None,
    ) -> None:
        self._store = store
        self._index = index
        self._index_batch_size = max(1, index_batch_size)
        self._obs = observability or get_observability(component="bulk_sync")

    def backfill_index(self, *, dry_run: bool = False) -> Iterator[ChunkOutcome]:
        """Project every customer into the index, one chunk at a time.

        Soft-deleted customers are skipped. Each yielded chunk is fully
        committed before the next one is read, so a caller that stops
        iterating leaves a complete prefix indexed.
        """

        if self._index is None and not dry_run:
            raise RuntimeError("backfill_index requires a search index")

        documents = self._store.iter_documents()
        for chunk_index, chunk in enumerate(chunked(documents, self._index_batch_size)):
            objects: List[Dict[str, Any]] = []
            skipped = 0
            for storage_key, data in chunk:
                canonical = normalize_record(data)
                if canonical.status == STATUS_DELETED:
                    skipped += 1
                    continue
                objects.append(project_record(canonical, storage_key).to_object())

            outcome = ChunkOutcome(index=chunk_index, source=len(chunk), skipped=skipped)
            if objects and not dry_run:
                try:
                    outcome.migrated = self._index.save_objects(objects)
                except SearchIndexError as exc:
                    outcome.error = str(exc)
                    LOGGER.error("Backfill chunk %d failed: %s", chunk_index, exc)
            self._record_chunk("backfill", self._store.collection_name, outcome)
            yield outcome

    def iter_migration(
        self,
        collection: str,
        destination: "FirestoreCollectionStore",
        *,
        skip_existing: bool = False,
    ) -> Iterator[ChunkOutcome]:
        """Copy ``collection`` into ``destination``'s project chunk by chunk, keeping document ids."""

        source_store = self._store.sibling(collection)
        target_store = destination.sibling(collection)
        existing = target_store.document_ids() if skip_existing else set()
        if skip_existing:
            LOGGER.info("%s: %d document(s) already present in destination", collection, len(existing))

        for chunk_index, chunk in enumerate(chunked(source_store.iter_documents(), target_store.batch_size)):
            pending = [(doc_id, data) for doc_id, data in chunk if doc_id not in existing]
            outcome = ChunkOutcome(index=chunk_index, source=len(chunk), skipped=len(chunk) - len(pending))
            if pending:
                try:
                    outcome.migrated = target_store.write_batch(pending)
                except DocumentStoreError as exc:
                    outcome.error = str(exc)
                    LOGGER.error("%s: migration chunk %d failed: %s", collection, chunk_index, exc)
            self._record_chunk("migrate", collection, outcome)
            yield outcome

    def migrate_collection(
        self,
        collection: str,
        destination: "FirestoreCollectionStore",
        *,
        dry_run: bool = False,
        skip_existing: bool = False,
    ) -> CollectionSyncSummary:
        """Migrate one collection and summarize the chunks.

        A dry run only counts the source documents.
        """

        source_count = self._store.sibling(collection).count()
        LOGGER.info("%s: %d source document(s)", collection, source_count)
        if source_count == 0 or dry_run:
            return summarize(collection, [], source=source_count, dry_run=dry_run)

        outcomes = list(self.iter_migration(collection, destination, skip_existing=skip_existing))
        summary = summarize(collection, outcomes, source=source_count)
        LOGGER.info(
            "%s: %d migrated, %d skipped, %d failed chunk(s)",
            collection,
            summary.migrated,
            summary.skipped,
            summary.failed_chunks,
        )
        return summary

    def migrate_collections(
        self,
        destination: "FirestoreCollectionStore",
        collections: Sequence[str] = DEFAULT_MIGRATION_COLLECTIONS,
        *,
        dry_run: bool = False,
        skip_existing: bool = False,
    ) -> List[CollectionSyncSummary]:
        """Migrate each collection in turn; a collection that cannot be read is reported as ``error``."""

        summaries: List[CollectionSyncSummary] = []
        for collection in collections:
            try:
                summary = self.migrate_collection(
                    collection,
                    destination,
                    dry_run=dry_run,
                    skip_existing=skip_existing,
                )
            except (DocumentStoreError, gcp_exceptions.GoogleAPIError) as exc:
                LOGGER.exception("%s: migration failed", collection)
                summary = CollectionSyncSummary(
                    collection=collection,
                    source=0,
                    migrated=0,
                    skipped=0,
                    failed_chunks=0,
                    status=STATUS_ERROR,
                    dry_run=dry_run,
                    errors=[str(exc)],
                )
            summaries.append(summary)
            self._obs.emit_event("bulk_sync.collection", **summary.as_dict())
        return summaries

    def apply_index_settings(self) -> Dict[str, Any]:
        """Push the configured attribute settings to the index schema."""

        if self._index is None:
            raise RuntimeError("apply_index_settings requires a search index")
        return self._index.apply_settings()

    def _record_chunk(self, job: str, collection: str, outcome: ChunkOutcome) -> None:
        tags = {"job": job, "collection": collection, "status": "failed" if outcome.failed else "success"}
        self._obs.increment("bulk_sync.chunks", tags=tags)
        if outcome.migrated:
            self._obs.increment("bulk_sync.documents", value=outcome.migrated, tags=tags)


__all__ = [
    "BulkSynchronizer",
    "ChunkOutcome",
    "CollectionSyncSummary",
    "DEFAULT_MIGRATION_COLLECTIONS",
    "STATUS_ERROR",
    "STATUS_PARTIAL",
    "STATUS_SUCCESS",
    "chunked",
    "summarize",
]
