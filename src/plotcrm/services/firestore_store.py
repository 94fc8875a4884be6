"""Firestore document store for customer records and related collections."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterator, Optional, Sequence, Set, Tuple

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from plotcrm.settings import FIRESTORE_MAX_BATCH

LOGGER = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_DELETED = "deleted"

_NUMERIC_TRACKING_NO = re.compile(r"^\d+$")


class DocumentStoreError(RuntimeError):
    """Raised when Firestore reads or writes fail."""


class CustomerNotFoundError(DocumentStoreError):
    """Raised when a customer document does not exist."""


class FirestoreCollectionStore:
    """Thin wrapper over one Firestore collection with batched writes."""

    def __init__(
        self,
        *,
        project: str | None = None,
        collection: str,
        database: str | None = None,
        batch_size: int = 450,
        client: Optional[firestore.Client] = None,
    ) -> None:
        if not collection:
            raise ValueError("FirestoreCollectionStore requires a collection name")
        if client is None:
            if not project:
                raise ValueError("FirestoreCollectionStore requires a project ID")
            client = firestore.Client(project=project, database=database) if database else firestore.Client(
                project=project
            )

        self._client = client
        self._collection_name = collection
        self._collection = self._client.collection(collection)
        self._batch_size = max(1, min(batch_size, FIRESTORE_MAX_BATCH))

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def sibling(self, collection: str) -> "FirestoreCollectionStore":
        """Return a store for another collection sharing this client."""

        return FirestoreCollectionStore(collection=collection, batch_size=self._batch_size, client=self._client)

    def create(self, payload: Dict[str, Any], *, document_id: str | None = None) -> str:
        """Write a new document and return its id (auto-assigned when omitted)."""

        doc_ref = self._collection.document(document_id) if document_id else self._collection.document()
        try:
            doc_ref.set(payload)
        except Exception as exc:
            LOGGER.exception("Firestore create failed in %s", self._collection_name)
            raise DocumentStoreError(f"Firestore create failed in {self._collection_name}: {exc}") from exc
        return doc_ref.id

    def update(self, document_id: str, payload: Dict[str, Any]) -> None:
        """Apply a partial update; missing documents raise :class:`CustomerNotFoundError`."""

        doc_ref = self._collection.document(document_id)
        try:
            doc_ref.update(payload)
        except gcp_exceptions.NotFound as exc:
            raise CustomerNotFoundError(f"Document {self._collection_name}/{document_id} not found") from exc
        except Exception as exc:
            LOGGER.exception("Firestore update failed for %s/%s", self._collection_name, document_id)
            raise DocumentStoreError(
                f"Firestore update failed for {self._collection_name}/{document_id}: {exc}"
            ) from exc

    def get(self, document_id: str) -> Dict[str, Any] | None:
        """Return the committed document data, or ``None`` when it does not exist."""

        try:
            snapshot = self._collection.document(document_id).get()
        except Exception as exc:
            raise DocumentStoreError(f"Firestore read failed for {self._collection_name}/{document_id}: {exc}") from exc
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    def require(self, document_id: str) -> Dict[str, Any]:
        """Like :meth:`get` but raises :class:`CustomerNotFoundError` for missing documents."""

        data = self.get(document_id)
        if data is None:
            raise CustomerNotFoundError(f"Document {self._collection_name}/{document_id} not found")
        return data

    def iter_documents(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """Stream ``(document_id, data)`` pairs for the whole collection."""

        for snapshot in self._collection.stream():
            yield snapshot.id, snapshot.to_dict() or {}

    def document_ids(self) -> Set[str]:
        """Return every document id in the collection without fetching field data."""

        return {snapshot.id for snapshot in self._collection.select([]).stream()}

    def count(self) -> int:
        """Authoritative document count via the aggregation API."""

        results = self._collection.count().get()
        return int(results[0][0].value) if results else 0

    def write_batch(self, documents: Sequence[Tuple[str, Dict[str, Any]]], *, merge: bool = False) -> int:
        """Set ``documents`` in batches of at most :attr:`batch_size` operations.

        Returns:
            Number of documents committed.
        """

        committed = 0
        for start in range(0, len(documents), self._batch_size):
            chunk = documents[start : start + self._batch_size]
            batch = self._client.batch()
            for document_id, payload in chunk:
                batch.set(self._collection.document(document_id), payload, merge=merge)
            try:
                batch.commit()
            except Exception as exc:
                LOGGER.exception("Firestore batch commit failed in %s", self._collection_name)
                raise DocumentStoreError(f"Firestore batch commit failed in {self._collection_name}: {exc}") from exc
            committed += len(chunk)
        return committed


class CustomerDocumentStore(FirestoreCollectionStore):
    """Customer collection with tracking-number allocation and soft deletes."""

    def next_tracking_no(self, *, scan_limit: int = 100) -> str:
        """Return the next numeric tracking number.

        Scans the highest ``scan_limit`` tracking numbers (lexicographic order)
        and returns the largest purely numeric value plus one.
        """

        query = self._collection.order_by("trackingNo", direction=firestore.Query.DESCENDING).limit(scan_limit)
        highest = 0
        for snapshot in query.stream():
            tracking_no = str((snapshot.to_dict() or {}).get("trackingNo") or "")
            if _NUMERIC_TRACKING_NO.match(tracking_no):
                highest = max(highest, int(tracking_no))
        return str(highest + 1)

    def mark_deleted(self, document_id: str, *, updated_at: Any) -> None:
        """Soft-delete a customer by setting ``status`` to ``deleted``."""

        self.update(document_id, {"status": STATUS_DELETED, "updatedAt": updated_at})


__all__ = [
    "CustomerDocumentStore",
    "CustomerNotFoundError",
    "DocumentStoreError",
    "FirestoreCollectionStore",
    "STATUS_ACTIVE",
    "STATUS_DELETED",
]
