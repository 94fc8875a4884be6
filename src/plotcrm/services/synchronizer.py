"""Customer mutations against Firestore followed by search-index propagation.

Firestore is the source of truth. Every mutation commits there first, then the
normalized projection is written to (or removed from) the search index. An
index failure after a committed canonical write is surfaced as
:class:`IndexSyncError` and the canonical change stays in place; operators use
:meth:`CustomerSynchronizer.resync_customer` to retry.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from google.cloud import firestore
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_fixed

from plotcrm.normalization import CanonicalRecord, normalize_record
from plotcrm.observability import Observability, get_observability
from plotcrm.search.projector import index_key, project_record
from plotcrm.search.vertex_index import SearchIndexError
from plotcrm.services.firestore_store import STATUS_ACTIVE, STATUS_DELETED

if TYPE_CHECKING:
    from plotcrm.search.vertex_index import VertexSearchIndex
    from plotcrm.services.firestore_store import CustomerDocumentStore

LOGGER = logging.getLogger(__name__)

OPERATION_CREATE = "create"
OPERATION_UPDATE = "update"
OPERATION_DELETE = "delete"


class IndexSyncError(RuntimeError):
    """The canonical write committed but the index write did not.

    Attributes:
        storage_key: Firestore document id of the customer.
        object_id: Search index key that failed to update.
        operation: ``create``, ``update`` or ``delete``.
        attempts: Number of index attempts made.
    """

    def __init__(self, message: str, *, storage_key: str, object_id: str, operation: str, attempts: int) -> None:
        super().__init__(message)
        self.storage_key = storage_key
        self.object_id = object_id
        self.operation = operation
        self.attempts = attempts


@dataclass(slots=True)
class SyncResult:
    """Outcome of a synchronized customer mutation."""

    storage_key: str
    object_id: str
    operation: str
    record: CanonicalRecord
    index_attempts: int = 1


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _strip_none(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


class CustomerSynchronizer:
    """Applies customer create/update/delete to Firestore and the search index."""

    def __init__(
        self,
        store: "CustomerDocumentStore",
        index: "VertexSearchIndex",
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], str] = _now_iso,
        observability: Optional[Observability] = None,
    ) -> None:
        self._store = store
        self._index = index
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = max(0.0, retry_delay_seconds)
        self._sleep = sleep
        self._clock = clock
        self._obs = observability or get_observability(component="synchronizer")

    def create_customer(self, data: Mapping[str, Any]) -> SyncResult:
        """Create a customer and index it.

        A tracking number is allocated when ``data`` has none. ``status`` is
        always ``active`` and both timestamps are stamped with the current time.
        """

        payload = _strip_none(data)
        tracking_no = str(payload.get("trackingNo") or "").strip()
        if not tracking_no:
            tracking_no = self._store.next_tracking_no()
        now = self._clock()
        payload.update({"trackingNo": tracking_no, "status": STATUS_ACTIVE, "createdAt": now, "updatedAt": now})

        storage_key = self._store.create(payload)
        LOGGER.info("Created customer %s (trackingNo=%s)", storage_key, tracking_no)
        canonical = normalize_record(payload)
        return self._propagate(OPERATION_CREATE, storage_key, canonical)

    def update_customer(self, storage_key: str, data: Mapping[str, Any]) -> SyncResult:
        """Apply a partial update, re-read the committed document and re-index it.

        When the update changes the index key (a new ``trackingNo``), the entry
        under the previous key is removed after the new one is written.
        """

        previous_key = index_key(normalize_record(self._store.require(storage_key)), storage_key)
        payload = _strip_none(data)
        payload.pop("createdAt", None)
        payload["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._store.update(storage_key, payload)

        committed = self._store.require(storage_key)
        canonical = normalize_record(committed)
        result = self._propagate(OPERATION_UPDATE, storage_key, canonical)
        if previous_key != result.object_id:
            LOGGER.info("Index key for %s moved from %s to %s", storage_key, previous_key, result.object_id)
            self._with_retries(
                OPERATION_DELETE,
                storage_key,
                previous_key,
                lambda: self._index.delete_object(previous_key),
            )
        return result

    def delete_customer(self, storage_key: str) -> SyncResult:
        """Soft-delete the customer and remove its index entry."""

        current = self._store.require(storage_key)
        self._store.mark_deleted(storage_key, updated_at=firestore.SERVER_TIMESTAMP)
        LOGGER.info("Soft-deleted customer %s", storage_key)

        canonical = normalize_record({**current, "status": STATUS_DELETED})
        return self._propagate(OPERATION_DELETE, storage_key, canonical)

    def resync_customer(self, storage_key: str) -> SyncResult:
        """Re-apply the committed Firestore state of one customer to the index."""

        canonical = normalize_record(self._store.require(storage_key))
        operation = OPERATION_DELETE if canonical.status == STATUS_DELETED else OPERATION_UPDATE
        return self._propagate(operation, storage_key, canonical)

    def _propagate(self, operation: str, storage_key: str, canonical: CanonicalRecord) -> SyncResult:
        object_id = index_key(canonical, storage_key)
        if operation == OPERATION_DELETE or canonical.status == STATUS_DELETED:
            operation = OPERATION_DELETE
            attempts = self._with_retries(operation, storage_key, object_id, lambda: self._index.delete_object(object_id))
        else:
            document = project_record(canonical, storage_key).to_object()
            attempts = self._with_retries(operation, storage_key, object_id, lambda: self._index.save_objects([document]))
        return SyncResult(
            storage_key=storage_key,
            object_id=object_id,
            operation=operation,
            record=canonical,
            index_attempts=attempts,
        )

    def _with_retries(self, operation: str, storage_key: str, object_id: str, write: Callable[[], Any]) -> int:
        tags = {"operation": operation}
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_fixed(self._retry_delay),
            retry=retry_if_exception_type(SearchIndexError),
            sleep=self._sleep,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        started = time.perf_counter()
        try:
            for attempt in retrying:
                with attempt:
                    started = time.perf_counter()
                    write()
        except SearchIndexError as exc:
            self._obs.increment("sync.index_write", tags={**tags, "status": "failed"})
            self._obs.emit_event(
                "sync.index_write.failed",
                operation=operation,
                storage_key=storage_key,
                object_id=object_id,
                attempts=self._max_attempts,
                error=str(exc),
            )
            raise IndexSyncError(
                f"Index {operation} failed for {object_id} after {self._max_attempts} attempt(s): {exc}",
                storage_key=storage_key,
                object_id=object_id,
                operation=operation,
                attempts=self._max_attempts,
            ) from exc

        self._obs.record_timing("sync.index_write.duration", (time.perf_counter() - started) * 1000, tags=tags)
        self._obs.increment("sync.index_write", tags={**tags, "status": "success"})
        return attempt.retry_state.attempt_number


__all__ = [
    "CustomerSynchronizer",
    "IndexSyncError",
    "OPERATION_CREATE",
    "OPERATION_DELETE",
    "OPERATION_UPDATE",
    "SyncResult",
]
