"""In-memory stand-ins for the Firestore and Discovery Engine clients."""

from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.cloud import discoveryengine_v1beta as discoveryengine
from google.cloud import firestore

from plotcrm.search.vertex_index import SearchHit, SearchIndexError, SearchPage

SERVER_NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


class _FakeSnapshot:
    def __init__(self, doc_id: str, data: Optional[Dict[str, Any]]) -> None:
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data)


class _FakeDocumentReference:
    def __init__(self, collection: "_FakeCollectionReference", doc_id: str) -> None:
        self._collection = collection
        self.id = doc_id

    @property
    def _docs(self) -> Dict[str, Dict[str, Any]]:
        return self._collection.docs

    def set(self, payload: Mapping[str, Any], merge: bool = False) -> None:
        resolved = self._collection.client.resolve(payload)
        if merge and self.id in self._docs:
            self._docs[self.id].update(resolved)
        else:
            self._docs[self.id] = resolved

    def update(self, payload: Mapping[str, Any]) -> None:
        if self.id not in self._docs:
            raise gcp_exceptions.NotFound(f"No document to update: {self.id}")
        self._docs[self.id].update(self._collection.client.resolve(payload))

    def get(self) -> _FakeSnapshot:
        return _FakeSnapshot(self.id, self._docs.get(self.id))

    def delete(self) -> None:
        self._docs.pop(self.id, None)


class _FakeQuery:
    def __init__(self, collection: "_FakeCollectionReference") -> None:
        self._collection = collection
        self._order: Optional[tuple[str, str]] = None
        self._limit: Optional[int] = None

    def order_by(self, field: str, direction: str = firestore.Query.ASCENDING) -> "_FakeQuery":
        self._order = (field, direction)
        return self

    def limit(self, count: int) -> "_FakeQuery":
        self._limit = count
        return self

    def stream(self):
        items = list(self._collection.docs.items())
        if self._order:
            field, direction = self._order
            items = [item for item in items if field in item[1]]
            items.sort(key=lambda item: item[1][field], reverse=direction == firestore.Query.DESCENDING)
        if self._limit is not None:
            items = items[: self._limit]
        for doc_id, data in items:
            yield _FakeSnapshot(doc_id, data)


class _FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self.client = client
        self.name = name

    @property
    def docs(self) -> Dict[str, Dict[str, Any]]:
        return self.client.data.setdefault(self.name, {})

    def document(self, doc_id: Optional[str] = None) -> _FakeDocumentReference:
        if doc_id is None:
            self.client.auto_ids += 1
            doc_id = f"auto{self.client.auto_ids:04d}"
        return _FakeDocumentReference(self, doc_id)

    def stream(self):
        if self.name in self.client.unreadable:
            raise gcp_exceptions.PermissionDenied(f"cannot read {self.name}")
        return _FakeQuery(self).stream()

    def order_by(self, field: str, direction: str = firestore.Query.ASCENDING) -> _FakeQuery:
        return _FakeQuery(self).order_by(field, direction=direction)

    def select(self, field_paths: Sequence[str]) -> _FakeQuery:
        return _FakeQuery(self)

    def count(self):
        if self.name in self.client.unreadable:
            raise gcp_exceptions.PermissionDenied(f"cannot read {self.name}")
        total = len(self.docs)
        return SimpleNamespace(get=lambda: [[SimpleNamespace(value=total)]])


class _FakeBatch:
    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: List[tuple[str, _FakeDocumentReference, Dict[str, Any], bool]] = []

    def set(self, doc_ref: _FakeDocumentReference, payload: Dict[str, Any], merge: bool = False) -> None:
        self._operations.append(("set", doc_ref, payload, merge))

    def update(self, doc_ref: _FakeDocumentReference, payload: Dict[str, Any]) -> None:
        self._operations.append(("update", doc_ref, payload, False))

    def commit(self) -> None:
        index = len(self._client.commits)
        if index in self._client.fail_commits:
            self._client.commits.append([])
            raise gcp_exceptions.ServiceUnavailable("commit-failed")
        for kind, doc_ref, payload, merge in self._operations:
            if kind == "set":
                doc_ref.set(payload, merge=merge)
            else:
                doc_ref.update(payload)
        self._client.commits.append([(doc_ref.id, payload) for _, doc_ref, payload, _ in self._operations])
        self._operations = []


class FakeFirestoreClient:
    """Dictionary-backed Firestore client covering the calls the stores make."""

    def __init__(self, data: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None) -> None:
        self.data: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(data or {})
        self.commits: List[List[tuple[str, Dict[str, Any]]]] = []
        self.fail_commits: set[int] = set()
        self.unreadable: set[str] = set()
        self.auto_ids = 0

    def collection(self, name: str) -> _FakeCollectionReference:
        return _FakeCollectionReference(self, name)

    def batch(self) -> _FakeBatch:
        return _FakeBatch(self)

    def resolve(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            key: SERVER_NOW if value is firestore.SERVER_TIMESTAMP else copy.deepcopy(value)
            for key, value in payload.items()
        }


class _FakeOperation:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self._response = response or SimpleNamespace(error_samples=[])
        self._error = error

    def result(self, timeout: int | None = None) -> Any:
        if self._error is not None:
            raise self._error
        return self._response


class FakeDocumentServiceClient:
    """Records import/delete requests and keeps imported documents by id."""

    def __init__(self) -> None:
        self.requests: List[discoveryengine.ImportDocumentsRequest] = []
        self.deleted: List[str] = []
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.import_errors: List[Exception] = []
        self.error_samples: List[Any] = []
        self.delete_error: Exception | None = None

    def branch_path(self, *, project: str, location: str, data_store: str, branch: str) -> str:
        return f"projects/{project}/locations/{location}/dataStores/{data_store}/branches/{branch}"

    def document_path(self, *, project: str, location: str, data_store: str, branch: str, document: str) -> str:
        return f"{self.branch_path(project=project, location=location, data_store=data_store, branch=branch)}/documents/{document}"

    def import_documents(self, request: discoveryengine.ImportDocumentsRequest) -> _FakeOperation:
        self.requests.append(request)
        if self.import_errors:
            return _FakeOperation(error=self.import_errors.pop(0))
        for document in request.inline_source.documents:
            self.documents[document.id] = json.loads(document.json_data)
        return _FakeOperation(SimpleNamespace(error_samples=list(self.error_samples)))

    def delete_document(self, *, name: str, timeout: int | None = None) -> None:
        self.deleted.append(name)
        if self.delete_error is not None:
            raise self.delete_error


class FakeSearchServiceClient:
    """Returns canned documents for every search request."""

    def __init__(self, documents: Sequence[Mapping[str, Any]] = (), total_size: int | None = None) -> None:
        self.documents = [dict(document) for document in documents]
        self.total_size = total_size
        self.requests: List[discoveryengine.SearchRequest] = []

    def serving_config_path(self, *, project: str, location: str, data_store: str, serving_config: str) -> str:
        return f"projects/{project}/locations/{location}/dataStores/{data_store}/servingConfigs/{serving_config}"

    def search(self, request: discoveryengine.SearchRequest) -> SimpleNamespace:
        self.requests.append(request)
        results = [
            discoveryengine.SearchResponse.SearchResult(
                id=str(document["objectID"]),
                document=discoveryengine.Document(
                    id=str(document["objectID"]),
                    json_data=json.dumps(document, ensure_ascii=False),
                ),
            )
            for document in self.documents[: request.page_size]
        ]
        total = self.total_size if self.total_size is not None else len(self.documents)
        return SimpleNamespace(results=results, total_size=total, next_page_token="")


class FakeSchemaServiceClient:
    def __init__(self) -> None:
        self.requests: List[discoveryengine.UpdateSchemaRequest] = []

    def schema_path(self, *, project: str, location: str, data_store: str, schema: str) -> str:
        return f"projects/{project}/locations/{location}/dataStores/{data_store}/schemas/{schema}"

    def update_schema(self, request: discoveryengine.UpdateSchemaRequest) -> _FakeOperation:
        self.requests.append(request)
        return _FakeOperation()


class FakeSearchIndex:
    """Index double with per-call failure injection for synchronizer tests."""

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.saved_batches: List[List[Dict[str, Any]]] = []
        self.deleted: List[str] = []
        self.failures: List[bool] = []
        self.settings_applied = 0
        self.hits: List[Dict[str, Any]] = []
        self.queries: List[str] = []

    def _maybe_fail(self) -> None:
        if self.failures and self.failures.pop(0):
            raise SearchIndexError("index unavailable")

    def save_objects(self, objects: Sequence[Mapping[str, Any]]) -> int:
        self._maybe_fail()
        batch = [dict(item) for item in objects]
        self.saved_batches.append(batch)
        for item in batch:
            self.objects[item["objectID"]] = item
        return len(batch)

    def delete_object(self, object_id: str) -> None:
        self._maybe_fail()
        self.deleted.append(object_id)
        self.objects.pop(object_id, None)

    def apply_settings(self) -> Dict[str, Any]:
        self.settings_applied += 1
        return {"properties": {}}

    def search(self, query: str, *, page_size: int = 20, **_: Any) -> SearchPage:
        self.queries.append(query)
        hits = [
            SearchHit(object_id=str(record.get("objectID")), rank=rank, record=dict(record))
            for rank, record in enumerate(self.hits[:page_size], start=1)
        ]
        return SearchPage(query=query, hits=hits, total_hits=len(self.hits), processing_time_ms=3)


class RecordingObservability:
    def __init__(self) -> None:
        self.events: List[tuple[str, Dict[str, Any]]] = []
        self.counters: List[tuple[str, float, Dict[str, str] | None]] = []

    def emit_event(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, str] | None = None) -> None:
        self.counters.append((metric, value, dict(tags) if tags else None))

    def record_timing(self, metric: str, value_ms: float, *, tags: Mapping[str, str] | None = None) -> None:
        return None


@pytest.fixture
def firestore_client() -> FakeFirestoreClient:
    return FakeFirestoreClient()


@pytest.fixture
def fake_index() -> FakeSearchIndex:
    return FakeSearchIndex()


@pytest.fixture
def observability() -> RecordingObservability:
    return RecordingObservability()


@pytest.fixture
def firestore_factory():
    return FakeFirestoreClient


@pytest.fixture
def vertex_clients() -> SimpleNamespace:
    return SimpleNamespace(
        documents=FakeDocumentServiceClient(),
        search=FakeSearchServiceClient(),
        schema=FakeSchemaServiceClient(),
    )
