"""Vertex AI Search backed customer index."""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from google.api_core import exceptions as gcp_exceptions
from google.cloud import discoveryengine_v1beta as discoveryengine
from google.protobuf import json_format

from plotcrm.search.projector import fold_kana

LOGGER = logging.getLogger(__name__)

# Inline import requests accept at most 100 documents.
MAX_IMPORT_DOCUMENTS = 100
MAX_PAGE_SIZE = 100

BOOLEAN_ATTRIBUTES = frozenset({"hasDeals", "hasTreeBurialDeals", "hasBurialPersons"})

HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"


class SearchIndexError(RuntimeError):
    """Raised when the search index rejects a write, delete or query."""


@dataclass(slots=True)
class SearchHit:
    """One ranked hit with its retrieved attributes."""

    object_id: str
    rank: int
    record: Dict[str, Any]
    highlights: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class SearchPage:
    """A page of hits plus response metadata."""

    query: str
    hits: List[SearchHit]
    total_hits: int
    processing_time_ms: int
    next_page_token: str = ""


def _convert_struct(value: Any) -> Any:
    """Recursively convert protobuf Structs to standard Python types."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if hasattr(value, "items"):
        return {key: _convert_struct(child) for key, child in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_convert_struct(item) for item in value]
    return value


def _fold_for_match(value: str) -> str:
    # Characters whose lowercase form is longer (e.g. "İ") stay as-is to keep offsets aligned.
    lowered = "".join(char.lower() if len(char.lower()) == 1 else char for char in value)
    return fold_kana(lowered)


def highlight_value(text: str, query: str) -> str:
    """Wrap every occurrence of each query term in ``text`` with ``<em>`` tags.

    Matching is case-insensitive and kana-folded; folding maps characters
    one-to-one, so offsets in the folded text are offsets in ``text``.
    """

    terms = [_fold_for_match(term) for term in query.split() if term]
    if not text or not terms:
        return text
    folded = _fold_for_match(text)
    pattern = re.compile("|".join(re.escape(term) for term in sorted(set(terms), key=len, reverse=True)))
    pieces: List[str] = []
    cursor = 0
    for match in pattern.finditer(folded):
        start, end = match.span()
        pieces.append(text[cursor:start])
        pieces.append(f"{HIGHLIGHT_PRE_TAG}{text[start:end]}{HIGHLIGHT_POST_TAG}")
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


def build_index_document(payload: Mapping[str, Any]) -> discoveryengine.Document:
    """Convert an index object (keyed by ``objectID``) into a Vertex document."""

    object_id = str(payload.get("objectID") or "").strip()
    if not object_id:
        raise SearchIndexError("Index objects require an objectID")
    document = discoveryengine.Document()
    document.id = object_id
    document.json_data = json.dumps(dict(payload), ensure_ascii=False)
    return document


def build_index_schema(
    *,
    attributes: Sequence[str],
    searchable: Sequence[str],
    faceting: Sequence[str],
) -> Dict[str, Any]:
    """JSON schema describing how each index attribute is stored and queried."""

    properties: Dict[str, Any] = {}
    for name in dict.fromkeys([*attributes, *searchable, *faceting]):
        properties[name] = {
            "type": "boolean" if name in BOOLEAN_ATTRIBUTES else "string",
            "retrievable": True,
            "indexable": name in faceting,
            "dynamicFacetable": name in faceting,
        }
        if name not in BOOLEAN_ATTRIBUTES:
            properties[name]["searchable"] = name in searchable
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": properties,
    }


class VertexSearchIndex:
    """Wraps the Discovery Engine document, search and schema clients."""

    def __init__(
        self,
        *,
        project: str,
        location: str,
        data_store_id: str,
        branch: str = "default_branch",
        serving_config: str = "default_search",
        searchable_attributes: Sequence[str] = (),
        attributes_to_retrieve: Sequence[str] = (),
        attributes_to_highlight: Sequence[str] = (),
        attributes_for_faceting: Sequence[str] = (),
        typo_tolerance: bool = True,
        hits_per_page: int = 100,
        timeout_seconds: int = 60,
        document_client: Optional[discoveryengine.DocumentServiceClient] = None,
        search_client: Optional[discoveryengine.SearchServiceClient] = None,
        schema_client: Optional[discoveryengine.SchemaServiceClient] = None,
    ) -> None:
        if not project or not data_store_id:
            raise ValueError("VertexSearchIndex requires both project and data_store_id")

        self._project = project
        self._location = location
        self._data_store_id = data_store_id
        self._branch = branch
        self._document_client = document_client or discoveryengine.DocumentServiceClient()
        self._search_client = search_client or discoveryengine.SearchServiceClient()
        self._schema_client = schema_client
        self._parent = self._document_client.branch_path(
            project=project,
            location=location,
            data_store=data_store_id,
            branch=branch,
        )
        self._serving_config = self._search_client.serving_config_path(
            project=project,
            location=location,
            data_store=data_store_id,
            serving_config=serving_config or "default_search",
        )
        self._searchable = list(searchable_attributes)
        self._retrieve = list(attributes_to_retrieve)
        self._highlight = list(attributes_to_highlight)
        self._faceting = list(attributes_for_faceting)
        self._typo_tolerance = typo_tolerance
        self._hits_per_page = max(1, min(hits_per_page, MAX_PAGE_SIZE))
        self._timeout = max(timeout_seconds, 1)
        self._reconcile_mode = discoveryengine.ImportDocumentsRequest.ReconciliationMode.INCREMENTAL

    def save_objects(self, objects: Sequence[Mapping[str, Any]]) -> int:
        """Upsert index objects keyed by ``objectID``.

        Returns:
            Number of objects written.

        Raises:
            SearchIndexError: When any import request fails or reports errors.
        """

        documents = [build_index_document(payload) for payload in objects]
        for start in range(0, len(documents), MAX_IMPORT_DOCUMENTS):
            chunk = documents[start : start + MAX_IMPORT_DOCUMENTS]
            request = discoveryengine.ImportDocumentsRequest(
                parent=self._parent,
                inline_source=discoveryengine.ImportDocumentsRequest.InlineSource(documents=chunk),
                reconciliation_mode=self._reconcile_mode,
            )
            try:
                operation = self._document_client.import_documents(request=request)
                response = operation.result(timeout=self._timeout)
            except Exception as exc:
                raise SearchIndexError(f"Vertex import failed for {len(chunk)} document(s): {exc}") from exc

            samples = list(getattr(response, "error_samples", None) or [])
            if samples:
                details = []
                for sample in samples[:3]:
                    try:
                        details.append(json_format.MessageToJson(sample))
                    except Exception:
                        details.append(str(sample))
                LOGGER.warning("Vertex import reported %d error sample(s)", len(samples))
                raise SearchIndexError(f"Vertex import reported errors: {'; '.join(details)}")
        return len(documents)

    def save_object(self, payload: Mapping[str, Any]) -> None:
        self.save_objects([payload])

    def delete_object(self, object_id: str) -> None:
        """Remove one document; a document that is already gone counts as deleted."""

        name = self._document_client.document_path(
            project=self._project,
            location=self._location,
            data_store=self._data_store_id,
            branch=self._branch,
            document=object_id,
        )
        try:
            self._document_client.delete_document(name=name, timeout=self._timeout)
        except gcp_exceptions.NotFound:
            LOGGER.info("Vertex document %s already absent", object_id)
        except Exception as exc:
            raise SearchIndexError(f"Vertex delete failed for document_id={object_id}: {exc}") from exc

    def search(
        self,
        query: str,
        *,
        page_size: int | None = None,
        page_token: str | None = None,
        filter_expression: str | None = None,
    ) -> SearchPage:
        """Run a free-text query and return one ranked page of hits."""

        request = discoveryengine.SearchRequest(
            serving_config=self._serving_config,
            query=query or "",
            page_size=max(1, min(page_size or self._hits_per_page, MAX_PAGE_SIZE)),
        )
        if page_token:
            request.page_token = page_token
        if filter_expression:
            request.filter = filter_expression
        mode = (
            discoveryengine.SearchRequest.SpellCorrectionSpec.Mode.AUTO
            if self._typo_tolerance
            else discoveryengine.SearchRequest.SpellCorrectionSpec.Mode.SUGGESTION_ONLY
        )
        request.spell_correction_spec = discoveryengine.SearchRequest.SpellCorrectionSpec(mode=mode)

        started = time.perf_counter()
        try:
            response = self._search_client.search(request=request)
            results = list(response.results)
        except Exception as exc:
            raise SearchIndexError(f"Vertex search failed: {exc}") from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        hits = [self._to_hit(rank, result, query or "") for rank, result in enumerate(results, start=1)]
        return SearchPage(
            query=query or "",
            hits=hits,
            total_hits=int(getattr(response, "total_size", 0) or len(hits)),
            processing_time_ms=elapsed_ms,
            next_page_token=getattr(response, "next_page_token", "") or "",
        )

    def apply_settings(self) -> Dict[str, Any]:
        """Push searchable, retrievable and facetable flags to the data store schema."""

        schema = build_index_schema(
            attributes=self._retrieve,
            searchable=self._searchable,
            faceting=self._faceting,
        )
        client = self._schema_client or discoveryengine.SchemaServiceClient()
        name = client.schema_path(
            project=self._project,
            location=self._location,
            data_store=self._data_store_id,
            schema="default_schema",
        )
        request = discoveryengine.UpdateSchemaRequest(
            schema=discoveryengine.Schema(name=name, json_schema=json.dumps(schema)),
            allow_missing=True,
        )
        try:
            operation = client.update_schema(request=request)
            operation.result(timeout=self._timeout)
        except Exception as exc:
            raise SearchIndexError(f"Vertex schema update failed: {exc}") from exc
        LOGGER.info("Applied index schema with %d attributes", len(schema["properties"]))
        return schema

    def _to_hit(self, rank: int, result: Any, query: str) -> SearchHit:
        document = result.document
        data: Dict[str, Any] = {}
        if document.json_data:
            try:
                data = json.loads(document.json_data)
            except json.JSONDecodeError:
                data = _convert_struct(document.struct_data) if document.struct_data else {}
        elif document.struct_data:
            data = _convert_struct(document.struct_data)

        object_id = str(data.get("objectID") or document.id)
        if self._retrieve:
            data = {key: value for key, value in data.items() if key in self._retrieve}
        data.setdefault("objectID", object_id)

        highlights = {
            attribute: highlight_value(str(data[attribute]), query)
            for attribute in self._highlight
            if isinstance(data.get(attribute), str)
        }
        return SearchHit(object_id=object_id, rank=rank, record=data, highlights=highlights)


__all__ = [
    "MAX_IMPORT_DOCUMENTS",
    "SearchHit",
    "SearchIndexError",
    "SearchPage",
    "VertexSearchIndex",
    "build_index_document",
    "build_index_schema",
    "highlight_value",
]
