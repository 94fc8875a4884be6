"""Free-text customer search narrowed by a saved search list."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from plotcrm.filters.expressions import filter_pairs
from plotcrm.normalization import normalize_record
from plotcrm.observability import Observability, get_observability
from plotcrm.search.projector import fold_kana
from plotcrm.search.vertex_index import SearchHit
from plotcrm.store.search_lists import SearchListNotFoundError

if TYPE_CHECKING:
    from plotcrm.search.vertex_index import VertexSearchIndex
    from plotcrm.store.search_lists import SavedSearchListStore


@dataclass
class CustomerSearchResult:
    """Hits that survived the saved list plus index metadata."""

    query: str
    list_id: str | None
    hits: List[SearchHit] = field(default_factory=list)
    candidates: int = 0
    total_hits: int = 0
    processing_time_ms: int = 0


def _tracking_number(hit: SearchHit) -> str:
    return str(hit.record.get("trackingNo") or "")


def _numeric_tracking_number(hit: SearchHit) -> int:
    try:
        return int(_tracking_number(hit))
    except ValueError:
        return 0


def order_hits(hits: List[SearchHit], query: str) -> List[SearchHit]:
    """Order hits for display.

    Without a query, newest tracking numbers come first. With a query, hits
    whose tracking number equals, starts with or contains the query are
    promoted in that order; ties keep index relevance order.
    """

    trimmed = query.strip()
    if not trimmed:
        return sorted(hits, key=_numeric_tracking_number, reverse=True)

    def priority(hit: SearchHit) -> int:
        tracking_no = _tracking_number(hit)
        if tracking_no == trimmed:
            return 0
        if tracking_no.startswith(trimmed):
            return 1
        if trimmed in tracking_no:
            return 2
        return 3

    return sorted(hits, key=priority)


class CustomerSearchService:
    """Queries the index then re-filters candidates through a saved search list."""

    def __init__(
        self,
        index: "VertexSearchIndex",
        search_lists: "SavedSearchListStore",
        *,
        hits_per_page: int = 100,
        observability: Optional[Observability] = None,
    ) -> None:
        self._index = index
        self._lists = search_lists
        self._hits_per_page = hits_per_page
        self._obs = observability or get_observability(component="customer_search")

    def search(self, query: str = "", *, list_id: str | None = None, page_size: int | None = None) -> CustomerSearchResult:
        """Run ``query`` and keep the hits that satisfy list ``list_id``.

        Raises:
            SearchListNotFoundError: ``list_id`` names no system or user list.
        """

        groups = []
        if list_id:
            saved = self._lists.get_search_list(list_id)
            if saved is None:
                raise SearchListNotFoundError(f"Search list {list_id} not found")
            groups = saved.condition_groups

        page = self._index.search(fold_kana(query.strip()), page_size=page_size or self._hits_per_page)
        candidates = [(normalize_record(hit.record), hit) for hit in page.hits]
        matched = filter_pairs(candidates, groups) if groups else [hit for _, hit in candidates]

        self._obs.increment("customer_search.queries", tags={"filtered": "yes" if groups else "no"})
        return CustomerSearchResult(
            query=query,
            list_id=list_id,
            hits=order_hits(matched, query),
            candidates=len(candidates),
            total_hits=page.total_hits,
            processing_time_ms=page.processing_time_ms,
        )


__all__ = ["CustomerSearchResult", "CustomerSearchService", "order_hits"]
