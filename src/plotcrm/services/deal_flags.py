"""Recompute customer deal flags from the deal collections."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from plotcrm.normalization import normalize_record
from plotcrm.search.projector import project_record
from plotcrm.search.vertex_index import SearchIndexError
from plotcrm.services.bulk_sync import chunked
from plotcrm.services.firestore_store import STATUS_DELETED

if TYPE_CHECKING:
    from plotcrm.search.vertex_index import VertexSearchIndex
    from plotcrm.services.firestore_store import FirestoreCollectionStore

LOGGER = logging.getLogger(__name__)

DEALS_COLLECTION = "Deals"
TREE_BURIAL_DEALS_COLLECTION = "TreeBurialDeals"
BURIAL_PERSONS_COLLECTION = "BurialPersons"

_CUSTOMER_ID_PREFIX = "customer_"

FLAG_FIELDS = ("hasDeals", "hasTreeBurialDeals", "hasBurialPersons")


@dataclass
class DealFlagReport:
    """Counts from one flag refresh run.

    The per-flag counts cover only customers whose flags changed.
    """

    scanned: int = 0
    changed: int = 0
    updated: int = 0
    has_deals: int = 0
    has_tree_burial_deals: int = 0
    has_burial_persons: int = 0
    reindexed: int = 0
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _linked_tracking_numbers(store: "FirestoreCollectionStore", *fields: str) -> Set[str]:
    linked: Set[str] = set()
    for _, data in store.iter_documents():
        for name in fields:
            value = str(data.get(name) or "").strip()
            if value:
                linked.add(value)
                break
    return linked


def _burial_person_tracking_numbers(store: "FirestoreCollectionStore") -> Set[str]:
    linked: Set[str] = set()
    for _, data in store.iter_documents():
        tracking_no = str(data.get("linkedCustomerTrackingNo") or "").strip()
        if not tracking_no:
            customer_id = str(data.get("linkedCustomerId") or "").strip()
            tracking_no = customer_id.replace(_CUSTOMER_ID_PREFIX, "", 1) if customer_id else ""
        if tracking_no:
            linked.add(tracking_no)
    return linked


class DealFlagUpdater:
    """Derives ``hasDeals``, ``hasTreeBurialDeals`` and ``hasBurialPersons`` per customer."""

    def __init__(
        self,
        customers: "FirestoreCollectionStore",
        *,
        index: Optional["VertexSearchIndex"] = None,
        index_batch_size: int = 1000,
    ) -> None:
        self._customers = customers
        self._index = index
        self._index_batch_size = max(1, index_batch_size)

    def collect_links(self) -> Tuple[Set[str], Set[str], Set[str]]:
        """Return the tracking numbers referenced by each deal collection."""

        deals = _linked_tracking_numbers(self._customers.sibling(DEALS_COLLECTION), "customerTrackingNo")
        tree_burial = _linked_tracking_numbers(
            self._customers.sibling(TREE_BURIAL_DEALS_COLLECTION),
            "linkedCustomerTrackingNo",
        )
        burial_persons = _burial_person_tracking_numbers(self._customers.sibling(BURIAL_PERSONS_COLLECTION))
        LOGGER.info(
            "Linked customers: deals=%d tree_burial=%d burial_persons=%d",
            len(deals),
            len(tree_burial),
            len(burial_persons),
        )
        return deals, tree_burial, burial_persons

    def refresh(self, *, dry_run: bool = False) -> DealFlagReport:
        """Write changed flags back to Firestore and, when an index is set, re-index those customers."""

        deals, tree_burial, burial_persons = self.collect_links()
        report = DealFlagReport(dry_run=dry_run)
        pending: List[Tuple[str, Dict[str, Any]]] = []
        refreshed: List[Tuple[str, Dict[str, Any]]] = []
        now = datetime.now(timezone.utc).isoformat()

        for doc_id, data in self._customers.iter_documents():
            report.scanned += 1
            tracking_no = str(data.get("trackingNo") or "").strip()
            if not tracking_no:
                continue
            flags = {
                "hasDeals": tracking_no in deals,
                "hasTreeBurialDeals": tracking_no in tree_burial,
                "hasBurialPersons": tracking_no in burial_persons,
            }
            if all(data.get(name) is flags[name] for name in FLAG_FIELDS):
                continue

            report.changed += 1
            report.has_deals += int(flags["hasDeals"])
            report.has_tree_burial_deals += int(flags["hasTreeBurialDeals"])
            report.has_burial_persons += int(flags["hasBurialPersons"])
            update = {**flags, "updatedAt": now}
            pending.append((doc_id, update))
            refreshed.append((doc_id, {**data, **update}))

        LOGGER.info("Deal flags changed for %d of %d customer(s)", report.changed, report.scanned)
        if dry_run or not pending:
            return report

        report.updated = self._customers.write_batch(pending, merge=True)
        if self._index is not None:
            self._reindex(refreshed, report)
        return report

    def _reindex(self, refreshed: List[Tuple[str, Dict[str, Any]]], report: DealFlagReport) -> None:
        for chunk in chunked(refreshed, self._index_batch_size):
            objects = []
            for doc_id, data in chunk:
                canonical = normalize_record(data)
                if canonical.status != STATUS_DELETED:
                    objects.append(project_record(canonical, doc_id).to_object())
            if not objects:
                continue
            try:
                report.reindexed += self._index.save_objects(objects)
            except SearchIndexError as exc:
                LOGGER.error("Re-indexing %d customer(s) failed: %s", len(objects), exc)
                report.errors.append(str(exc))


__all__ = ["DealFlagReport", "DealFlagUpdater", "FLAG_FIELDS"]
