"""Tests for chunked index backfill and collection migration."""

from __future__ import annotations

import pytest

from plotcrm.services.bulk_sync import (
    BulkSynchronizer,
    ChunkOutcome,
    chunked,
    summarize,
)
from plotcrm.services.firestore_store import CustomerDocumentStore


def _customers(count: int, *, deleted: set[int] = frozenset()) -> dict:
    return {
        f"fs-{number:03d}": {
            "trackingNo": str(number),
            "name": f"顧客{number}",
            "status": "deleted" if number in deleted else "active",
        }
        for number in range(1, count + 1)
    }


@pytest.fixture
def make_bulk(firestore_factory, fake_index, observability):
    def _make(data: dict, *, index_batch_size: int = 3, batch_size: int = 450):
        client = firestore_factory(data)
        store = CustomerDocumentStore(collection="Customers", client=client, batch_size=batch_size)
        bulk = BulkSynchronizer(store, fake_index, index_batch_size=index_batch_size, observability=observability)
        return bulk, client

    return _make


def test_chunked_splits_lazily():
    assert list(chunked(range(7), 3)) == [[0, 1, 2], [3, 4, 5], [6]]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_backfill_reports_failed_middle_chunk_and_continues(make_bulk, fake_index):
    bulk, _ = make_bulk({"Customers": _customers(9)})
    fake_index.failures = [False, True, False]

    outcomes = list(bulk.backfill_index())

    assert [outcome.index for outcome in outcomes] == [0, 1, 2]
    assert [outcome.migrated for outcome in outcomes] == [3, 0, 3]
    assert outcomes[1].error == "index unavailable"
    assert outcomes[0].error is None and outcomes[2].error is None
    summary = summarize("Customers", outcomes)
    assert summary.status == "partial"
    assert summary.failed_chunks == 1
    assert summary.migrated == 6
    assert summary.source == 9
    assert sorted(fake_index.objects) == ["1", "2", "3", "7", "8", "9"]


def test_backfill_skips_soft_deleted_customers(make_bulk, fake_index):
    bulk, _ = make_bulk({"Customers": _customers(4, deleted={2, 4})})

    outcomes = list(bulk.backfill_index())

    assert sum(outcome.skipped for outcome in outcomes) == 2
    assert sorted(fake_index.objects) == ["1", "3"]


def test_backfill_stops_at_chunk_boundary(make_bulk, fake_index):
    bulk, _ = make_bulk({"Customers": _customers(9)})

    iterator = bulk.backfill_index()
    first = next(iterator)
    iterator.close()

    assert first.migrated == 3
    assert len(fake_index.saved_batches) == 1
    assert sorted(fake_index.objects) == ["1", "2", "3"]


def test_backfill_dry_run_writes_nothing(make_bulk, fake_index):
    bulk, _ = make_bulk({"Customers": _customers(5)})

    outcomes = list(bulk.backfill_index(dry_run=True))

    assert [outcome.source for outcome in outcomes] == [3, 2]
    assert fake_index.saved_batches == []


@pytest.mark.parametrize(
    "errors,expected",
    [
        ([None, None], "success"),
        ([None, "boom"], "partial"),
        (["boom", "boom"], "error"),
        ([], "success"),
    ],
)
def test_summary_status(errors, expected):
    outcomes = [ChunkOutcome(index=i, source=1, migrated=0 if error else 1, error=error) for i, error in enumerate(errors)]
    assert summarize("Deals", outcomes).status == expected


def test_migrate_collection_copies_documents_with_ids(make_bulk, firestore_factory):
    bulk, _ = make_bulk({"Deals": {"d1": {"customerTrackingNo": "1"}, "d2": {"customerTrackingNo": "2"}}})
    destination_client = firestore_factory()
    destination = CustomerDocumentStore(collection="Customers", client=destination_client, batch_size=1)

    summary = bulk.migrate_collection("Deals", destination)

    assert summary.status == "success"
    assert summary.source == 2
    assert summary.migrated == 2
    assert destination_client.data["Deals"] == {"d1": {"customerTrackingNo": "1"}, "d2": {"customerTrackingNo": "2"}}
    assert len(destination_client.commits) == 2


def test_migrate_collection_skip_existing(make_bulk, firestore_factory):
    bulk, _ = make_bulk({"Deals": {"d1": {"v": "new"}, "d2": {"v": "new"}}})
    destination_client = firestore_factory({"Deals": {"d1": {"v": "old"}}})
    destination = CustomerDocumentStore(collection="Customers", client=destination_client)

    summary = bulk.migrate_collection("Deals", destination, skip_existing=True)

    assert summary.migrated == 1
    assert summary.skipped == 1
    assert destination_client.data["Deals"]["d1"] == {"v": "old"}
    assert destination_client.data["Deals"]["d2"] == {"v": "new"}


def test_migrate_collection_dry_run_only_counts(make_bulk, firestore_factory):
    bulk, _ = make_bulk({"Deals": {"d1": {}, "d2": {}}})
    destination_client = firestore_factory()

    summary = bulk.migrate_collection(
        "Deals",
        CustomerDocumentStore(collection="Customers", client=destination_client),
        dry_run=True,
    )

    assert summary.dry_run is True
    assert summary.source == 2
    assert summary.migrated == 0
    assert destination_client.commits == []


def test_migrate_collections_reports_per_collection_status(make_bulk, firestore_factory, observability):
    bulk, source_client = make_bulk({"Deals": {"d1": {}, "d2": {}}, "Masters": {"m1": {}}, "Branches": {"b1": {}}})
    source_client.unreadable.add("Masters")
    destination_client = firestore_factory()
    destination_client.fail_commits.add(1)
    destination = CustomerDocumentStore(collection="Customers", client=destination_client, batch_size=1)

    summaries = bulk.migrate_collections(destination, ["Deals", "Masters", "Branches", "Empty"])

    statuses = {summary.collection: summary.status for summary in summaries}
    assert statuses == {"Deals": "partial", "Masters": "error", "Branches": "success", "Empty": "success"}
    assert summaries[1].errors and "cannot read Masters" in summaries[1].errors[0]
    assert [event for event, _ in observability.events] == ["bulk_sync.collection"] * 4


def test_apply_index_settings_delegates_to_index(make_bulk, fake_index):
    bulk, _ = make_bulk({})
    bulk.apply_index_settings()
    assert fake_index.settings_applied == 1
