"""Factory helpers that instantiate core services based on configuration.

These helpers centralize the logic for honoring the environment-specific
settings declared in :mod:`plotcrm.settings`, raising ``RuntimeError`` when a
required project or data store is not configured.
"""

from __future__ import annotations

from plotcrm.search.vertex_index import VertexSearchIndex
from plotcrm.services.bulk_sync import BulkSynchronizer
from plotcrm.services.customer_search import CustomerSearchService
from plotcrm.services.deal_flags import DealFlagUpdater
from plotcrm.services.firestore_store import CustomerDocumentStore
from plotcrm.services.synchronizer import CustomerSynchronizer
from plotcrm.settings import Settings, get_settings
from plotcrm.store.search_lists import SavedSearchListStore


def build_customer_store(
    *,
    settings: Settings | None = None,
    project: str | None = None,
    database: str | None = None,
) -> CustomerDocumentStore:
    """Instantiate the customer document store.

    Args:
        settings: Optional settings override.
        project: Firestore project override (used when migrating between projects).
        database: Firestore database override.
    """

    resolved = settings or get_settings()
    project = project or resolved.storage.firestore_project
    if not project:
        raise RuntimeError(
            "Customer store requires storage.firestore_project; set PLOTCRM_STORAGE__FIRESTORE_PROJECT.",
        )

    return CustomerDocumentStore(
        project=project,
        collection=resolved.storage.customers_collection,
        database=database or resolved.storage.firestore_database,
        batch_size=resolved.sync.firestore_batch_size,
    )


def build_search_index(*, settings: Settings | None = None) -> VertexSearchIndex:
    """Instantiate the Vertex AI Search customer index."""

    resolved = settings or get_settings()
    config = resolved.search_index
    if not config.project or not config.data_store:
        raise RuntimeError(
            "Search index requires project and data store. Set PLOTCRM_SEARCH_INDEX__PROJECT and "
            "PLOTCRM_SEARCH_INDEX__DATA_STORE.",
        )

    return VertexSearchIndex(
        project=config.project,
        location=config.location,
        data_store_id=config.data_store,
        branch=config.branch,
        serving_config=config.serving_config,
        searchable_attributes=config.searchable_attributes,
        attributes_to_retrieve=config.attributes_to_retrieve,
        attributes_to_highlight=config.attributes_to_highlight,
        attributes_for_faceting=config.attributes_for_faceting,
        typo_tolerance=config.typo_tolerance,
        hits_per_page=config.hits_per_page,
        timeout_seconds=config.timeout_seconds,
    )


def build_synchronizer(*, settings: Settings | None = None) -> CustomerSynchronizer:
    """Wire the customer store and search index into a :class:`CustomerSynchronizer`."""

    resolved = settings or get_settings()
    return CustomerSynchronizer(
        build_customer_store(settings=resolved),
        build_search_index(settings=resolved),
        max_attempts=resolved.sync.index_max_attempts,
        retry_delay_seconds=resolved.sync.index_retry_delay_seconds,
    )


def build_bulk_synchronizer(
    *,
    settings: Settings | None = None,
    project: str | None = None,
    database: str | None = None,
    with_index: bool = True,
) -> BulkSynchronizer:
    """Instantiate a :class:`BulkSynchronizer`; ``with_index=False`` skips index wiring for migrations."""

    resolved = settings or get_settings()
    return BulkSynchronizer(
        build_customer_store(settings=resolved, project=project, database=database),
        build_search_index(settings=resolved) if with_index else None,
        index_batch_size=resolved.sync.index_batch_size,
    )


def build_search_list_store(*, settings: Settings | None = None) -> SavedSearchListStore:
    """Instantiate the saved search list store."""

    resolved = settings or get_settings()
    project = resolved.storage.firestore_project
    if not project:
        raise RuntimeError(
            "Search list store requires storage.firestore_project; set PLOTCRM_STORAGE__FIRESTORE_PROJECT.",
        )

    return SavedSearchListStore(
        project=project,
        collection=resolved.storage.search_lists_collection,
        database=resolved.storage.firestore_database,
    )


def build_customer_search_service(*, settings: Settings | None = None) -> CustomerSearchService:
    """Instantiate the customer search service."""

    resolved = settings or get_settings()
    return CustomerSearchService(
        build_search_index(settings=resolved),
        build_search_list_store(settings=resolved),
        hits_per_page=resolved.search_index.hits_per_page,
    )


def build_deal_flag_updater(*, settings: Settings | None = None, reindex: bool = True) -> DealFlagUpdater:
    """Instantiate the deal flag updater, optionally re-indexing changed customers."""

    resolved = settings or get_settings()
    return DealFlagUpdater(
        build_customer_store(settings=resolved),
        index=build_search_index(settings=resolved) if reindex else None,
        index_batch_size=resolved.sync.index_batch_size,
    )


__all__ = [
    "build_bulk_synchronizer",
    "build_customer_search_service",
    "build_customer_store",
    "build_deal_flag_updater",
    "build_search_index",
    "build_search_list_store",
    "build_synchronizer",
]
