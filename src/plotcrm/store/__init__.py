"""Persistence for saved customer search lists."""

from plotcrm.store.search_lists import (
    SavedSearchListStore,
    SearchListError,
    SearchListNotFoundError,
    SystemSearchListError,
)

__all__ = [
    "SavedSearchListStore",
    "SearchListError",
    "SearchListNotFoundError",
    "SystemSearchListError",
]
