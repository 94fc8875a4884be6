"""Persistence for saved customer search lists.

User lists live in the ``CustomerSearchLists`` Firestore collection. System
lists are built in memory on every read and can never be written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from pydantic import ValidationError

from plotcrm.filters.models import (
    SYSTEM_LIST_IDS,
    FilterCondition,
    FilterConditionGroup,
    SavedSearchList,
    get_system_list,
    system_lists,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_COLLECTION = "CustomerSearchLists"
_UPDATABLE_FIELDS = {"name", "description", "condition_groups", "conditionGroups"}


class SearchListError(RuntimeError):
    """Base error for saved search list persistence."""


class SearchListNotFoundError(SearchListError):
    """Raised when a user list does not exist."""


class SystemSearchListError(SearchListError):
    """Raised when a caller tries to modify a built-in list."""


def _convert_timestamp(value: Any) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, str) and value:
        return value
    return ""


def _dump_groups(groups: Sequence[FilterConditionGroup | Mapping[str, Any]]) -> List[Dict[str, Any]]:
    dumped: List[Dict[str, Any]] = []
    for group in groups:
        model = group if isinstance(group, FilterConditionGroup) else FilterConditionGroup.model_validate(group)
        dumped.append(model.model_dump(mode="json", by_alias=True))
    return dumped


def _optional_text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _load_condition(list_id: str, raw: Any) -> FilterCondition:
    try:
        return FilterCondition.model_validate(raw)
    except ValidationError:
        # An empty field never filters anything out.
        LOGGER.warning("Search list %s has an unreadable condition; treating it as always true", list_id)
        condition_id = raw.get("id") if isinstance(raw, Mapping) else None
        return FilterCondition(id=condition_id, field="", operator="", value="")


def _load_groups(list_id: str, raw: Any) -> List[FilterConditionGroup]:
    """Load stored groups one condition at a time so one bad entry cannot void the rest."""

    if not isinstance(raw, list):
        if raw:
            LOGGER.warning("Search list %s has malformed condition groups; loading without filters", list_id)
        return []
    groups: List[FilterConditionGroup] = []
    for raw_group in raw:
        if not isinstance(raw_group, Mapping):
            LOGGER.warning("Search list %s has an unreadable condition group; skipping it", list_id)
            continue
        raw_conditions = raw_group.get("conditions")
        if not isinstance(raw_conditions, list):
            raw_conditions = []
        conditions = [_load_condition(list_id, item) for item in raw_conditions]
        group_id = _optional_text(raw_group.get("id"))
        if group_id is None:
            groups.append(FilterConditionGroup(conditions=conditions))
        else:
            groups.append(FilterConditionGroup(id=group_id, conditions=conditions))
    return groups


def _to_model(document_id: str, data: Mapping[str, Any]) -> SavedSearchList:
    created_at = _convert_timestamp(data.get("createdAt"))
    updated_at = _convert_timestamp(data.get("updatedAt"))
    return SavedSearchList(
        id=document_id,
        name=str(data.get("name") or ""),
        description=_optional_text(data.get("description")),
        is_system=False,
        condition_groups=_load_groups(document_id, data.get("conditionGroups")),
        created_at=created_at or updated_at,
        updated_at=updated_at or created_at,
        created_by=_optional_text(data.get("createdBy")),
    )


class SavedSearchListStore:
    """CRUD over user search lists plus the read-only system lists."""

    def __init__(
        self,
        *,
        project: str | None = None,
        collection: str = DEFAULT_COLLECTION,
        database: str | None = None,
        client: Optional[firestore.Client] = None,
    ) -> None:
        if client is None:
            if not project:
                raise ValueError("SavedSearchListStore requires a project ID")
            client = firestore.Client(project=project, database=database) if database else firestore.Client(
                project=project
            )
        self._client = client
        self._collection = client.collection(collection)

    def list_search_lists(self) -> List[SavedSearchList]:
        """System lists first in their fixed order, then user lists by ``updatedAt`` descending."""

        query = self._collection.order_by("updatedAt", direction=firestore.Query.DESCENDING)
        user_lists = [_to_model(snapshot.id, snapshot.to_dict() or {}) for snapshot in query.stream()]
        return [*system_lists(), *user_lists]

    def get_search_list(self, list_id: str) -> SavedSearchList | None:
        """Return the list with ``list_id`` or ``None`` when it does not exist."""

        system = get_system_list(list_id)
        if system is not None:
            return system
        snapshot = self._collection.document(list_id).get()
        if not snapshot.exists:
            return None
        return _to_model(snapshot.id, snapshot.to_dict() or {})

    def create_search_list(
        self,
        name: str,
        groups: Sequence[FilterConditionGroup | Mapping[str, Any]],
        description: str | None = None,
        created_by: str | None = None,
    ) -> str:
        """Persist a new user list and return its generated id."""

        doc_ref = self._collection.document()
        payload: Dict[str, Any] = {
            "name": name,
            "description": description or None,
            "conditionGroups": _dump_groups(groups),
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        if created_by:
            payload["createdBy"] = created_by
        doc_ref.set(payload)
        LOGGER.info("Created search list %s (%s)", doc_ref.id, name)
        return doc_ref.id

    def update_search_list(self, list_id: str, **changes: Any) -> None:
        """Update ``name``, ``description`` and/or ``condition_groups`` of a user list."""

        self._ensure_mutable(list_id)
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported search list fields: {sorted(unknown)}")

        payload: Dict[str, Any] = {}
        if "name" in changes:
            payload["name"] = changes["name"]
        if "description" in changes:
            payload["description"] = changes["description"] or None
        groups = changes.get("condition_groups", changes.get("conditionGroups"))
        if groups is not None:
            payload["conditionGroups"] = _dump_groups(groups)
        payload["updatedAt"] = firestore.SERVER_TIMESTAMP

        try:
            self._collection.document(list_id).update(payload)
        except gcp_exceptions.NotFound as exc:
            raise SearchListNotFoundError(f"Search list {list_id} not found") from exc

    def delete_search_list(self, list_id: str) -> None:
        """Delete a user list; deleting an absent list is a no-op."""

        self._ensure_mutable(list_id)
        self._collection.document(list_id).delete()
        LOGGER.info("Deleted search list %s", list_id)

    @staticmethod
    def _ensure_mutable(list_id: str) -> None:
        if list_id in SYSTEM_LIST_IDS:
            raise SystemSearchListError(f"System search list {list_id} cannot be modified")


__all__ = [
    "DEFAULT_COLLECTION",
    "SavedSearchListStore",
    "SearchListError",
    "SearchListNotFoundError",
    "SystemSearchListError",
]
