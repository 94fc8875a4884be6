"""Projection of canonical customer records into search-index documents."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from plotcrm.normalization.schema import CanonicalRecord

# Katakana ァ..ヶ sit exactly 0x60 code points above hiragana ぁ..ゖ.
_KATAKANA_START = 0x30A1
_KATAKANA_END = 0x30F6
_KANA_OFFSET = 0x60


def fold_kana(text: str) -> str:
    """Fold katakana to hiragana so either script matches the other.

    The mapping is one-way and idempotent: ``fold_kana(fold_kana(x)) == fold_kana(x)``.
    """

    if not text:
        return ""
    return "".join(
        chr(ord(char) - _KANA_OFFSET) if _KATAKANA_START <= ord(char) <= _KATAKANA_END else char
        for char in text
    )


def index_key(canonical: CanonicalRecord, record_key: str) -> str:
    """Return the ``objectID`` for a customer.

    The tracking number is preferred; customers imported without one fall
    back to their Firestore document id, so re-projection always overwrites.
    """

    tracking_no = (canonical.tracking_no or "").strip()
    if tracking_no:
        return tracking_no
    if not record_key:
        raise ValueError("index_key requires a record_key when trackingNo is empty")
    return record_key


@dataclass(frozen=True)
class IndexRecord:
    """Search-index document for a single customer."""

    object_id: str
    firestore_id: str
    tracking_no: str
    name: str
    name_kana: str
    phone: str
    phone_original: str
    email: str
    address: str
    address_prefecture: str
    address_city: str
    branch: str
    customer_category: str
    assigned_to: str
    memo: str
    status: str
    has_deals: bool
    has_tree_burial_deals: bool
    has_burial_persons: bool
    created_at: str
    updated_at: str
    search_name: str
    search_name_kana: str

    def to_object(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys stored in the index."""

        return {
            "objectID": self.object_id,
            "firestoreId": self.firestore_id,
            "trackingNo": self.tracking_no,
            "name": self.name,
            "nameKana": self.name_kana,
            "phone": self.phone,
            "phoneOriginal": self.phone_original,
            "email": self.email,
            "address": self.address,
            "addressPrefecture": self.address_prefecture,
            "addressCity": self.address_city,
            "branch": self.branch,
            "customerCategory": self.customer_category,
            "assignedTo": self.assigned_to,
            "memo": self.memo,
            "status": self.status,
            "hasDeals": self.has_deals,
            "hasTreeBurialDeals": self.has_tree_burial_deals,
            "hasBurialPersons": self.has_burial_persons,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "searchName": self.search_name,
            "searchNameKana": self.search_name_kana,
        }


def project_record(canonical: CanonicalRecord, record_key: str) -> IndexRecord:
    """Build the index document for ``canonical`` stored under ``record_key``.

    Args:
        canonical: Normalized customer record.
        record_key: Firestore document id of the customer.

    Returns:
        :class:`IndexRecord` keyed by :func:`index_key`.
    """

    return IndexRecord(
        object_id=index_key(canonical, record_key),
        firestore_id=record_key or "",
        tracking_no=canonical.tracking_no,
        name=canonical.name,
        name_kana=canonical.name_kana,
        phone=canonical.phone,
        phone_original=canonical.phone_display,
        email=canonical.email,
        address=canonical.address,
        address_prefecture=canonical.address_prefecture,
        address_city=canonical.address_city,
        branch=canonical.branch,
        customer_category=canonical.customer_category,
        assigned_to=canonical.assigned_to,
        memo=canonical.memo,
        status=canonical.status,
        has_deals=canonical.has_deals,
        has_tree_burial_deals=canonical.has_tree_burial_deals,
        has_burial_persons=canonical.has_burial_persons,
        created_at=canonical.created_at,
        updated_at=canonical.updated_at,
        search_name=fold_kana(canonical.name),
        search_name_kana=fold_kana(canonical.name_kana),
    )


__all__ = ["IndexRecord", "fold_kana", "index_key", "project_record"]
