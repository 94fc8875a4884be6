"""Canonical schema for normalized customer records.

Defines the flat, display-independent view of a customer document used by the
index projector and the saved-search evaluators.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class CanonicalRecord:
    """Unified normalized customer record.

    Attributes:
        tracking_no: Stable external identifier (not the storage key).
        name: Customer name as entered.
        name_kana: Phonetic reading of the name.
        phone: Phone number with hyphens and whitespace removed.
        phone_display: Phone number in its original human-readable form.
        email: Contact e-mail address.
        address: Single flattened display address.
        address_prefecture: Prefecture used for filtering.
        address_city: Municipality used for filtering.
        branch: Owning branch office.
        customer_category: Customer classification (individual, temple, ...).
        assigned_to: Staff member in charge.
        memo: Free-form notes.
        status: Lifecycle status (``active`` or ``deleted``).
        has_deals: True when general deals reference the customer.
        has_tree_burial_deals: True when tree-burial deals reference the customer.
        has_burial_persons: True when burial-person options reference the customer.
        created_at: ISO-8601 creation timestamp, empty when unknown.
        updated_at: ISO-8601 update timestamp, empty when unknown.
    """

    tracking_no: str = ""
    name: str = ""
    name_kana: str = ""
    phone: str = ""
    phone_display: str = ""
    email: str = ""
    address: str = ""
    address_prefecture: str = ""
    address_city: str = ""
    branch: str = ""
    customer_category: str = ""
    assigned_to: str = ""
    memo: str = ""
    status: str = ""
    has_deals: bool = False
    has_tree_burial_deals: bool = False
    has_burial_persons: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the record to a plain dictionary keyed by attribute name."""

        return asdict(self)
