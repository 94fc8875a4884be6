"""Customer record normalization for plotcrm.

Three generations of customer documents coexist in the ``Customers``
collection: flat legacy rows, migrated documents whose values are wrapped in
``{original, cleaned}`` objects, and current documents with a nested address
object. Some imports additionally stored the address object as a JSON string.
The helpers here resolve every field through a fixed, ordered fallback chain so
that all generations collapse into the same :class:`CanonicalRecord`.

All public functions are total: unrecognized shapes degrade to an empty
string and a failure while resolving one field never affects another.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping, Tuple

from plotcrm.normalization.reference_data import (
    ADDRESS_PARTS,
    CITY_PATTERN,
    PHONE_STRIP_PATTERN,
    PREFECTURE_PATTERN,
)
from plotcrm.normalization.schema import CanonicalRecord

LOGGER = logging.getLogger(__name__)


def js_truthy(value: Any) -> bool:
    """Coerce ``value`` the way JavaScript's ``!!value`` does.

    Stored flags were written by several clients, so ``"true"``, ``1`` and
    ``True`` all appear. Empty strings, zero, NaN and ``None`` are false; every
    other value, including empty containers, is true.
    """

    if value is None or value is False:
        return False
    if value is True:
        return True
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def text_value(value: Any) -> str:
    """Return the display string for a scalar or ``{original, cleaned}`` wrapper.

    Wrappers prefer ``cleaned``, then ``original``, then ``value``. Numbers are
    rendered with ``str``; booleans and unknown objects yield ``""``.
    """

    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, Mapping):
        for key in ("cleaned", "original", "value"):
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
    return ""


def decode_json_shape(value: Any) -> Any:
    """Parse strings that look like JSON objects, leaving everything else untouched."""

    if isinstance(value, str) and value.startswith("{"):
        try:
            parsed = json.loads(value)
        except ValueError:
            return value
        if isinstance(parsed, Mapping):
            return parsed
    return value


def resolve_address(raw_address: Any) -> str:
    """Flatten any supported address shape into a single display string.

    Precedence for objects is ``full``, then ``fullAddress``, then the
    discrete parts concatenated without separators (the parts already carry
    whatever spacing they need).
    """

    address = decode_json_shape(raw_address)
    if isinstance(address, str):
        return address
    if not isinstance(address, Mapping):
        return ""

    for key in ("full", "fullAddress"):
        candidate = text_value(address.get(key))
        if candidate:
            return candidate

    parts = [text_value(address.get(part)) for part in ADDRESS_PARTS]
    return "".join(part for part in parts if part)


def resolve_phone(raw_phone: Any) -> Tuple[str, str]:
    """Return ``(phone, phone_display)`` for a phone string or wrapper.

    ``phone`` prefers the ``cleaned`` variant and drops hyphens and
    whitespace. ``phone_display`` keeps the human-entered ``original``
    formatting, since ``cleaned`` occasionally lost digits during migration.
    """

    phone = decode_json_shape(raw_phone)
    if isinstance(phone, Mapping):
        cleaned = text_value(phone.get("cleaned"))
        original = text_value(phone.get("original"))
        searchable = cleaned or original
        display = original or cleaned
    else:
        searchable = display = text_value(phone)
    return PHONE_STRIP_PATTERN.sub("", searchable), display


def extract_prefecture(flattened_address: str) -> str:
    """Best-effort prefecture extraction from a flattened address string."""

    match = PREFECTURE_PATTERN.match(flattened_address.strip())
    return match.group(1) if match else ""


def extract_city(flattened_address: str) -> str:
    """Best-effort municipality extraction from a flattened address string."""

    remainder = flattened_address.strip()
    match = PREFECTURE_PATTERN.match(remainder)
    if match:
        remainder = remainder[match.end() :].lstrip()
    city = CITY_PATTERN.match(remainder)
    return city.group(1) if city else ""


def resolve_prefecture(raw: Mapping[str, Any], flattened_address: str | None = None) -> str:
    """Resolve the filtering prefecture through sidecar, legacy, structured, then regex sources."""

    return _resolve_address_component(
        raw,
        sidecar_key="addressPrefecture",
        part_key="prefecture",
        extractor=extract_prefecture,
        flattened_address=flattened_address,
    )


def resolve_city(raw: Mapping[str, Any], flattened_address: str | None = None) -> str:
    """Resolve the filtering municipality through sidecar, legacy, structured, then regex sources."""

    return _resolve_address_component(
        raw,
        sidecar_key="addressCity",
        part_key="city",
        extractor=extract_city,
        flattened_address=flattened_address,
    )


def _resolve_address_component(
    raw: Mapping[str, Any],
    *,
    sidecar_key: str,
    part_key: str,
    extractor: Callable[[str], str],
    flattened_address: str | None,
) -> str:
    sidecar = text_value(raw.get(sidecar_key))
    if sidecar:
        return sidecar
    legacy = text_value(raw.get(part_key))
    if legacy:
        return legacy
    address = decode_json_shape(raw.get("address"))
    if isinstance(address, Mapping):
        structured = text_value(address.get(part_key))
        if structured:
            return structured
    if flattened_address is None:
        flattened_address = resolve_address(raw.get("address"))
    return extractor(flattened_address)


def format_timestamp(value: Any) -> str:
    """Render stored timestamps as ISO-8601 strings.

    Accepts ISO strings, ``datetime``/``date`` values (Firestore returns
    ``DatetimeWithNanoseconds``) and exported ``{"_seconds": ...}`` mappings.
    """

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        seconds = value.get("_seconds", value.get("seconds"))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    return ""


def normalize_record(raw: Mapping[str, Any]) -> CanonicalRecord:
    """Project a raw customer document into a :class:`CanonicalRecord`.

    Args:
        raw: Customer document in any supported historical shape. Index hits
            are also accepted, since they carry the same field names plus the
            ``phoneOriginal`` and ``address*`` sidecars.

    Returns:
        The canonical record. Never raises; unresolvable fields are ``""``.
    """

    if not isinstance(raw, Mapping):
        LOGGER.debug("Ignoring non-mapping customer payload of type %s", type(raw).__name__)
        return CanonicalRecord()

    address = _safe_field("address", lambda: resolve_address(raw.get("address")), "")
    phone, phone_display = _safe_field("phone", lambda: resolve_phone(raw.get("phone")), ("", ""))
    # Index hits keep the display form beside the stripped number.
    phone_display = _safe_field("phoneOriginal", lambda: text_value(raw.get("phoneOriginal")), "") or phone_display
    if not phone and phone_display:
        phone = PHONE_STRIP_PATTERN.sub("", phone_display)

    return CanonicalRecord(
        tracking_no=_safe_field("trackingNo", lambda: text_value(raw.get("trackingNo")).strip(), ""),
        name=_safe_field("name", lambda: text_value(raw.get("name")), ""),
        name_kana=_safe_field("nameKana", lambda: text_value(raw.get("nameKana")), ""),
        phone=phone,
        phone_display=phone_display,
        email=_safe_field("email", lambda: text_value(raw.get("email")), ""),
        address=address,
        address_prefecture=_safe_field("prefecture", lambda: resolve_prefecture(raw, address), ""),
        address_city=_safe_field("city", lambda: resolve_city(raw, address), ""),
        branch=_safe_field("branch", lambda: text_value(raw.get("branch")), ""),
        customer_category=_safe_field("customerCategory", lambda: text_value(raw.get("customerCategory")), ""),
        assigned_to=_safe_field("assignedTo", lambda: text_value(raw.get("assignedTo")), ""),
        memo=_safe_field("memo", lambda: text_value(raw.get("memo")) or text_value(raw.get("notes")), ""),
        status=_safe_field("status", lambda: text_value(raw.get("status")), ""),
        has_deals=js_truthy(raw.get("hasDeals")),
        has_tree_burial_deals=js_truthy(raw.get("hasTreeBurialDeals")),
        has_burial_persons=js_truthy(raw.get("hasBurialPersons")),
        created_at=_safe_field("createdAt", lambda: format_timestamp(raw.get("createdAt")), ""),
        updated_at=_safe_field("updatedAt", lambda: format_timestamp(raw.get("updatedAt")), ""),
    )


def _safe_field(name: str, resolver: Callable[[], Any], default: Any) -> Any:
    try:
        return resolver()
    except Exception:  # pragma: no cover - resolvers are total; guard keeps fields independent
        LOGGER.debug("Normalization failed for field %s", name, exc_info=True)
        return default


__all__ = [
    "decode_json_shape",
    "extract_city",
    "extract_prefecture",
    "format_timestamp",
    "js_truthy",
    "normalize_record",
    "resolve_address",
    "resolve_city",
    "resolve_phone",
    "resolve_prefecture",
    "text_value",
]
