"""Evaluation of a single saved-search condition against a canonical customer record."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict

from plotcrm.filters.models import (
    OPERATORS_BY_TYPE,
    FieldType,
    FilterCondition,
    FilterField,
    FilterOperator,
)
from plotcrm.normalization.normalizer import js_truthy
from plotcrm.normalization.schema import CanonicalRecord

# Dates are compared as calendar days in the business's local time (Japan has no DST).
BUSINESS_TIMEZONE = timezone(timedelta(hours=9), "JST")

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_FIELD_ACCESSORS: Dict[str, Callable[[CanonicalRecord], Any]] = {
    FilterField.TRACKING_NO.value: lambda record: record.tracking_no,
    FilterField.NAME.value: lambda record: record.name,
    FilterField.NAME_KANA.value: lambda record: record.name_kana,
    FilterField.PHONE.value: lambda record: record.phone or record.phone_display,
    FilterField.BRANCH.value: lambda record: record.branch,
    FilterField.PREFECTURE.value: lambda record: record.address_prefecture,
    FilterField.CITY.value: lambda record: record.address_city,
    FilterField.CUSTOMER_CATEGORY.value: lambda record: record.customer_category,
    FilterField.ASSIGNED_TO.value: lambda record: record.assigned_to,
    FilterField.HAS_DEALS.value: lambda record: record.has_deals,
    FilterField.HAS_TREE_BURIAL_DEALS.value: lambda record: record.has_tree_burial_deals,
    FilterField.HAS_BURIAL_PERSONS.value: lambda record: record.has_burial_persons,
    FilterField.MEMO.value: lambda record: record.memo,
    FilterField.CREATED_AT.value: lambda record: record.created_at,
    FilterField.UPDATED_AT.value: lambda record: record.updated_at,
}


def field_value(record: CanonicalRecord, field: str) -> Any:
    """Return the value of filter field ``field`` on ``record`` (``""`` for unknown fields)."""

    accessor = _FIELD_ACCESSORS.get(field)
    return accessor(record) if accessor else ""


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def match_string(value: Any, operator: str, condition_value: str | None) -> bool:
    """Case-insensitive string comparison; unknown operators match everything."""

    if operator == FilterOperator.IS_EMPTY.value:
        return _is_blank(value)
    if operator == FilterOperator.IS_NOT_EMPTY.value:
        return not _is_blank(value)

    haystack = ("" if value is None else str(value)).lower()
    needle = (condition_value or "").lower()
    if operator == FilterOperator.CONTAINS.value:
        return needle in haystack
    if operator == FilterOperator.EQUALS.value:
        return haystack == needle
    if operator == FilterOperator.STARTS_WITH.value:
        return haystack.startswith(needle)
    if operator == FilterOperator.ENDS_WITH.value:
        return haystack.endswith(needle)
    if operator == FilterOperator.NOT_CONTAINS.value:
        return needle not in haystack
    if operator == FilterOperator.NOT_EQUALS.value:
        return haystack != needle
    if operator == FilterOperator.NOT_STARTS_WITH.value:
        return not haystack.startswith(needle)
    if operator == FilterOperator.NOT_ENDS_WITH.value:
        return not haystack.endswith(needle)
    return True


def match_boolean(value: Any, operator: str) -> bool:
    """Compare a coerced boolean; unknown operators match everything."""

    flag = js_truthy(value)
    if operator == FilterOperator.IS_TRUE.value:
        return flag
    if operator == FilterOperator.IS_FALSE.value:
        return not flag
    return True


def parse_datetime(value: Any, *, tz: timezone = BUSINESS_TIMEZONE) -> datetime | None:
    """Parse an ISO-8601 string (or datetime) into an aware datetime.

    Naive values are interpreted in ``tz``. Returns ``None`` when the value
    cannot be parsed.
    """

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        cleaned = value.strip()
        if cleaned.endswith("Z"):
            cleaned = cleaned[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def match_date(
    value: Any,
    operator: str,
    condition_value: str | None,
    condition_value2: str | None = None,
    *,
    tz: timezone = BUSINESS_TIMEZONE,
) -> bool:
    """Compare dates; absent or unparseable operands fail every ordering operator.

    ``equals`` compares calendar days in ``tz``; ``before``/``after`` compare
    instants; ``between`` is inclusive and a date-only upper bound covers the
    whole of that day.
    """

    if operator == FilterOperator.IS_EMPTY.value:
        return _is_blank(value)
    if operator == FilterOperator.IS_NOT_EMPTY.value:
        return not _is_blank(value)
    if operator not in {
        FilterOperator.EQUALS.value,
        FilterOperator.BEFORE.value,
        FilterOperator.AFTER.value,
        FilterOperator.BETWEEN.value,
    }:
        return True

    if _is_blank(value) or _is_blank(condition_value):
        return False
    record_at = parse_datetime(value, tz=tz)
    bound = parse_datetime(condition_value, tz=tz)
    if record_at is None or bound is None:
        return False

    if operator == FilterOperator.EQUALS.value:
        return record_at.astimezone(tz).date() == bound.astimezone(tz).date()
    if operator == FilterOperator.BEFORE.value:
        return record_at < bound
    if operator == FilterOperator.AFTER.value:
        return record_at > bound

    if _is_blank(condition_value2):
        return False
    upper = parse_datetime(condition_value2, tz=tz)
    if upper is None:
        return False
    if _DATE_ONLY.match(str(condition_value2).strip()):
        upper = upper + timedelta(days=1) - timedelta(microseconds=1)
    return bound <= record_at <= upper


def evaluate_condition(record: CanonicalRecord, condition: FilterCondition) -> bool:
    """Evaluate ``condition`` against ``record``.

    The field's declared type selects the comparison. Conditions naming an
    unknown field, or an operator outside the set allowed for the field's
    type, evaluate to ``True`` so a damaged saved list never hides customers.
    """

    definition = condition.definition
    if definition is None:
        return True
    allowed = OPERATORS_BY_TYPE.get(definition.type, frozenset())
    if condition.operator not in {operator.value for operator in allowed}:
        return True

    value = field_value(record, condition.field)
    if definition.type is FieldType.BOOLEAN:
        return match_boolean(value, condition.operator)
    if definition.type is FieldType.DATE:
        return match_date(value, condition.operator, condition.value, condition.value2)
    return match_string(value, condition.operator, condition.value)


__all__ = [
    "BUSINESS_TIMEZONE",
    "evaluate_condition",
    "field_value",
    "match_boolean",
    "match_date",
    "match_string",
    "parse_datetime",
]
