"""AND-of-OR evaluation of saved search lists."""

from __future__ import annotations

from typing import Iterable, List, Sequence, TypeVar

from plotcrm.filters.conditions import evaluate_condition
from plotcrm.filters.models import FilterConditionGroup
from plotcrm.normalization.schema import CanonicalRecord

T = TypeVar("T")


def evaluate_group(record: CanonicalRecord, group: FilterConditionGroup) -> bool:
    """OR over the group's conditions; a group without conditions is a no-op (``True``)."""

    if not group.conditions:
        return True
    return any(evaluate_condition(record, condition) for condition in group.conditions)


def evaluate_groups(record: CanonicalRecord, groups: Sequence[FilterConditionGroup]) -> bool:
    """AND over ``groups``; an empty sequence applies no filter."""

    return all(evaluate_group(record, group) for group in groups)


def filter_records(
    records: Iterable[CanonicalRecord],
    groups: Sequence[FilterConditionGroup],
) -> List[CanonicalRecord]:
    """Return the records matching ``groups``, preserving input order."""

    if not groups:
        return list(records)
    return [record for record in records if evaluate_groups(record, groups)]


def filter_pairs(
    pairs: Iterable[tuple[CanonicalRecord, T]],
    groups: Sequence[FilterConditionGroup],
) -> List[T]:
    """Filter arbitrary payloads by their canonical record, preserving order."""

    return [payload for record, payload in pairs if evaluate_groups(record, groups)]


__all__ = ["evaluate_group", "evaluate_groups", "filter_pairs", "filter_records"]
