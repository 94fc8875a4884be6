"""Tests for AND-of-OR saved search evaluation."""

from __future__ import annotations

from plotcrm.filters.expressions import evaluate_group, evaluate_groups, filter_pairs, filter_records
from plotcrm.filters.models import FilterCondition, FilterConditionGroup, get_system_list
from plotcrm.normalization import CanonicalRecord

TREE = CanonicalRecord(tracking_no="1", name="山田", has_tree_burial_deals=True, address_prefecture="東京都")
GENERAL = CanonicalRecord(tracking_no="2", name="鈴木", has_deals=True, address_prefecture="大阪府")
NONE = CanonicalRecord(tracking_no="3", name="佐藤", address_prefecture="東京都")


def _group(*conditions: tuple[str, str, str]) -> FilterConditionGroup:
    return FilterConditionGroup(
        conditions=[FilterCondition(field=field, operator=operator, value=value) for field, operator, value in conditions]
    )


def test_empty_groups_apply_no_filter():
    assert evaluate_groups(NONE, []) is True
    assert filter_records([TREE, GENERAL, NONE], []) == [TREE, GENERAL, NONE]


def test_group_without_conditions_is_a_no_op():
    empty = FilterConditionGroup(conditions=[])
    assert evaluate_group(NONE, empty) is True
    assert evaluate_groups(GENERAL, [empty, _group(("hasDeals", "isTrue", ""))]) is True


def test_or_within_group():
    either = _group(("hasDeals", "isTrue", ""), ("hasTreeBurialDeals", "isTrue", ""))
    assert filter_records([TREE, GENERAL, NONE], [either]) == [TREE, GENERAL]


def test_and_across_groups():
    groups = [
        _group(("prefecture", "equals", "東京都")),
        _group(("hasDeals", "isTrue", ""), ("hasTreeBurialDeals", "isTrue", "")),
    ]
    assert filter_records([TREE, GENERAL, NONE], groups) == [TREE]


def test_tree_burial_system_list_returns_only_flagged_customers():
    saved = get_system_list("has-tree-burial-deals")
    assert saved is not None
    assert saved.name == "樹木墓商談あり"
    assert filter_records([TREE, GENERAL, NONE], saved.condition_groups) == [TREE]


def test_all_customers_system_list_keeps_everything():
    saved = get_system_list("all")
    assert filter_records([TREE, GENERAL, NONE], saved.condition_groups) == [TREE, GENERAL, NONE]


def test_corrupted_condition_does_not_hide_records():
    groups = [_group(("noSuchField", "equals", "x")), _group(("hasDeals", "contains", "x"))]
    assert filter_records([TREE, GENERAL, NONE], groups) == [TREE, GENERAL, NONE]


def test_filter_pairs_preserves_order_and_payloads():
    pairs = [(NONE, "c"), (GENERAL, "b"), (TREE, "a")]
    groups = [_group(("name", "notEquals", "鈴木"))]
    assert filter_pairs(pairs, groups) == ["c", "a"]


def test_evaluation_does_not_mutate_inputs():
    groups = [_group(("name", "contains", "山"))]
    before = [group.model_dump() for group in groups]
    filter_records([TREE, GENERAL, NONE], groups)
    filter_records([TREE, GENERAL, NONE], groups)
    assert [group.model_dump() for group in groups] == before
