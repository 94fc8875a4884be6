"""Pydantic models describing saved search lists and their filter conditions."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FieldType(str, Enum):
    """Declared value type of a filterable customer field."""

    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"
    SELECT = "select"


class FilterField(str, Enum):
    """Customer fields a saved search condition may reference."""

    TRACKING_NO = "trackingNo"
    NAME = "name"
    NAME_KANA = "nameKana"
    PHONE = "phone"
    BRANCH = "branch"
    PREFECTURE = "prefecture"
    CITY = "city"
    CUSTOMER_CATEGORY = "customerCategory"
    ASSIGNED_TO = "assignedTo"
    HAS_DEALS = "hasDeals"
    HAS_TREE_BURIAL_DEALS = "hasTreeBurialDeals"
    HAS_BURIAL_PERSONS = "hasBurialPersons"
    MEMO = "memo"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class FilterOperator(str, Enum):
    """Comparison operators across all field types."""

    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    NOT_CONTAINS = "notContains"
    NOT_EQUALS = "notEquals"
    NOT_STARTS_WITH = "notStartsWith"
    NOT_ENDS_WITH = "notEndsWith"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    IS_TRUE = "isTrue"
    IS_FALSE = "isFalse"
    BEFORE = "before"
    AFTER = "after"
    BETWEEN = "between"


class FieldDefinition(BaseModel):
    """Display label, declared type and select options for a filter field."""

    model_config = ConfigDict(frozen=True)

    field: FilterField
    label: str
    type: FieldType
    options: Tuple[str, ...] = ()


CUSTOMER_CATEGORIES: Tuple[str, ...] = (
    "個人",
    "寺院・宗教施設",
    "士業・専門家",
    "法人",
    "団体・組織",
    "不明",
)

FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {
    definition.field.value: definition
    for definition in (
        FieldDefinition(field=FilterField.TRACKING_NO, label="追客No", type=FieldType.STRING),
        FieldDefinition(field=FilterField.NAME, label="顧客名", type=FieldType.STRING),
        FieldDefinition(field=FilterField.NAME_KANA, label="フリガナ", type=FieldType.STRING),
        FieldDefinition(field=FilterField.PHONE, label="電話番号", type=FieldType.STRING),
        FieldDefinition(field=FilterField.BRANCH, label="拠点", type=FieldType.STRING),
        FieldDefinition(field=FilterField.PREFECTURE, label="都道府県", type=FieldType.STRING),
        FieldDefinition(field=FilterField.CITY, label="市区", type=FieldType.STRING),
        FieldDefinition(
            field=FilterField.CUSTOMER_CATEGORY,
            label="顧客区分",
            type=FieldType.SELECT,
            options=CUSTOMER_CATEGORIES,
        ),
        FieldDefinition(field=FilterField.ASSIGNED_TO, label="担当者", type=FieldType.STRING),
        FieldDefinition(field=FilterField.HAS_DEALS, label="一般商談", type=FieldType.BOOLEAN),
        FieldDefinition(field=FilterField.HAS_TREE_BURIAL_DEALS, label="樹木墓商談", type=FieldType.BOOLEAN),
        FieldDefinition(field=FilterField.HAS_BURIAL_PERSONS, label="樹木墓オプション", type=FieldType.BOOLEAN),
        FieldDefinition(field=FilterField.MEMO, label="備考", type=FieldType.STRING),
        FieldDefinition(field=FilterField.CREATED_AT, label="登録日", type=FieldType.DATE),
        FieldDefinition(field=FilterField.UPDATED_AT, label="更新日", type=FieldType.DATE),
    )
}

_STRING_OPERATORS = frozenset(
    {
        FilterOperator.CONTAINS,
        FilterOperator.EQUALS,
        FilterOperator.STARTS_WITH,
        FilterOperator.ENDS_WITH,
        FilterOperator.NOT_CONTAINS,
        FilterOperator.NOT_EQUALS,
        FilterOperator.NOT_STARTS_WITH,
        FilterOperator.NOT_ENDS_WITH,
        FilterOperator.IS_EMPTY,
        FilterOperator.IS_NOT_EMPTY,
    }
)

OPERATORS_BY_TYPE: Dict[FieldType, frozenset[FilterOperator]] = {
    FieldType.STRING: _STRING_OPERATORS,
    FieldType.SELECT: frozenset(
        {FilterOperator.EQUALS, FilterOperator.NOT_EQUALS, FilterOperator.IS_EMPTY, FilterOperator.IS_NOT_EMPTY}
    ),
    FieldType.BOOLEAN: frozenset({FilterOperator.IS_TRUE, FilterOperator.IS_FALSE}),
    FieldType.DATE: frozenset(
        {
            FilterOperator.EQUALS,
            FilterOperator.BEFORE,
            FilterOperator.AFTER,
            FilterOperator.BETWEEN,
            FilterOperator.IS_EMPTY,
            FilterOperator.IS_NOT_EMPTY,
        }
    ),
}

OPERATOR_LABELS: Dict[FilterOperator, str] = {
    FilterOperator.CONTAINS: "含む",
    FilterOperator.EQUALS: "完全一致",
    FilterOperator.STARTS_WITH: "先頭が一致",
    FilterOperator.ENDS_WITH: "末尾が一致",
    FilterOperator.NOT_CONTAINS: "含まない",
    FilterOperator.NOT_EQUALS: "完全一致しない",
    FilterOperator.NOT_STARTS_WITH: "先頭が一致しない",
    FilterOperator.NOT_ENDS_WITH: "末尾が一致しない",
    FilterOperator.IS_EMPTY: "空白である",
    FilterOperator.IS_NOT_EMPTY: "空白でない",
    FilterOperator.IS_TRUE: "あり",
    FilterOperator.IS_FALSE: "なし",
    FilterOperator.BEFORE: "より前",
    FilterOperator.AFTER: "より後",
    FilterOperator.BETWEEN: "期間内",
}


def _new_id() -> str:
    return str(uuid.uuid4())


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_text(value: object) -> str | None:
    """Render stored values (numbers, Firestore timestamps) as condition text."""

    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class FilterCondition(BaseModel):
    """A single comparison inside an OR group.

    ``field`` and ``operator`` are kept as plain strings so that legacy or
    corrupted documents still load; the evaluator treats anything outside
    :class:`FilterField` / :data:`OPERATORS_BY_TYPE` as a no-op filter.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=_new_id)
    field: str = FilterField.NAME.value
    operator: str = FilterOperator.CONTAINS.value
    value: str = ""
    value2: str | None = None

    @field_validator("field", "operator", mode="before")
    @classmethod
    def _coerce_name(cls, value: object) -> str:
        return _as_text(value) or ""

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: object) -> str:
        return _as_text(value) or ""

    @field_validator("value2", mode="before")
    @classmethod
    def _coerce_value2(cls, value: object) -> str | None:
        return _as_text(value)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        return _as_text(value) or _new_id()

    @property
    def definition(self) -> FieldDefinition | None:
        """Field definition for known fields, ``None`` otherwise."""

        return FIELD_DEFINITIONS.get(self.field)


class FilterConditionGroup(BaseModel):
    """Conditions combined with OR."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=_new_id)
    conditions: List[FilterCondition] = Field(default_factory=list)


class SavedSearchList(BaseModel):
    """Named filter expression: groups combined with AND."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    description: str | None = None
    is_system: bool = Field(default=False, alias="isSystem")
    condition_groups: List[FilterConditionGroup] = Field(default_factory=list, alias="conditionGroups")
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    updated_at: str = Field(default_factory=_now_iso, alias="updatedAt")
    created_by: str | None = Field(default=None, alias="createdBy")


def new_condition(field: FilterField | str = FilterField.NAME) -> FilterCondition:
    """Return a blank ``contains`` condition for ``field``."""

    return FilterCondition(field=field, operator=FilterOperator.CONTAINS)


def new_condition_group() -> FilterConditionGroup:
    """Return a group seeded with one blank condition."""

    return FilterConditionGroup(conditions=[new_condition()])


# System list definitions; timestamps are assigned when the lists are read.
SYSTEM_LIST_DEFINITIONS: Tuple[Dict[str, object], ...] = (
    {"id": "all", "name": "全顧客一覧", "conditionGroups": []},
    {
        "id": "has-tree-burial-deals",
        "name": "樹木墓商談あり",
        "conditionGroups": [
            {
                "id": "g1",
                "conditions": [
                    {"id": "c1", "field": FilterField.HAS_TREE_BURIAL_DEALS.value, "operator": "isTrue", "value": ""}
                ],
            }
        ],
    },
    {
        "id": "has-general-deals",
        "name": "一般商談あり",
        "conditionGroups": [
            {
                "id": "g1",
                "conditions": [{"id": "c1", "field": FilterField.HAS_DEALS.value, "operator": "isTrue", "value": ""}],
            }
        ],
    },
)

SYSTEM_LIST_IDS = frozenset(str(definition["id"]) for definition in SYSTEM_LIST_DEFINITIONS)


def system_lists(timestamp: str | None = None) -> List[SavedSearchList]:
    """Build the immutable system lists in their fixed display order."""

    stamp = timestamp or _now_iso()
    return [
        SavedSearchList.model_validate({**definition, "isSystem": True, "createdAt": stamp, "updatedAt": stamp})
        for definition in SYSTEM_LIST_DEFINITIONS
    ]


def get_system_list(list_id: str, timestamp: str | None = None) -> SavedSearchList | None:
    """Return the system list with ``list_id`` or ``None``."""

    for saved in system_lists(timestamp):
        if saved.id == list_id:
            return saved
    return None


__all__ = [
    "CUSTOMER_CATEGORIES",
    "FIELD_DEFINITIONS",
    "FieldDefinition",
    "FieldType",
    "FilterCondition",
    "FilterConditionGroup",
    "FilterField",
    "FilterOperator",
    "OPERATORS_BY_TYPE",
    "OPERATOR_LABELS",
    "SYSTEM_LIST_IDS",
    "SavedSearchList",
    "get_system_list",
    "new_condition",
    "new_condition_group",
    "system_lists",
]
