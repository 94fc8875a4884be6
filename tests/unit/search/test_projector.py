"""Tests for the index projection of canonical customer records."""

from __future__ import annotations

import pytest

from plotcrm.normalization import CanonicalRecord, normalize_record
from plotcrm.search.projector import fold_kana, index_key, project_record


def _customer(**overrides) -> dict:
    raw = {
        "trackingNo": "10234",
        "name": "ヤマダ タロウ",
        "nameKana": "ヤマダタロウ",
        "phone": {"original": "090-1234-5678", "cleaned": "09012345678"},
        "email": "taro@example.jp",
        "address": {"prefecture": "東京都", "city": "渋谷区", "town": "神南", "streetNumber": "1-2-3"},
        "branch": "渋谷",
        "customerCategory": "個人",
        "assignedTo": "佐藤",
        "memo": "墓所見学希望",
        "status": "active",
        "hasDeals": True,
        "hasTreeBurialDeals": False,
        "createdAt": "2025-01-10T09:00:00+09:00",
        "updatedAt": "2025-02-01T10:00:00+09:00",
    }
    raw.update(overrides)
    return raw


def test_fold_kana_maps_katakana_to_hiragana():
    assert fold_kana("ヤマダ タロウ") == "やまだ たろう"
    assert fold_kana("山田ヴァ") == "山田ゔぁ"
    assert fold_kana("ー・abc") == "ー・abc"
    assert fold_kana("") == ""


@pytest.mark.parametrize("text", ["カタカナ", "ひらがな", "混在カナかな", "ABC123", "ヶ月"])
def test_fold_kana_is_idempotent(text):
    assert fold_kana(fold_kana(text)) == fold_kana(text)


def test_mixed_script_names_match_either_script_query():
    stored = fold_kana("スズキ はなこ")
    assert fold_kana("すずき") in stored
    assert fold_kana("ハナコ") in stored


def test_index_key_prefers_tracking_number():
    assert index_key(CanonicalRecord(tracking_no="  77 "), "doc-1") == "77"
    assert index_key(CanonicalRecord(), "doc-1") == "doc-1"
    with pytest.raises(ValueError):
        index_key(CanonicalRecord(), "")


def test_project_record_serializes_camel_case_fields():
    record = project_record(normalize_record(_customer()), "fs-abc")
    payload = record.to_object()

    assert payload["objectID"] == "10234"
    assert payload["firestoreId"] == "fs-abc"
    assert payload["phone"] == "09012345678"
    assert payload["phoneOriginal"] == "090-1234-5678"
    assert payload["address"] == "東京都渋谷区神南1-2-3"
    assert payload["addressPrefecture"] == "東京都"
    assert payload["addressCity"] == "渋谷区"
    assert payload["searchName"] == "やまだ たろう"
    assert payload["searchNameKana"] == "やまだたろう"
    assert payload["hasDeals"] is True
    assert payload["hasBurialPersons"] is False


def test_projection_without_tracking_number_uses_storage_key():
    record = project_record(normalize_record(_customer(trackingNo="")), "fs-xyz")
    assert record.object_id == "fs-xyz"
    assert record.tracking_no == ""


def test_projection_round_trips_through_normalizer():
    """Normalizing an index object and projecting again yields the same object."""
    first = project_record(normalize_record(_customer()), "fs-abc")
    second = project_record(normalize_record(first.to_object()), "fs-abc")
    assert second == first


def test_projection_is_deterministic():
    raw = _customer(address='{"prefecture":"大阪府","city":"大阪市"}')
    assert project_record(normalize_record(raw), "k").to_object() == project_record(normalize_record(raw), "k").to_object()
