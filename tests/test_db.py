from datetime import datetime, timezone

import pytest

from simd_tracker.db import merge_simd, simd_upsert_sql, stage_rank

T1 = datetime(2026, 1, 1, tzinfo=timezone.utc)
T2 = datetime(2026, 2, 1, tzinfo=timezone.utc)


def test_merge_into_nothing_returns_incoming():
    assert merge_simd(None, {"id": "0042", "title": "Foo"}) == {"id": "0042", "title": "Foo"}


def test_non_null_incoming_wins_but_nulls_never_erase():
    existing = {"id": "0042", "title": "Old", "summary": "Known summary"}
    merged = merge_simd(existing, {"id": "0042", "title": "New", "summary": None})
    assert merged["title"] == "New"
    assert merged["summary"] == "Known summary"


def test_empty_strings_do_not_erase_known_values():
    merged = merge_simd({"id": "0042", "summary": "Known"}, {"id": "0042", "summary": ""})
    assert merged["summary"] == "Known"


@pytest.mark.parametrize("first, second", [(T1, T2), (T2, T1)])
def test_last_activity_never_decreases(first, second):
    merged = merge_simd({"id": "0042", "last_activity_at": first}, {"id": "0042", "last_activity_at": second})
    assert merged["last_activity_at"] == T2


def test_null_activity_keeps_existing():
    merged = merge_simd({"id": "0042", "last_activity_at": T1}, {"id": "0042", "last_activity_at": None})
    assert merged["last_activity_at"] == T1


def test_source_stage_keeps_most_advanced():
    assert merge_simd({"source_stage": "main"}, {"source_stage": "pr"})["source_stage"] == "main"
    assert merge_simd({"source_stage": "pr"}, {"source_stage": "main"})["source_stage"] == "main"
    assert merge_simd({"source_stage": "discussion"}, {"source_stage": "pr"})["source_stage"] == "pr"
    assert stage_rank(None) == 0


def test_fields_absent_from_incoming_are_untouched():
    existing = {"id": "0042", "title": "Keep", "status": "Accepted"}
    assert merge_simd(existing, {"id": "0042", "last_activity_at": T1})["status"] == "Accepted"


def test_upsert_sql_follows_merge_rules():
    sql = simd_upsert_sql(["id", "title", "last_activity_at", "source_stage"])
    assert "ON CONFLICT (id) DO UPDATE SET" in sql
    assert "title = COALESCE(EXCLUDED.title, simds.title)" in sql
    assert "last_activity_at = GREATEST(simds.last_activity_at, EXCLUDED.last_activity_at)" in sql
    assert "array_position" in sql
    assert "RETURNING (xmax = 0) AS inserted" in sql
    assert "%(title)s" in sql


def test_upsert_sql_rejects_unknown_columns():
    with pytest.raises(ValueError):
        simd_upsert_sql(["id", "bogus"])
