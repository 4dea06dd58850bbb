"""SimdStore against a real Postgres; set TEST_DATABASE_URL to run."""

import os
import uuid

import pytest
from psycopg import sql

from simd_tracker.db import SimdStore, get_db_connection
from tests.fakes import NOW, ts

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL is not set")


@pytest.fixture
def pg_store():
    conn = get_db_connection(TEST_DATABASE_URL)
    schema = sql.Identifier(f"simd_test_{uuid.uuid4().hex[:12]}")
    conn.execute(sql.SQL("CREATE SCHEMA {}").format(schema))
    conn.execute(sql.SQL("SET search_path TO {}").format(schema))
    store = SimdStore(conn)
    store.init_schema()
    yield store
    conn.execute(sql.SQL("DROP SCHEMA {} CASCADE").format(schema))
    conn.close()


def add_pr(store, simd_id="0042", number=1, state="open"):
    store.upsert_simd({"id": simd_id, "title": "Foo", "source_stage": "pr"})
    store.upsert_pull_request(
        {
            "simd_id": simd_id,
            "pr_number": number,
            "pr_title": "SIMD-0042 tweak",
            "state": state,
            "author": "alice",
            "created_at": ts(days_ago=3),
            "updated_at": ts(days_ago=1),
            "reviewer_logins": ["bob"],
        }
    )


def message(github_id, body, created_at, simd_id="0042", number=1, message_type="comment"):
    return {
        "simd_id": simd_id,
        "pr_number": number,
        "github_id": github_id,
        "type": message_type,
        "author": "bob",
        "created_at": created_at,
        "body": body,
        "url": None,
    }


def test_simd_upsert_merges_by_rule(pg_store):
    assert pg_store.upsert_simd(
        {"id": "0042", "title": "Foo", "topics": ["Core"], "source_stage": "pr", "last_activity_at": ts(days_ago=1)}
    )
    assert not pg_store.upsert_simd(
        {"id": "0042", "title": "", "summary": None, "source_stage": "discussion", "last_activity_at": ts(days_ago=5)}
    )

    simd = pg_store.get_simd("0042")
    assert simd["title"] == "Foo"
    assert simd["topics"] == ["Core"]
    assert simd["source_stage"] == "pr"
    assert simd["last_activity_at"] == ts(days_ago=1)

    pg_store.upsert_simd({"id": "0042", "source_stage": "main", "status": "Accepted"})
    simd = pg_store.get_simd("0042")
    assert simd["source_stage"] == "main"
    assert simd["status"] == "Accepted"


def test_insert_if_absent_never_overwrites(pg_store):
    assert pg_store.insert_simd_if_absent({"id": "0900", "title": "Placeholder", "source_stage": "pr"})
    assert not pg_store.insert_simd_if_absent({"id": "0900", "title": "Other", "source_stage": "pr"})
    assert pg_store.get_simd("0900")["title"] == "Placeholder"


def test_pr_author_is_immutable(pg_store):
    add_pr(pg_store)
    pg_store.upsert_pull_request(
        {"simd_id": "0042", "pr_number": 1, "pr_title": "Renamed", "state": "merged", "author": "mallory"}
    )

    with pg_store.conn.cursor() as cur:
        cur.execute("SELECT author, pr_title, state FROM simd_prs WHERE simd_id = '0042' AND pr_number = 1")
        assert cur.fetchone() == ("alice", "Renamed", "merged")


def test_messages_are_unique_and_aggregated(pg_store):
    add_pr(pg_store)
    assert pg_store.upsert_message(message(7, "original", ts(days_ago=2)))
    assert not pg_store.upsert_message(message(7, "edited", ts(days_ago=2)))
    pg_store.upsert_message(message(8, "review note", ts(days_ago=1), message_type="review"))

    stats = pg_store.refresh_pr_message_stats("0042", 1)

    assert stats["total_message_count"] == 2
    assert stats["last_message_at"] == ts(days_ago=1)
    rows = pg_store.list_pr_messages("0042", 1)
    assert [row["body"] for row in rows] == ["edited", "review note"]
    assert [row["body"] for row in pg_store.list_pr_messages("0042", 1, after=ts(days_ago=2))] == ["review note"]


def test_staleness_view_tracks_summary_snapshot(pg_store):
    add_pr(pg_store)
    pg_store.upsert_message(message(1, "hello", ts(days_ago=2)))
    pg_store.refresh_pr_message_stats("0042", 1)

    [candidate] = pg_store.list_prs_needing_summaries()
    assert candidate["summary_status"] == "no_summary"

    pg_store.save_pr_summary(
        {
            "simd_id": "0042",
            "pr_number": 1,
            "summary": "People said hello.",
            "message_count": 1,
            "last_message_at": ts(days_ago=2),
            "model": "test-model",
        }
    )
    assert pg_store.list_prs_needing_summaries() == []

    pg_store.upsert_message(message(2, "again", ts(days_ago=1)))
    pg_store.refresh_pr_message_stats("0042", 1)
    [candidate] = pg_store.list_prs_needing_summaries()
    assert candidate["summary_status"] == "new_messages"

    pg_store.update_summary_snapshot("0042", 1, 2, ts(days_ago=1))
    assert pg_store.list_prs_needing_summaries() == []


def test_closed_prs_are_not_summary_candidates(pg_store):
    add_pr(pg_store, state="closed")
    pg_store.upsert_message(message(1, "hello", ts(days_ago=2)))
    pg_store.refresh_pr_message_stats("0042", 1)

    assert pg_store.list_prs_needing_summaries() == []


def test_cursor_round_trip(pg_store):
    assert pg_store.get_cursor("prs") is None
    pg_store.set_cursor("prs", ts(days_ago=1))
    pg_store.set_cursor("prs", NOW)
    assert pg_store.get_cursor("prs") == NOW


def test_job_lifecycle_and_locks(pg_store):
    assert pg_store.try_lock("prs")
    other = SimdStore(get_db_connection(TEST_DATABASE_URL))
    try:
        assert not other.try_lock("prs")
        assert other.try_lock("discussions")
        other.release_lock("discussions")
    finally:
        other.close()
    pg_store.release_lock("prs")

    job_id = pg_store.start_job("prs")
    pg_store.complete_job(job_id, 12)
    with pg_store.conn.cursor() as cur:
        cur.execute("SELECT status, records_processed, completed_at IS NOT NULL FROM sync_jobs WHERE id = %s", (job_id,))
        assert cur.fetchone() == ("completed", 12, True)


def test_discussion_comments_reference_their_discussion(pg_store):
    discussion_id = pg_store.upsert_discussion(
        {
            "simd_id": "0777",
            "github_discussion_id": "D_1",
            "discussion_number": 1,
            "title": "Idea: SIMD-0777",
            "url": None,
            "author": "carol",
            "body": "",
            "created_at": ts(days_ago=2),
            "updated_at": ts(days_ago=1),
            "comment_count": 1,
            "category_slug": "ideas",
        }
    )
    pg_store.upsert_discussion_comment(
        {
            "discussion_id": discussion_id,
            "github_comment_id": "DC_1",
            "author": "bob",
            "created_at": ts(days_ago=1),
            "body": "+1",
            "url": None,
        }
    )

    [row] = pg_store.list_recent_discussions(ts(days_ago=3))
    assert row["simd_id"] == "0777"
    assert row["discussion_number"] == 1
