from simd_tracker.github import GitHubError
from simd_tracker.pipeline import sync_all
from tests.fakes import make_comment, make_discussion, make_pull, ts

FOO = "---\ntitle: Foo Proposal\nstatus: Accepted\n---\n\n## Summary\n\nFoo does things.\n"
BAR = "---\ntitle: Bar Improvements\n---\n\n## Summary\n\nBar makes blocks smaller.\n"


def seed_repository(github):
    github.add_proposal("0042-foo.md", FOO, "sha-foo", ts(days_ago=3))

    github.pulls.append(make_pull(900, "Add Bar proposal", ts(days_ago=1), head_sha="cafe"))
    github.pull_files[900] = ["proposals/XXXX-bar.md"]
    github.files[("proposals/XXXX-bar.md", "cafe")] = BAR
    github.issue_comments[900] = [make_comment(1, "bob", "Looks good", ts(days_ago=1, hours_ago=2))]

    github.discussions.append(make_discussion("D_1", 7, "Feedback on SIMD-0042", ts(days_ago=1)))


def test_full_run_links_proposals_prs_and_discussions(github, store):
    seed_repository(github)
    store.set_cursor("prs", ts(days_ago=10))

    results = sync_all(github, store)

    assert results["success"] is True
    assert [job["status"] for job in store.jobs.values()] == ["completed"] * 3

    foo = store.simds["0042"]
    assert foo["source_stage"] == "main"
    assert foo["status"] == "Accepted"
    assert foo["last_activity_at"] == ts(days_ago=1)

    bar = store.simds["0900"]
    assert bar["source_stage"] == "pr"
    assert bar["status"] == "Draft"
    assert bar["title"] == "Bar Improvements"
    assert store.prs[("0900", 900)]["total_message_count"] == 1

    discussion = store.discussions["D_1"]
    assert discussion["simd_id"] == "0042"


def test_engine_failure_does_not_block_later_engines(github, store):
    seed_repository(github)
    store.set_cursor("prs", ts(days_ago=10))
    github.fail("list_pulls", GitHubError("boom"))

    results = sync_all(github, store)

    assert results["success"] is False
    assert results["proposals"]["success"] is True
    assert results["prs"] == {"success": False, "error": "boom"}
    assert results["discussions"]["success"] is True
    assert results["discussions"]["discussions_synced"] == 1
    statuses = {job["job_type"]: job["status"] for job in store.jobs.values()}
    assert statuses == {"proposals": "completed", "prs": "failed", "discussions": "completed"}


def test_held_lock_skips_only_that_engine(github, store):
    seed_repository(github)
    store.locks.add("discussions")

    results = sync_all(github, store)

    assert results["discussions"] == {"success": True, "skipped_locked": True}
    assert "D_1" not in store.discussions
    assert "0042" in store.simds
