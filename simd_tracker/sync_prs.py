"""Sync pull requests that touch SIMDs, with their review discussion.

Pull requests are walked newest-updated first until one falls behind the
watermark. Each resolved PR is stored together with its issue and review
comments, and the per-PR message aggregates that drive summary staleness are
recomputed from the stored messages afterwards.
"""

import logging
import posixpath
from datetime import datetime, timedelta, timezone

from simd_tracker import config
from simd_tracker.db import SimdStore
from simd_tracker.github import GitHubClient, GitHubError, RateLimitExceeded, parse_github_time
from simd_tracker.jobs import next_cursor
from simd_tracker.parser import DEFAULT_STATUS, UNTITLED, clean_title, content_fingerprint, parse_proposal
from simd_tracker.resolver import resolve

JOB_TYPE = "prs"

EMPTY_DETAILS = {
    "last_commit_at": None,
    "last_commit_sha": None,
    "review_count": 0,
    "reviewer_logins": [],
}


def pull_state(pull: dict) -> str:
    if pull.get("merged_at"):
        return "merged"
    return pull.get("state") or "open"


def login_of(item: dict) -> str | None:
    return (item.get("user") or {}).get("login")


def fetch_head_content(client: GitHubClient, pull: dict, path: str) -> str | None:
    """The PR's proposal file at its head commit, or None when it cannot be read."""
    head_sha = (pull.get("head") or {}).get("sha")
    try:
        return client.get_file_content(path, ref=head_sha)
    except RateLimitExceeded:
        raise
    except GitHubError as exc:
        logging.warning("Could not fetch %s for PR #%d: %s", path, pull["number"], exc)
        return None


def document_fields(content: str) -> dict:
    parsed = parse_proposal(content)
    return {
        "title": parsed["title"],
        "status": parsed["status"],
        "summary": parsed["summary"],
        "topics": parsed["topics"],
        "proposal_content": content,
        "proposal_sha": content_fingerprint(content),
    }


def placeholder_record(client: GitHubClient, simd_id: str, pull: dict, path: str | None) -> dict:
    """Build a SIMD from the PR's proposal file at its head, or from its title."""
    content = fetch_head_content(client, pull, path) if path else None

    record = {
        "id": simd_id,
        "slug": posixpath.splitext(posixpath.basename(path))[0] if path else None,
        "source_stage": "pr",
        "pr_proposal_path": path,
    }
    if content:
        record.update(document_fields(content))
    else:
        record.update(
            {
                "title": clean_title(pull.get("title") or "") or UNTITLED,
                "status": DEFAULT_STATUS,
            }
        )
    return record


def refresh_placeholder(client: GitHubClient, store: SimdStore, simd_id: str, pull: dict, path: str) -> bool:
    """Re-read a PR-stage SIMD's proposal file at head; returns True when it changed.

    SIMDs already merged to main are left to the proposal engine.
    """
    existing = store.get_simd(simd_id)
    if not existing or existing.get("source_stage") != "pr":
        return False
    content = fetch_head_content(client, pull, path)
    if not content:
        return False
    fields = document_fields(content)
    if fields["proposal_sha"] == existing.get("proposal_sha"):
        return False

    store.upsert_simd({"id": simd_id, "pr_proposal_path": path, **fields})
    logging.info("Refreshed SIMD %s from PR #%d head: %s", simd_id, pull["number"], fields["title"])
    return True


def ensure_simd(client: GitHubClient, store: SimdStore, simd_id: str, pull: dict, path: str | None) -> bool:
    """Create a placeholder SIMD when none exists; returns True when created."""
    if store.simd_exists(simd_id):
        return False
    created = store.insert_simd_if_absent(placeholder_record(client, simd_id, pull, path))
    if created:
        logging.info("Created placeholder SIMD %s from PR #%d", simd_id, pull["number"])
    return created


def fetch_pull_details(client: GitHubClient, number: int) -> dict:
    """Commit and review aggregates; zeros when the lookup fails."""
    try:
        return client.get_pull_details(number)
    except RateLimitExceeded:
        raise
    except Exception as exc:
        logging.warning("Could not fetch details for PR #%d: %s", number, exc)
        return dict(EMPTY_DETAILS)


def message_row(simd_id: str, number: int, comment: dict, message_type: str) -> dict:
    return {
        "simd_id": simd_id,
        "pr_number": number,
        "github_id": int(comment["id"]),
        "type": message_type,
        "author": login_of(comment) or "ghost",
        "created_at": parse_github_time(comment.get("created_at")),
        "body": comment.get("body") or "",
        "url": comment.get("html_url"),
    }


def sync_pull_messages(client: GitHubClient, store: SimdStore, simd_id: str, number: int) -> int:
    """Store issue and review comments in order, then refresh aggregates."""
    messages = [message_row(simd_id, number, comment, "comment") for comment in client.list_issue_comments(number)]
    messages.extend(
        message_row(simd_id, number, comment, "review") for comment in client.list_review_comments(number)
    )
    messages.sort(key=lambda message: message["created_at"])

    for message in messages:
        store.upsert_message(message)
    stats = store.refresh_pr_message_stats(simd_id, number)
    logging.debug(
        "PR #%d has %d messages, last at %s",
        number,
        stats["total_message_count"],
        stats["last_message_at"],
    )
    return len(messages)


def sync_pull_request(client: GitHubClient, store: SimdStore, pull: dict) -> dict | None:
    """Resolve, store and enrich one pull request; None when it is not SIMD related."""
    number = pull["number"]
    files = client.list_pull_files(number)
    resolution = resolve({"number": number, "title": pull.get("title"), "files": files})
    if not resolution:
        logging.debug("PR #%d does not reference a SIMD", number)
        return None

    simd_id = resolution["simd_id"]
    path = resolution["proposal_file_path"]
    state = pull_state(pull)
    placeholder_created = ensure_simd(client, store, simd_id, pull, path)
    placeholder_refreshed = False
    if not placeholder_created and state == "open" and path:
        placeholder_refreshed = refresh_placeholder(client, store, simd_id, pull, path)
    details = fetch_pull_details(client, number)
    updated_at = parse_github_time(pull.get("updated_at"))

    store.upsert_pull_request(
        {
            "simd_id": simd_id,
            "pr_number": number,
            "pr_title": pull.get("title") or "",
            "state": state,
            "author": login_of(pull),
            "html_url": pull.get("html_url"),
            "head_sha": (pull.get("head") or {}).get("sha"),
            "base_ref": (pull.get("base") or {}).get("ref"),
            "head_ref": (pull.get("head") or {}).get("ref"),
            "created_at": parse_github_time(pull.get("created_at")),
            "updated_at": updated_at,
            "merged_at": parse_github_time(pull.get("merged_at")),
            "closed_at": parse_github_time(pull.get("closed_at")),
            "last_commit_at": details["last_commit_at"],
            "last_commit_sha": details["last_commit_sha"],
            "review_count": details["review_count"],
            "reviewer_logins": details["reviewer_logins"],
            "proposal_file_path": path,
        }
    )

    activity = [stamp for stamp in (updated_at, details["last_commit_at"]) if stamp]
    simd_update = {"id": simd_id}
    if activity:
        simd_update["last_pr_activity_at"] = max(activity)
        simd_update["last_activity_at"] = max(activity)
    if state == "open" and path:
        simd_update["pr_proposal_path"] = path
    if len(simd_update) > 1:
        store.upsert_simd(simd_update)

    messages_synced = sync_pull_messages(client, store, simd_id, number)
    logging.info("Synced PR #%d -> SIMD %s (%s, %d messages)", number, simd_id, state, messages_synced)
    return {
        "placeholder_created": placeholder_created,
        "placeholder_refreshed": placeholder_refreshed,
        "messages_synced": messages_synced,
    }


def walk_pulls(
    client: GitHubClient,
    store: SimdStore,
    state: str,
    since: datetime | None,
    seen: set[int],
    stats: dict,
    failed_at: list[datetime | None],
) -> None:
    """Process pages of pull requests until the watermark or the last page."""
    page = 1
    while True:
        pulls = client.list_pulls(state=state, page=page, per_page=config.PR_PAGE_SIZE)
        if not pulls:
            return

        for pull in pulls:
            updated_at = parse_github_time(pull.get("updated_at"))
            if since is not None and updated_at is not None and updated_at < since:
                logging.info("Reached pull requests last updated before %s", since.isoformat())
                return
            if pull["number"] in seen:
                continue
            seen.add(pull["number"])

            if stats["processed"] and stats["processed"] % config.RATE_LIMIT_CHECK_INTERVAL == 0:
                if client.quota_is_low():
                    logging.warning("GitHub quota below safety threshold; stopping after %d PRs", stats["processed"])
                    stats["stopped_early"] = True
                    return

            stats["processed"] += 1
            try:
                outcome = sync_pull_request(client, store, pull)
            except RateLimitExceeded:
                raise
            except Exception as exc:
                logging.exception("Failed to sync PR #%d: %s", pull["number"], exc)
                stats["failed"] += 1
                failed_at.append(updated_at)
                continue

            if outcome is None:
                stats["skipped"] += 1
                continue
            stats["synced"] += 1
            stats["messages_synced"] += outcome["messages_synced"]
            if outcome["placeholder_created"]:
                stats["placeholders_created"] += 1
            if outcome["placeholder_refreshed"]:
                stats["placeholders_refreshed"] += 1

        if len(pulls) < config.PR_PAGE_SIZE:
            return
        page += 1


def sync_prs(
    client: GitHubClient,
    store: SimdStore,
    since: datetime | None = None,
    include_all_open: bool = False,
    now: datetime | None = None,
) -> dict:
    """Sync pull requests updated since the watermark, optionally every open PR."""
    run_started_at = now or datetime.now(timezone.utc)
    cursor = store.get_cursor(JOB_TYPE)
    if since is None:
        since = cursor or run_started_at - timedelta(days=config.PR_LOOKBACK_DAYS)

    stats = {
        "processed": 0,
        "synced": 0,
        "skipped": 0,
        "failed": 0,
        "placeholders_created": 0,
        "placeholders_refreshed": 0,
        "messages_synced": 0,
        "stopped_early": False,
        "since": since.isoformat(),
    }
    logging.info("Syncing pull requests updated since %s", since.isoformat())

    if client.quota_is_low():
        logging.warning("GitHub quota below safety threshold; skipping PR sync")
        stats["stopped_early"] = True
        return stats

    seen: set[int] = set()
    failed_at: list[datetime | None] = []
    try:
        walk_pulls(client, store, "all", since, seen, stats, failed_at)
        if include_all_open and not stats["stopped_early"]:
            logging.info("Sweeping remaining open pull requests")
            # Sweep failures are retried by the next sweep, not the watermark.
            walk_pulls(client, store, "open", None, seen, stats, [])
    except RateLimitExceeded as exc:
        logging.warning("Rate limit hit during PR sync: %s", exc)
        stats["stopped_early"] = True

    if not stats["stopped_early"] and (cursor is None or since <= cursor):
        watermark = next_cursor(cursor, run_started_at, failed_at)
        if watermark is not None:
            store.set_cursor(JOB_TYPE, watermark)
        if failed_at:
            logging.warning("%d PRs failed; watermark held at the oldest failure", len(failed_at))

    logging.info(
        "PR sync done: processed=%d synced=%d skipped=%d failed=%d placeholders=%d messages=%d",
        stats["processed"],
        stats["synced"],
        stats["skipped"],
        stats["failed"],
        stats["placeholders_created"],
        stats["messages_synced"],
    )
    return stats
