"""Sync GitHub Discussions in the tracked categories."""

import logging
from datetime import datetime, timezone

from simd_tracker import config
from simd_tracker.db import SimdStore
from simd_tracker.github import GitHubClient, RateLimitExceeded, parse_github_time
from simd_tracker.jobs import next_cursor
from simd_tracker.resolver import extract_simd_id

JOB_TYPE = "discussions"


def author_login(node: dict) -> str | None:
    return (node.get("author") or {}).get("login")


def discussion_simd_id(node: dict) -> str | None:
    """Title reference wins over body reference."""
    return extract_simd_id(node.get("title")) or extract_simd_id(node.get("body"))


def sync_discussion(client: GitHubClient, store: SimdStore, node: dict) -> int:
    """Store one discussion and its latest comments; returns the comment count."""
    number = node["number"]
    simd_id = discussion_simd_id(node)
    updated_at = parse_github_time(node.get("updatedAt"))

    simd_known = bool(simd_id) and store.simd_exists(simd_id)
    if simd_id and not simd_known:
        logging.info("Discussion #%d references SIMD %s which is not tracked yet", number, simd_id)

    discussion_id = store.upsert_discussion(
        {
            "simd_id": simd_id,
            "github_discussion_id": node["id"],
            "discussion_number": number,
            "title": node.get("title") or "",
            "url": node.get("url"),
            "author": author_login(node),
            "body": node.get("body"),
            "created_at": parse_github_time(node.get("createdAt")),
            "updated_at": updated_at,
            "comment_count": int((node.get("comments") or {}).get("totalCount") or 0),
            "category_slug": (node.get("category") or {}).get("slug"),
        }
    )
    if simd_known and updated_at:
        store.upsert_simd({"id": simd_id, "last_activity_at": updated_at})

    comments = client.list_discussion_comments(number, config.DISCUSSION_COMMENT_LIMIT)
    for comment in comments:
        store.upsert_discussion_comment(
            {
                "discussion_id": discussion_id,
                "github_comment_id": comment["id"],
                "author": author_login(comment),
                "created_at": parse_github_time(comment.get("createdAt")),
                "body": comment.get("body"),
                "url": comment.get("url"),
            }
        )
    logging.info("Synced discussion #%d (SIMD %s, %d comments)", number, simd_id or "-", len(comments))
    return len(comments)


def walk_discussions(
    client: GitHubClient,
    store: SimdStore,
    categories: set[str],
    since: datetime | None,
    stats: dict,
    failed_at: list[datetime | None],
) -> None:
    page_cursor = None
    while True:
        page = client.list_discussions(page_cursor)
        for node in page["nodes"]:
            updated_at = parse_github_time(node.get("updatedAt"))
            if since is not None and updated_at is not None and updated_at < since:
                logging.info("Reached discussions last updated before %s", since.isoformat())
                return

            category = (node.get("category") or {}).get("slug")
            if category not in categories:
                stats["skipped"] += 1
                continue

            if stats["processed"] and stats["processed"] % config.RATE_LIMIT_CHECK_INTERVAL == 0:
                if client.quota_is_low():
                    logging.warning(
                        "GitHub quota below safety threshold; stopping after %d discussions", stats["processed"]
                    )
                    stats["stopped_early"] = True
                    return

            stats["processed"] += 1
            try:
                comments = sync_discussion(client, store, node)
            except RateLimitExceeded:
                raise
            except Exception as exc:
                logging.exception("Failed to sync discussion #%s: %s", node.get("number"), exc)
                stats["failed"] += 1
                failed_at.append(updated_at)
                continue
            stats["discussions_synced"] += 1
            stats["comments_synced"] += comments

        if not page["has_next_page"] or not page["end_cursor"]:
            return
        page_cursor = page["end_cursor"]


def sync_discussions(
    client: GitHubClient,
    store: SimdStore,
    since: datetime | None = None,
    categories: list[str] | None = None,
    now: datetime | None = None,
) -> dict:
    """Sync discussions in the allowed categories, newest first."""
    run_started_at = now or datetime.now(timezone.utc)
    allowed = set(categories or config.DISCUSSION_CATEGORIES)
    cursor = store.get_cursor(JOB_TYPE)
    if since is None:
        since = cursor

    stats = {
        "processed": 0,
        "discussions_synced": 0,
        "comments_synced": 0,
        "skipped": 0,
        "failed": 0,
        "stopped_early": False,
    }
    logging.info(
        "Syncing discussions in %s%s",
        ", ".join(sorted(allowed)),
        f" updated since {since.isoformat()}" if since else "",
    )

    if client.quota_is_low():
        logging.warning("GitHub quota below safety threshold; skipping discussion sync")
        stats["stopped_early"] = True
        return stats

    failed_at: list[datetime | None] = []
    try:
        walk_discussions(client, store, allowed, since, stats, failed_at)
    except RateLimitExceeded as exc:
        logging.warning("Rate limit hit during discussion sync: %s", exc)
        stats["stopped_early"] = True

    full_walk = categories is None and (cursor is None or (since is not None and since <= cursor))
    if not stats["stopped_early"] and full_walk:
        watermark = next_cursor(cursor, run_started_at, failed_at)
        if watermark is not None:
            store.set_cursor(JOB_TYPE, watermark)
        if failed_at:
            logging.warning("%d discussions failed; watermark held at the oldest failure", len(failed_at))

    logging.info(
        "Discussion sync done: processed=%d discussions=%d comments=%d skipped=%d failed=%d",
        stats["processed"],
        stats["discussions_synced"],
        stats["comments_synced"],
        stats["skipped"],
        stats["failed"],
    )
    return stats
