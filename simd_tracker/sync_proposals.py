"""Sync merged proposal documents into canonical SIMD records."""

import logging
import posixpath

from simd_tracker import config
from simd_tracker.db import SimdStore
from simd_tracker.github import GitHubClient, RateLimitExceeded
from simd_tracker.parser import content_fingerprint, parse_proposal
from simd_tracker.resolver import filename_simd_id

JOB_TYPE = "proposals"
ACCEPTED_STATUS = "Accepted"
POST_ACCEPTANCE_STATUSES = ("Implemented", "Activated", "Living")


def merged_status(declared: str) -> str:
    """A merged document is at least Accepted; later lifecycle states are kept."""
    return declared if declared in POST_ACCEPTANCE_STATUSES else ACCEPTED_STATUS


def list_proposal_documents(client: GitHubClient) -> list[dict]:
    """Markdown files in the proposals directory, ordered by path."""
    entries = client.list_directory(config.PROPOSALS_DIR)
    documents = [
        entry
        for entry in entries
        if entry.get("type") == "file" and entry.get("name", "").endswith(config.PROPOSAL_EXTENSION)
    ]
    return sorted(documents, key=lambda entry: entry["path"])


def proposal_is_unchanged(existing: dict | None, entry: dict) -> bool:
    if not existing or not entry.get("sha"):
        return False
    return (
        existing.get("proposal_sha") == entry["sha"]
        and existing.get("source_stage") == "main"
        and existing.get("main_proposal_path") == entry["path"]
    )


def sync_proposal(client: GitHubClient, store: SimdStore, simd_id: str, entry: dict) -> str:
    """Fetch, parse and upsert one document; returns created/updated/unchanged."""
    existing = store.get_simd(simd_id)
    if proposal_is_unchanged(existing, entry):
        logging.debug("SIMD %s unchanged (sha %s)", simd_id, entry["sha"])
        return "unchanged"

    path = entry["path"]
    content = client.get_file_content(path)
    updated_at = client.get_last_commit_date(path)
    parsed = parse_proposal(content)

    record = {
        "id": simd_id,
        "slug": posixpath.splitext(entry["name"])[0],
        "title": parsed["title"],
        "status": merged_status(parsed["status"]),
        "summary": parsed["summary"],
        "topics": parsed["topics"],
        "proposal_content": content,
        "proposal_sha": entry.get("sha") or content_fingerprint(content),
        "source_stage": "main",
        "main_proposal_path": path,
        "proposal_updated_at": updated_at,
        "last_activity_at": updated_at,
    }
    created = store.upsert_simd(record)
    logging.info("%s SIMD %s: %s", "Created" if created else "Updated", simd_id, parsed["title"])
    return "created" if created else "updated"


def sync_proposals(client: GitHubClient, store: SimdStore) -> dict:
    """Walk the proposals directory and upsert every changed document."""
    stats = {
        "processed": 0,
        "created": 0,
        "updated": 0,
        "unchanged": 0,
        "skipped": 0,
        "failed": 0,
        "stopped_early": False,
    }

    if client.quota_is_low():
        logging.warning("GitHub quota below safety threshold; skipping proposal sync")
        stats["stopped_early"] = True
        return stats

    documents = list_proposal_documents(client)
    logging.info("Found %d proposal documents in %s", len(documents), config.PROPOSALS_DIR)

    synced_paths: dict[str, str] = {}

    for entry in documents:
        if stats["processed"] and stats["processed"] % config.RATE_LIMIT_CHECK_INTERVAL == 0:
            if client.quota_is_low():
                logging.warning("GitHub quota below safety threshold; stopping after %d documents", stats["processed"])
                stats["stopped_early"] = True
                break

        stats["processed"] += 1
        simd_id = filename_simd_id(entry["name"])
        if not simd_id:
            logging.info("Skipping %s: no SIMD number in filename", entry["name"])
            stats["skipped"] += 1
            continue
        if simd_id in synced_paths:
            logging.warning(
                "Skipping %s: SIMD %s is already taken by %s", entry["path"], simd_id, synced_paths[simd_id]
            )
            stats["skipped"] += 1
            continue
        synced_paths[simd_id] = entry["path"]

        try:
            outcome = sync_proposal(client, store, simd_id, entry)
        except RateLimitExceeded as exc:
            logging.warning("Rate limit hit while syncing %s: %s", entry["name"], exc)
            stats["stopped_early"] = True
            break
        except Exception as exc:
            logging.exception("Failed to sync proposal %s: %s", entry["name"], exc)
            stats["failed"] += 1
            continue
        stats[outcome] += 1

    logging.info(
        "Proposal sync done: processed=%d created=%d updated=%d unchanged=%d skipped=%d failed=%d",
        stats["processed"],
        stats["created"],
        stats["updated"],
        stats["unchanged"],
        stats["skipped"],
        stats["failed"],
    )
    return stats
