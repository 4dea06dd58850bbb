"""Composed runs of the sync engines."""

import logging

from simd_tracker import sync_discussions, sync_proposals, sync_prs
from simd_tracker.db import SimdStore
from simd_tracker.github import GitHubClient
from simd_tracker.jobs import run_job

# Proposals first so PRs and discussions can link to existing SIMDs.
SYNC_ENGINES = (
    (sync_proposals.JOB_TYPE, sync_proposals.sync_proposals),
    (sync_prs.JOB_TYPE, sync_prs.sync_prs),
    (sync_discussions.JOB_TYPE, sync_discussions.sync_discussions),
)


def sync_all(client: GitHubClient, store: SimdStore) -> dict:
    """Run every engine in order; one engine failing does not stop the next."""
    results = {}
    for job_type, engine in SYNC_ENGINES:
        try:
            results[job_type] = {"success": True, **run_job(store, job_type, engine, client, store)}
        except Exception as exc:
            logging.error("%s sync failed during full run: %s", job_type, exc)
            results[job_type] = {"success": False, "error": str(exc)}
    results["success"] = all(results[job_type]["success"] for job_type, _ in SYNC_ENGINES)
    return results
