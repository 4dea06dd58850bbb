"""Audit trail, run locking and watermark bookkeeping around engine invocations."""

import logging
from datetime import datetime
from typing import Callable

from simd_tracker.db import SimdStore


def next_cursor(cursor: datetime | None, run_started_at: datetime, failed_at: list[datetime | None]) -> datetime | None:
    """Where a watermark may move after a complete walk; None keeps it in place.

    The watermark never passes the oldest item that failed, so the next run
    walks back over it. A failed item without a timestamp pins the watermark.
    """
    if None in failed_at:
        return None
    candidate = min([run_started_at, *failed_at])
    if cursor is not None and candidate <= cursor:
        return None
    return candidate


def run_job(store: SimdStore, job_type: str, func: Callable[..., dict], *args, **kwargs) -> dict:
    """Run an engine under its advisory lock and record the outcome in sync_jobs."""
    if not store.try_lock(job_type):
        return {"skipped_locked": True}

    try:
        job_id = store.start_job(job_type)
        logging.info("Started %s job %s", job_type, job_id)
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            logging.exception("%s job %s failed: %s", job_type, job_id, exc)
            store.fail_job(job_id, str(exc) or exc.__class__.__name__)
            raise

        processed = int(result.get("processed", 0))
        store.complete_job(job_id, processed)
        if result.get("stopped_early"):
            logging.warning("%s job %s stopped early after %d records", job_type, job_id, processed)
        else:
            logging.info("%s job %s completed with %d records", job_type, job_id, processed)
        return {**result, "job_id": job_id}
    finally:
        store.release_lock(job_type)
