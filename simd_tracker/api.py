"""HTTP trigger surface for scheduled sync runs."""

import logging
import secrets
from typing import Annotated, Callable, Iterator

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse

from simd_tracker import config, sync_discussions, sync_proposals, sync_prs
from simd_tracker.db import SimdStore, get_db_connection
from simd_tracker.github import GitHubClient
from simd_tracker.jobs import run_job
from simd_tracker.pipeline import sync_all
from simd_tracker.summaries import SUMMARY_JOB_TYPE, generate_pr_summaries

app = FastAPI(title="SIMD Tracker")


def open_store() -> SimdStore:
    return SimdStore(get_db_connection())


def get_store_factory() -> Callable[[], SimdStore]:
    return open_store


def get_store(factory: Annotated[Callable[[], SimdStore], Depends(get_store_factory)]) -> Iterator[SimdStore]:
    store = factory()
    try:
        yield store
    finally:
        store.close()


def get_github_client() -> GitHubClient:
    return GitHubClient()


def require_cron_secret(authorization: Annotated[str | None, Header()] = None) -> None:
    """Accept only `Authorization: Bearer <CRON_SECRET>`."""
    expected = config.CRON_SECRET
    if not expected:
        logging.error("CRON_SECRET is not configured; rejecting trigger request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not authorization or not secrets.compare_digest(authorization, f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


Authorized = Annotated[None, Depends(require_cron_secret)]
Store = Annotated[SimdStore, Depends(get_store)]
Client = Annotated[GitHubClient, Depends(get_github_client)]


def run_engine(store: SimdStore, job_type: str, engine, *args, **kwargs) -> dict:
    try:
        result = run_job(store, job_type, engine, *args, **kwargs)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"{job_type} sync failed", "details": str(exc)},
        ) from exc
    return {"success": True, "results": result}


@app.get("/api/health")
def health(factory: Annotated[Callable[[], SimdStore], Depends(get_store_factory)]):
    try:
        store = factory()
        try:
            store.ping()
        finally:
            store.close()
    except Exception as exc:
        logging.error("Store unreachable: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "message": "data temporarily unavailable"},
        )
    return {"status": "ok"}


@app.get("/api/cron/sync-proposals")
def cron_sync_proposals(_: Authorized, store: Store, client: Client):
    return run_engine(store, sync_proposals.JOB_TYPE, sync_proposals.sync_proposals, client, store)


@app.get("/api/cron/sync-prs")
def cron_sync_prs(
    _: Authorized,
    store: Store,
    client: Client,
    include_all_open: Annotated[bool, Query(alias="includeAllOpen")] = False,
):
    return run_engine(
        store, sync_prs.JOB_TYPE, sync_prs.sync_prs, client, store, include_all_open=include_all_open
    )


@app.get("/api/cron/sync-discussions")
def cron_sync_discussions(_: Authorized, store: Store, client: Client):
    return run_engine(store, sync_discussions.JOB_TYPE, sync_discussions.sync_discussions, client, store)


@app.get("/api/cron/sync-all")
def cron_sync_all(_: Authorized, store: Store, client: Client):
    results = sync_all(client, store)
    succeeded = results.pop("success")
    return {
        "success": succeeded,
        "message": "All syncs completed" if succeeded else "Some syncs failed",
        "results": results,
    }


@app.get("/api/cron/generate-summaries")
def cron_generate_summaries(_: Authorized, store: Store):
    return run_engine(store, SUMMARY_JOB_TYPE, generate_pr_summaries, store)
