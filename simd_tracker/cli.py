"""Command line entry point for the SIMD tracker."""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import uvicorn

from simd_tracker import config, sync_discussions, sync_proposals, sync_prs
from simd_tracker.db import SimdStore, get_db_connection
from simd_tracker.digest import build_digest
from simd_tracker.github import GitHubClient
from simd_tracker.jobs import run_job
from simd_tracker.pipeline import sync_all
from simd_tracker.summaries import SUMMARY_JOB_TYPE, generate_pr_summaries

SUBCOMMANDS_WITHOUT_GITHUB = {"init-db", "summarize", "digest", "serve"}


def parse_since(value: str) -> datetime:
    """Parse an ISO date or timestamp; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {value}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Sync SIMD proposals, pull requests and discussions from GitHub.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables, indexes and views.")
    subparsers.add_parser("quota", help="Show the remaining GitHub API quota.")
    subparsers.add_parser("sync-proposals", help="Sync merged proposal documents.")

    prs = subparsers.add_parser("sync-prs", help="Sync SIMD pull requests and their messages.")
    prs.add_argument("--since", type=parse_since, help="Override the stored watermark (ISO date).")
    prs.add_argument(
        "--include-all-open",
        action="store_true",
        help="Also sweep open pull requests older than the watermark.",
    )

    subparsers.add_parser("sync-discussions", help="Sync GitHub Discussions in the tracked categories.")
    subparsers.add_parser("sync-all", help="Run proposal, PR and discussion sync in order.")

    summarize = subparsers.add_parser("summarize", help="Generate AI summaries for PR discussions.")
    summarize.add_argument("--limit", type=int, default=config.SUMMARY_BATCH_LIMIT)

    digest = subparsers.add_parser("digest", help="Render the Markdown activity digest.")
    digest.add_argument("--days", type=int, default=config.DIGEST_DAYS)
    digest.add_argument("--output", type=Path, help="Write to a file instead of stdout.")

    serve = subparsers.add_parser("serve", help="Serve the HTTP trigger endpoints.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def run_command(args: argparse.Namespace, store: SimdStore, client: GitHubClient | None) -> dict | None:
    if args.command == "init-db":
        store.init_schema()
        logging.info("Database schema is ready")
        return None
    if args.command == "quota":
        quota = client.check_quota()
        return {**quota, "reset_at": quota["reset_at"].isoformat()}
    if args.command == "sync-proposals":
        return run_job(store, sync_proposals.JOB_TYPE, sync_proposals.sync_proposals, client, store)
    if args.command == "sync-prs":
        return run_job(
            store,
            sync_prs.JOB_TYPE,
            sync_prs.sync_prs,
            client,
            store,
            since=args.since,
            include_all_open=args.include_all_open,
        )
    if args.command == "sync-discussions":
        return run_job(store, sync_discussions.JOB_TYPE, sync_discussions.sync_discussions, client, store)
    if args.command == "sync-all":
        return sync_all(client, store)
    if args.command == "summarize":
        return run_job(store, SUMMARY_JOB_TYPE, generate_pr_summaries, store, limit=args.limit)
    if args.command == "digest":
        markdown = build_digest(store, days=args.days)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(markdown, encoding="utf-8")
            logging.info("Saved digest to %s", args.output)
        else:
            sys.stdout.write(markdown)
        return None
    raise ValueError(f"Unknown command: {args.command}")


def serve(host: str, port: int) -> None:
    uvicorn.run("simd_tracker.api:app", host=host, port=port)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    config.configure_logging()
    args = parse_args(argv)

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    try:
        store = SimdStore(get_db_connection())
    except Exception as exc:
        logging.exception("Database connection failed: %s", exc)
        return 1

    try:
        client = None if args.command in SUBCOMMANDS_WITHOUT_GITHUB else GitHubClient()
        result = run_command(args, store, client)
    except Exception as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        store.close()

    if result is not None:
        print(json.dumps(result, indent=2, default=str))
        if result.get("skipped_locked") or result.get("success") is False:
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
