import argparse
from datetime import datetime, timezone

import pytest

from simd_tracker import cli
from tests.fakes import FakeStore


def test_parse_since_accepts_dates_and_timestamps():
    assert cli.parse_since("2026-09-01") == datetime(2026, 9, 1, tzinfo=timezone.utc)
    assert cli.parse_since("2026-09-01T10:30:00Z") == datetime(2026, 9, 1, 10, 30, tzinfo=timezone.utc)


def test_parse_since_rejects_garbage():
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_since("last tuesday")


def test_sync_prs_flags():
    args = cli.parse_args(["sync-prs", "--since", "2026-09-01", "--include-all-open"])

    assert args.command == "sync-prs"
    assert args.since == datetime(2026, 9, 1, tzinfo=timezone.utc)
    assert args.include_all_open is True


def test_defaults():
    assert cli.parse_args(["sync-prs"]).include_all_open is False
    assert cli.parse_args(["digest"]).days == 7
    serve = cli.parse_args(["serve", "--port", "9000"])
    assert (serve.host, serve.port) == ("127.0.0.1", 9000)


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        cli.parse_args([])


def test_digest_writes_output_file(tmp_path):
    output = tmp_path / "out" / "digest.md"
    args = cli.parse_args(["digest", "--days", "3", "--output", str(output)])

    assert cli.run_command(args, FakeStore(), None) is None
    assert output.read_text(encoding="utf-8").startswith("# SIMD Digest - 3 Day Activity Report")


def test_main_reports_locked_job_as_failure(monkeypatch):
    store = FakeStore()
    store.locks.add("summaries")
    monkeypatch.setattr(cli, "get_db_connection", lambda: None)
    monkeypatch.setattr(cli, "SimdStore", lambda conn: store)

    assert cli.main(["summarize"]) == 1
    assert store.closed
