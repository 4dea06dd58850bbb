import base64
from datetime import datetime, timezone

import pytest
import requests

from simd_tracker.github import (
    GitHubClient,
    GitHubError,
    NotFound,
    RateLimitExceeded,
    TransientNetworkError,
    parse_github_time,
)


class StubResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = text
        self.url = "https://api.github.test/stub"

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class StubSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses):
    session = StubSession(responses)
    client = GitHubClient(token="t0ken", owner="org", repo="docs", base_url="https://api.github.test", session=session)
    return client, session


def test_auth_header_and_quota_headers_are_recorded():
    client, session = make_client(
        StubResponse(payload=[], headers={"X-RateLimit-Remaining": "4999", "X-RateLimit-Limit": "5000", "X-RateLimit-Reset": "0"})
    )
    assert client.request("repos/org/docs/pulls") == []
    assert session.headers["Authorization"] == "Bearer t0ken"
    assert client.last_quota["remaining"] == 4999


def test_404_maps_to_not_found():
    client, _ = make_client(StubResponse(status_code=404))
    with pytest.raises(NotFound):
        client.request("repos/org/docs/contents/missing.md")


def test_403_with_exhausted_quota_maps_to_rate_limit():
    client, _ = make_client(StubResponse(status_code=403, headers={"X-RateLimit-Remaining": "0"}))
    with pytest.raises(RateLimitExceeded):
        client.request("repos/org/docs/pulls")


def test_403_without_rate_limit_is_plain_error():
    client, _ = make_client(StubResponse(status_code=403, headers={"X-RateLimit-Remaining": "10"}, text="forbidden"))
    with pytest.raises(GitHubError) as excinfo:
        client.request("repos/org/docs/pulls")
    assert not isinstance(excinfo.value, RateLimitExceeded)


def test_server_errors_and_network_failures_are_transient():
    client, _ = make_client(StubResponse(status_code=502), requests.ConnectionError("boom"))
    with pytest.raises(TransientNetworkError):
        client.request("rate_limit")
    with pytest.raises(TransientNetworkError):
        client.request("rate_limit")


def test_graphql_error_types_are_mapped():
    client, _ = make_client(
        StubResponse(payload={"errors": [{"type": "RATE_LIMITED", "message": "slow down"}]}),
        StubResponse(payload={"errors": [{"type": "NOT_FOUND", "message": "nope"}]}),
    )
    with pytest.raises(RateLimitExceeded):
        client.graphql("query { viewer { login } }")
    with pytest.raises(NotFound):
        client.graphql("query { viewer { login } }")


def test_check_quota_uses_lowest_bucket():
    client, _ = make_client(
        StubResponse(
            payload={
                "resources": {
                    "core": {"remaining": 4000, "limit": 5000, "reset": 1700000000},
                    "graphql": {"remaining": 40, "limit": 5000, "reset": 1700000100},
                }
            }
        )
    )
    quota = client.check_quota()
    assert quota["remaining"] == 40
    assert quota["reset_at"] == datetime.fromtimestamp(1700000100, tz=timezone.utc)


def test_quota_is_low_compares_against_threshold():
    client, _ = make_client(StubResponse(payload={"rate": {"remaining": 49, "limit": 5000, "reset": 0}}))
    assert client.quota_is_low(50)


def test_get_file_content_decodes_base64_at_ref():
    encoded = base64.b64encode("# Title\n".encode()).decode()
    client, session = make_client(StubResponse(payload={"content": encoded, "encoding": "base64"}))
    assert client.get_file_content("proposals/0001-x.md", ref="abc") == "# Title\n"
    assert session.requests[0][2]["params"] == {"ref": "abc"}


def test_list_issue_comments_paginates_until_short_page(monkeypatch):
    monkeypatch.setattr("simd_tracker.config.MESSAGE_PAGE_SIZE", 2)
    client, session = make_client(
        StubResponse(payload=[{"id": 1}, {"id": 2}]),
        StubResponse(payload=[{"id": 3}]),
    )
    assert [comment["id"] for comment in client.list_issue_comments(5)] == [1, 2, 3]
    assert len(session.requests) == 2


def test_get_pull_details_dedupes_reviewers():
    payload = {
        "data": {
            "repository": {
                "pullRequest": {
                    "commits": {"nodes": [{"commit": {"oid": "abc", "committedDate": "2026-09-01T10:00:00Z"}}]},
                    "reviews": {
                        "totalCount": 3,
                        "nodes": [
                            {"author": {"login": "bob"}},
                            {"author": {"login": "bob"}},
                            {"author": {"login": "dana"}},
                        ],
                    },
                }
            }
        }
    }
    client, _ = make_client(StubResponse(payload=payload))
    details = client.get_pull_details(7)
    assert details["reviewer_logins"] == ["bob", "dana"]
    assert details["review_count"] == 3
    assert details["last_commit_sha"] == "abc"
    assert details["last_commit_at"] == datetime(2026, 9, 1, 10, tzinfo=timezone.utc)


def test_list_discussions_returns_page_info():
    payload = {
        "data": {
            "repository": {
                "discussions": {
                    "pageInfo": {"hasNextPage": True, "endCursor": "Y3Vy"},
                    "nodes": [{"id": "D_1", "number": 1}],
                }
            }
        }
    }
    client, _ = make_client(StubResponse(payload=payload))
    page = client.list_discussions()
    assert page == {"nodes": [{"id": "D_1", "number": 1}], "has_next_page": True, "end_cursor": "Y3Vy"}


def test_parse_github_time():
    assert parse_github_time("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_github_time(None) is None
