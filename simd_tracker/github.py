"""GitHub REST and GraphQL access for the tracked repository.

The client is deliberately thin: it maps HTTP outcomes onto a small error
taxonomy, remembers the most recent quota headers, and never retries. Callers
decide whether a failure ends the walk or only the current item.
"""

import base64
import logging
from datetime import datetime, timezone

import requests

from simd_tracker import config

PULL_DETAILS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      commits(last: 1) {
        nodes { commit { oid committedDate } }
      }
      reviews(first: 100) {
        totalCount
        nodes { author { login } }
      }
    }
  }
}
"""

DISCUSSIONS_QUERY = """
query($owner: String!, $repo: String!, $pageSize: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    discussions(first: $pageSize, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        id
        number
        title
        url
        body
        author { login }
        createdAt
        updatedAt
        comments { totalCount }
        category { slug }
      }
    }
  }
}
"""

DISCUSSION_COMMENTS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $limit: Int!) {
  repository(owner: $owner, name: $repo) {
    discussion(number: $number) {
      comments(last: $limit) {
        nodes {
          id
          author { login }
          createdAt
          body
          url
        }
      }
    }
  }
}
"""


class GitHubError(Exception):
    """Upstream call failed."""


class RateLimitExceeded(GitHubError):
    """The hourly quota is exhausted."""


class TransientNetworkError(GitHubError):
    """Network failure, timeout, or upstream 5xx."""


class NotFound(GitHubError):
    """The requested resource does not exist."""


def parse_github_time(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GitHubClient:
    """Rate-aware client scoped to one repository."""

    def __init__(
        self,
        token: str | None = config.GITHUB_TOKEN,
        owner: str = config.REPO_OWNER,
        repo: str = config.REPO_NAME,
        base_url: str = config.GITHUB_API_URL,
        session: requests.Session | None = None,
        timeout: int = config.HTTP_TIMEOUT,
    ):
        self.owner = owner
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "User-Agent": "simd-tracker/1.0",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        else:
            logging.warning("GITHUB_TOKEN not set; unauthenticated requests are limited to 60/hour")
        self.last_quota: dict | None = None

    @property
    def repo_path(self) -> str:
        return f"repos/{self.owner}/{self.repo}"

    def _record_quota(self, headers) -> None:
        remaining = headers.get("X-RateLimit-Remaining")
        limit = headers.get("X-RateLimit-Limit")
        reset = headers.get("X-RateLimit-Reset")
        if remaining is None:
            return
        try:
            self.last_quota = {
                "remaining": int(remaining),
                "limit": int(limit or 0),
                "reset_at": datetime.fromtimestamp(int(reset or 0), tz=timezone.utc),
            }
        except ValueError:
            logging.debug("Ignoring malformed rate limit headers: %s/%s/%s", remaining, limit, reset)

    @staticmethod
    def _is_rate_limited(response: requests.Response) -> bool:
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        if response.status_code == 429:
            return True
        return "rate limit" in (response.text or "").lower()

    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc

        self._record_quota(response.headers)
        status = response.status_code
        if status == 404:
            raise NotFound(f"{method} {url} returned 404")
        if status in (403, 429) and self._is_rate_limited(response):
            raise RateLimitExceeded(f"{method} {url} hit the rate limit")
        if status >= 500:
            raise TransientNetworkError(f"{method} {url} returned {status}")
        if status >= 400:
            raise GitHubError(f"{method} {url} returned {status}: {(response.text or '')[:200]}")
        return response

    @staticmethod
    def _json(response: requests.Response):
        try:
            return response.json()
        except ValueError as exc:
            raise TransientNetworkError(f"Invalid JSON from {response.url}") from exc

    def request(self, path: str, params: dict | None = None):
        """GET a REST endpoint and return its decoded JSON."""
        return self._json(self._send("GET", path, params=params))

    def graphql(self, query: str, variables: dict | None = None) -> dict:
        """Run a GraphQL query and return its `data` payload."""
        payload = self._json(self._send("POST", "graphql", json={"query": query, "variables": variables or {}}))
        errors = payload.get("errors") or []
        if errors:
            error_types = {error.get("type") for error in errors}
            message = "; ".join(str(error.get("message")) for error in errors)
            if "RATE_LIMITED" in error_types:
                raise RateLimitExceeded(message)
            if "NOT_FOUND" in error_types:
                raise NotFound(message)
            raise GitHubError(message)
        return payload.get("data") or {}

    def check_quota(self) -> dict:
        """Fetch remaining quota; the lower of the REST and GraphQL buckets wins."""
        payload = self.request("rate_limit")
        resources = payload.get("resources") or {}
        buckets = [bucket for bucket in (resources.get("core"), resources.get("graphql")) if bucket]
        if not buckets:
            buckets = [payload.get("rate") or {}]
        rate = min(buckets, key=lambda bucket: int(bucket.get("remaining", 0)))

        quota = {
            "remaining": int(rate.get("remaining", 0)),
            "limit": int(rate.get("limit", 0)),
            "reset_at": datetime.fromtimestamp(int(rate.get("reset") or 0), tz=timezone.utc),
        }
        self.last_quota = quota
        logging.info(
            "GitHub API quota: %d/%d remaining, resets at %s",
            quota["remaining"],
            quota["limit"],
            quota["reset_at"].isoformat(),
        )
        if quota["remaining"] < 100:
            logging.warning("Low GitHub rate limit: only %d requests remaining", quota["remaining"])
        return quota

    def quota_is_low(self, threshold: int = config.RATE_LIMIT_SAFETY_THRESHOLD) -> bool:
        return self.check_quota()["remaining"] < threshold

    def _paginate(self, path: str, params: dict, per_page: int, max_pages: int) -> list:
        items: list = []
        for page in range(1, max_pages + 1):
            batch = self.request(path, {**params, "per_page": per_page, "page": page})
            if not isinstance(batch, list):
                raise GitHubError(f"Expected a list from {path}")
            items.extend(batch)
            if len(batch) < per_page:
                break
        else:
            logging.warning("Stopped paginating %s after %d pages", path, max_pages)
        return items

    def list_directory(self, path: str) -> list[dict]:
        """List entries of a repository directory on the default branch."""
        entries = self.request(f"{self.repo_path}/contents/{path}")
        if not isinstance(entries, list):
            raise GitHubError(f"Expected a directory listing for {path}")
        return entries

    def get_file_content(self, path: str, ref: str | None = None) -> str:
        """Fetch and decode a file, optionally at a specific ref."""
        params = {"ref": ref} if ref else None
        data = self.request(f"{self.repo_path}/contents/{path}", params)
        if not isinstance(data, dict):
            raise GitHubError(f"Expected a file at {path}")

        content = data.get("content")
        if content and data.get("encoding", "base64") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        if data.get("download_url"):
            return self._send("GET", data["download_url"]).text
        return content or ""

    def get_last_commit_date(self, path: str) -> datetime | None:
        """Return the date of the most recent commit touching a path."""
        commits = self.request(f"{self.repo_path}/commits", {"path": path, "per_page": 1})
        if not commits:
            return None
        commit = commits[0].get("commit") or {}
        stamp = (commit.get("committer") or {}).get("date") or (commit.get("author") or {}).get("date")
        return parse_github_time(stamp)

    def list_pulls(self, state: str = "all", page: int = 1, per_page: int = config.PR_PAGE_SIZE) -> list[dict]:
        """List one page of pull requests, most recently updated first."""
        return self.request(
            f"{self.repo_path}/pulls",
            {"state": state, "sort": "updated", "direction": "desc", "per_page": per_page, "page": page},
        )

    def list_pull_files(self, number: int) -> list[str]:
        """Return the paths changed by a pull request."""
        files = self._paginate(f"{self.repo_path}/pulls/{number}/files", {}, 100, config.PR_FILES_MAX_PAGES)
        return [item["filename"] for item in files if item.get("filename")]

    def list_issue_comments(self, number: int) -> list[dict]:
        return self._paginate(
            f"{self.repo_path}/issues/{number}/comments",
            {"sort": "created", "direction": "asc"},
            config.MESSAGE_PAGE_SIZE,
            config.MESSAGE_MAX_PAGES,
        )

    def list_review_comments(self, number: int) -> list[dict]:
        return self._paginate(
            f"{self.repo_path}/pulls/{number}/comments",
            {"sort": "created", "direction": "asc"},
            config.MESSAGE_PAGE_SIZE,
            config.MESSAGE_MAX_PAGES,
        )

    def get_pull_details(self, number: int) -> dict:
        """Fetch last commit and review aggregates for a pull request."""
        data = self.graphql(PULL_DETAILS_QUERY, {"owner": self.owner, "repo": self.repo, "number": number})
        pull = (data.get("repository") or {}).get("pullRequest")
        if not pull:
            raise NotFound(f"Pull request #{number} not found")

        commit_nodes = (pull.get("commits") or {}).get("nodes") or []
        last_commit = commit_nodes[-1]["commit"] if commit_nodes else {}
        reviews = pull.get("reviews") or {}

        reviewer_logins: list[str] = []
        for node in reviews.get("nodes") or []:
            login = ((node or {}).get("author") or {}).get("login")
            if login and login not in reviewer_logins:
                reviewer_logins.append(login)

        return {
            "last_commit_at": parse_github_time(last_commit.get("committedDate")),
            "last_commit_sha": last_commit.get("oid"),
            "review_count": int(reviews.get("totalCount") or 0),
            "reviewer_logins": reviewer_logins,
        }

    def list_discussions(self, cursor: str | None = None, page_size: int = config.DISCUSSION_PAGE_SIZE) -> dict:
        """Fetch one page of discussions ordered by most recent update."""
        data = self.graphql(
            DISCUSSIONS_QUERY,
            {"owner": self.owner, "repo": self.repo, "pageSize": page_size, "cursor": cursor},
        )
        discussions = (data.get("repository") or {}).get("discussions") or {}
        page_info = discussions.get("pageInfo") or {}
        return {
            "nodes": discussions.get("nodes") or [],
            "has_next_page": bool(page_info.get("hasNextPage")),
            "end_cursor": page_info.get("endCursor"),
        }

    def list_discussion_comments(self, number: int, limit: int = config.DISCUSSION_COMMENT_LIMIT) -> list[dict]:
        """Fetch the most recent comments of a discussion."""
        data = self.graphql(
            DISCUSSION_COMMENTS_QUERY,
            {"owner": self.owner, "repo": self.repo, "number": number, "limit": limit},
        )
        discussion = (data.get("repository") or {}).get("discussion")
        if not discussion:
            return []
        return (discussion.get("comments") or {}).get("nodes") or []
