"""Shared fixtures: fixed-clock settings, in-memory cache, mocked GitHub API, record factories."""

from datetime import datetime, timezone

import httpx
import pytest
import respx

from contribviz.aggregator import ContributionAggregator
from contribviz.cache import MemoryCache
from contribviz.config import Settings

GH = "https://api.github.com"
REPO = "org/repo"
WINDOW_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = 1_750_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def paged(records: list[dict]):
    """respx side effect serving `records` according to the page/per_page query params."""
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        size = int(request.url.params.get("per_page", "100"))
        start = (page - 1) * size
        return httpx.Response(200, json=records[start:start + size])
    return handler


def make_commit(sha: str, login: str | None, date: str, message: str = "Update docs",
                committer: str | None = None) -> dict:
    return {
        "sha": sha,
        "html_url": f"https://github.com/{REPO}/commit/{sha}",
        "commit": {
            "message": message,
            "author": {"name": (login or "someone").title(), "date": date},
        },
        "author": {"login": login} if login else None,
        "committer": {"login": committer} if committer else None,
    }


def make_pull(number: int, login: str, created: str, state: str = "open",
              merged_at: str | None = None) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "state": state,
        "created_at": created,
        "merged_at": merged_at,
        "html_url": f"https://github.com/{REPO}/pull/{number}",
        "user": {"login": login},
    }


def make_issue(number: int, login: str, created: str, is_pull: bool = False) -> dict:
    issue = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "created_at": created,
        "html_url": f"https://github.com/{REPO}/issues/{number}",
        "user": {"login": login},
    }
    if is_pull:
        issue["pull_request"] = {"url": f"{GH}/repos/{REPO}/pulls/{number}"}
    return issue


def make_review(login: str, submitted: str, state: str = "APPROVED", body: str = "LGTM") -> dict:
    return {"user": {"login": login}, "state": state, "submitted_at": submitted, "body": body}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        repository=REPO,
        contributors=["alice", "bob"],
        window_start=WINDOW_START,
        now=NOW,
        cache_backend="memory",
    )


@pytest.fixture
def cache(settings, clock):
    return MemoryCache(
        ttl=settings.cache_ttl,
        retention=settings.cache_retention,
        max_entries=settings.cache_max_entries,
        prefix=settings.cache_prefix,
        clock=clock,
    )


@pytest.fixture
def aggregator(settings, cache):
    return ContributionAggregator(settings, cache=cache)


@pytest.fixture
def github():
    with respx.mock(base_url=GH, assert_all_called=False) as router:
        yield router


@pytest.fixture
def mock_repo(github):
    """Install routes for all four collections; returns a function taking the record lists."""
    def install(commits=(), pulls=(), issues=(), reviews=None):
        routes = {
            "commits": github.get(f"/repos/{REPO}/commits").mock(side_effect=paged(list(commits))),
            "pulls": github.get(f"/repos/{REPO}/pulls").mock(side_effect=paged(list(pulls))),
            "issues": github.get(f"/repos/{REPO}/issues").mock(side_effect=paged(list(issues))),
        }
        for pr in pulls:
            number = pr["number"]
            routes[f"reviews/{number}"] = github.get(f"/repos/{REPO}/pulls/{number}/reviews").mock(
                side_effect=paged(list((reviews or {}).get(number, [])))
            )
        return routes
    return install
