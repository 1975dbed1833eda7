"""Collectors for the four contribution kinds: commits, pull requests, issues, reviews.

Each collector pages through one repository collection and splits it per
contributor. Rate-limit and credential errors propagate so the aggregator
can fall back to cached data; anything else is logged and degrades to an
empty result.
"""

import logging
from datetime import timezone
from typing import Callable

import httpx
from pydantic import ValidationError

from contribviz.config import Settings, parse_timestamp
from contribviz.errors import ContributionError
from contribviz.models import (
    CommitRecord,
    DateWindow,
    IssueRecord,
    PullRequestRecord,
    ReviewRecord,
)

from .github_fetcher import fetch_all_pages

logger = logging.getLogger("contribviz.collectors")

# Raised by projections when a record does not have the expected shape.
_MALFORMED = (KeyError, TypeError, ValueError, AttributeError, ValidationError)


def _login(account: dict | None) -> str:
    return ((account or {}).get("login") or "").lower()


async def _fetch_collection(
    client: httpx.AsyncClient,
    url: str,
    token: str | None,
    settings: Settings,
    params: dict | None = None,
) -> list[dict] | None:
    """Fetch a whole collection. Returns None after a non-systemic failure."""
    try:
        return await fetch_all_pages(
            client, url, token,
            params=params, max_pages=settings.max_pages, per_page=settings.per_page,
        )
    except ContributionError as exc:
        if exc.systemic:
            raise
        logger.error("Fetching %s failed: %s", url, exc.message)
        return None


def _split_by_contributor(
    kind: str,
    records: list[dict] | None,
    contributors: list[str],
    matches: Callable[[dict, str], bool],
    project: Callable[[dict], object],
) -> dict[str, list]:
    result: dict[str, list] = {}
    for contributor in contributors:
        if records is None:
            result[contributor] = []
            continue
        login = contributor.lower()
        try:
            result[contributor] = [project(r) for r in records if matches(r, login)]
        except _MALFORMED:
            logger.exception("Malformed %s record for %s; returning no %s", kind, contributor, kind)
            result[contributor] = []
    return result


# ---------------------------------------------------------------------------
# Commits
# ---------------------------------------------------------------------------

def _commit_date(raw: dict):
    return parse_timestamp(raw["commit"]["author"]["date"])


def _project_commit(raw: dict) -> CommitRecord:
    git_commit = raw["commit"]
    return CommitRecord(
        sha=raw["sha"],
        message=(git_commit.get("message") or "").split("\n")[0],
        date=_commit_date(raw),
        url=raw.get("html_url") or "",
        author=(raw.get("author") or {}).get("login") or git_commit["author"].get("name") or "",
    )


async def collect_commits(
    client: httpx.AsyncClient,
    repository: str,
    contributors: list[str],
    window: DateWindow,
    token: str | None,
    settings: Settings,
) -> dict[str, list[CommitRecord]]:
    """Commits authored or committed by each contributor inside the window."""
    url = f"{settings.api_base}/repos/{repository}/commits"
    since = window.start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    records = await _fetch_collection(client, url, token, settings, params={"since": since})

    def matches(raw: dict, login: str) -> bool:
        if login not in (_login(raw.get("author")), _login(raw.get("committer"))):
            return False
        return window.contains(_commit_date(raw))

    return _split_by_contributor("commit", records, contributors, matches, _project_commit)


# ---------------------------------------------------------------------------
# Pull requests
# ---------------------------------------------------------------------------

def _project_pull(raw: dict) -> PullRequestRecord:
    return PullRequestRecord(
        number=raw["number"],
        title=raw.get("title") or "",
        state=raw["state"],
        date=parse_timestamp(raw["created_at"]),
        url=raw.get("html_url") or "",
        merged=raw.get("merged_at") is not None,
    )


async def collect_pull_requests(
    client: httpx.AsyncClient,
    repository: str,
    contributors: list[str],
    window: DateWindow,
    token: str | None,
    settings: Settings,
) -> dict[str, list[PullRequestRecord]]:
    """Pull requests opened by each contributor inside the window."""
    url = f"{settings.api_base}/repos/{repository}/pulls"
    records = await _fetch_collection(client, url, token, settings, params={"state": "all"})

    def matches(raw: dict, login: str) -> bool:
        return _login(raw.get("user")) == login and window.contains(parse_timestamp(raw.get("created_at")))

    return _split_by_contributor("pull request", records, contributors, matches, _project_pull)


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------

def _project_issue(raw: dict) -> IssueRecord:
    return IssueRecord(
        number=raw["number"],
        title=raw.get("title") or "",
        state=raw["state"],
        date=parse_timestamp(raw["created_at"]),
        url=raw.get("html_url") or "",
    )


async def collect_issues(
    client: httpx.AsyncClient,
    repository: str,
    contributors: list[str],
    window: DateWindow,
    token: str | None,
    settings: Settings,
) -> dict[str, list[IssueRecord]]:
    """Issues opened by each contributor inside the window.

    The issues endpoint also lists pull requests; those carry a
    `pull_request` key and are dropped here.
    """
    url = f"{settings.api_base}/repos/{repository}/issues"
    records = await _fetch_collection(client, url, token, settings, params={"state": "all"})

    def matches(raw: dict, login: str) -> bool:
        if "pull_request" in raw:
            return False
        return _login(raw.get("user")) == login and window.contains(parse_timestamp(raw.get("created_at")))

    return _split_by_contributor("issue", records, contributors, matches, _project_issue)


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------

async def collect_reviews(
    client: httpx.AsyncClient,
    repository: str,
    contributors: list[str],
    window: DateWindow,
    token: str | None,
    settings: Settings,
) -> dict[str, list[ReviewRecord]]:
    """Reviews submitted by each contributor on the first `max_review_pulls` pull requests.

    Pull requests are walked one at a time; a pull request whose reviews
    cannot be fetched is skipped.
    """
    result: dict[str, list[ReviewRecord]] = {c: [] for c in contributors}
    by_login = {c.lower(): c for c in contributors}

    pulls_url = f"{settings.api_base}/repos/{repository}/pulls"
    pulls = await _fetch_collection(client, pulls_url, token, settings, params={"state": "all"})
    if pulls is None:
        return result

    for pr in pulls[:settings.max_review_pulls]:
        try:
            number = pr["number"]
            reviews = await fetch_all_pages(
                client, f"{pulls_url}/{number}/reviews", token,
                max_pages=settings.max_pages, per_page=settings.per_page,
            )
        except ContributionError as exc:
            if exc.systemic:
                raise
            logger.warning("Skipping reviews for PR #%s: %s", pr.get("number"), exc.message)
            continue
        except _MALFORMED:
            logger.exception("Malformed pull request record in %s", repository)
            continue

        for review in reviews:
            try:
                contributor = by_login.get(_login(review.get("user")))
                if contributor is None:
                    continue
                submitted = parse_timestamp(review.get("submitted_at"))
                if not window.contains(submitted):
                    continue
                result[contributor].append(ReviewRecord(
                    pr_number=number,
                    pr_title=pr.get("title") or "",
                    state=review["state"],
                    date=submitted,
                    url=pr.get("html_url") or "",
                    body=review.get("body") or "",
                ))
            except _MALFORMED:
                logger.exception("Malformed review on PR #%s", number)

    return result


COLLECTORS = {
    "commits": collect_commits,
    "pull_requests": collect_pull_requests,
    "issues": collect_issues,
    "reviews": collect_reviews,
}
