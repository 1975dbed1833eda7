"""Pydantic models for contribution records, aggregates and API payloads."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

REPO_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})/[A-Za-z0-9._-]{1,100}$")
LOGIN_RE = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,37}[a-zA-Z0-9])?$")


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class CommitRecord(_Record):
    sha: str
    message: str
    date: datetime
    url: str = ""
    author: str = ""


class PullRequestRecord(_Record):
    number: int
    title: str
    state: str
    date: datetime
    url: str = ""
    merged: bool = False


class IssueRecord(_Record):
    number: int
    title: str
    state: str
    date: datetime
    url: str = ""


class ReviewRecord(_Record):
    pr_number: int
    pr_title: str
    state: str
    date: datetime
    url: str = ""
    body: str = ""


class ContributorSummary(_Record):
    commits: int = 0
    pull_requests: int = 0
    issues: int = 0
    reviews: int = 0
    total: int = 0


class ContributionSet(_Record):
    """The aggregate handed to the dashboard, and the cache payload."""

    commits: dict[str, list[CommitRecord]] = Field(default_factory=dict)
    pull_requests: dict[str, list[PullRequestRecord]] = Field(default_factory=dict)
    issues: dict[str, list[IssueRecord]] = Field(default_factory=dict)
    reviews: dict[str, list[ReviewRecord]] = Field(default_factory=dict)
    summary: dict[str, ContributorSummary] = Field(default_factory=dict)


class DateWindow(_Record):
    """Inclusive [start, end] range; `end` is captured once per aggregation run."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime | None) -> bool:
        if moment is None:
            return False
        return self.start <= moment <= self.end


class CacheEntry(BaseModel):
    key: str
    data: dict
    timestamp: float


class RateLimitStatus(BaseModel):
    limit: int | None = None
    remaining: int | None = None
    reset: int | None = None
    resource: str = ""


class TokenValidation(BaseModel):
    valid: bool
    reason: str = ""
    login: str | None = None
    rate_limit_remaining: int | None = None
    rate_limit_limit: int | None = None


class TokenValidateRequest(BaseModel):
    token: str = Field(..., max_length=256)


class CacheClearResponse(BaseModel):
    cleared: int
    message: str


class DashboardResponse(BaseModel):
    repository: str
    window_start: datetime
    contributors: list[str]
    commits: list[int]
    pull_requests: list[int]
    issues: list[int]
    reviews: list[int]
    totals: list[int]
    commits_by_month: dict[str, dict[str, int]]
    total_contributions: int


def validate_repository(repository: str) -> str:
    """Return the repository as "owner/name" or raise ValueError."""
    repository = repository.strip().strip("/")
    if not REPO_RE.match(repository):
        raise ValueError(f"Invalid repository '{repository}', expected 'owner/name'")
    return repository


def validate_contributors(contributors: list[str]) -> list[str]:
    """Strip and check logins; duplicates (case-insensitive) keep their first spelling."""
    seen: set[str] = set()
    result = []
    for login in contributors:
        login = login.strip()
        if not LOGIN_RE.match(login):
            raise ValueError(f"Invalid GitHub login '{login}'")
        if login.lower() in seen:
            continue
        seen.add(login.lower())
        result.append(login)
    if not result:
        raise ValueError("At least one contributor is required")
    return result


class ContributionsQuery(BaseModel):
    repository: str
    contributors: list[str]
    refresh: bool = False

    @field_validator("repository")
    @classmethod
    def check_repository(cls, v):
        return validate_repository(v)

    @field_validator("contributors")
    @classmethod
    def check_contributors(cls, v):
        return validate_contributors(v)
