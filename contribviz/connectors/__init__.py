"""GitHub connectors: paginated fetching, token validation and per-kind collectors."""

from .github_fetcher import fetch_all_pages, build_headers, clean_token
from .token_validator import validate_token
from .collectors import (
    COLLECTORS, collect_commits, collect_pull_requests, collect_issues, collect_reviews,
)

__all__ = [
    "fetch_all_pages", "build_headers", "clean_token", "validate_token",
    "COLLECTORS", "collect_commits", "collect_pull_requests", "collect_issues",
    "collect_reviews",
]
