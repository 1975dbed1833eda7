"""Contribution aggregation: cache lookup, concurrent collection, summary, stale fallback."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx
from pydantic import ValidationError

from contribviz.cache import CacheStore, FileCache, MemoryCache, make_key
from contribviz.config import Settings
from contribviz.connectors import COLLECTORS, clean_token, validate_token
from contribviz.errors import ErrorKind
from contribviz.models import (
    ContributionSet,
    ContributorSummary,
    DateWindow,
    validate_contributors,
    validate_repository,
)

logger = logging.getLogger("contribviz")


def build_cache(settings: Settings) -> CacheStore:
    options = dict(
        ttl=settings.cache_ttl,
        retention=settings.cache_retention,
        max_entries=settings.cache_max_entries,
        prefix=settings.cache_prefix,
    )
    if settings.cache_backend == "memory":
        return MemoryCache(**options)
    return FileCache(settings.cache_dir, **options)


def summarize(
    contributors: list[str],
    commits: dict,
    pull_requests: dict,
    issues: dict,
    reviews: dict,
) -> dict[str, ContributorSummary]:
    """Per-contributor counts; total is the unweighted sum of the four kinds."""
    summary = {}
    for c in contributors:
        counts = {
            "commits": len(commits.get(c, [])),
            "pull_requests": len(pull_requests.get(c, [])),
            "issues": len(issues.get(c, [])),
            "reviews": len(reviews.get(c, [])),
        }
        summary[c] = ContributorSummary(**counts, total=sum(counts.values()))
    return summary


def respell(data: ContributionSet, contributors: list[str]) -> ContributionSet:
    """Re-key a cached set to the login spelling of `contributors`.

    Cache keys ignore case, so a hit may have been stored under another
    spelling of the same logins.
    """
    wanted = {c.lower(): c for c in contributors}
    if all(wanted.get(login.lower(), login) == login for login in data.summary):
        return data

    def rekey(by_login: dict) -> dict:
        return {wanted.get(login.lower(), login): v for login, v in by_login.items()}

    return data.model_copy(update={
        kind: rekey(getattr(data, kind))
        for kind in ("commits", "pull_requests", "issues", "reviews", "summary")
    })


class ContributionAggregator:
    """Builds a ContributionSet for one repository and contributor list.

    The cache is authoritative on a fresh hit. On a miss the four
    collectors run concurrently; if any of them fails outright, a stale
    entry for the same key is served instead, and only when none exists
    does the error reach the caller.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cache: CacheStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or Settings.from_env()
        self.cache = cache if cache is not None else build_cache(self.settings)
        self.transport = transport

    def cache_key(self, repository: str, contributors: list[str]) -> str:
        return make_key(
            repository, contributors,
            schema_version=self.settings.cache_schema_version,
            prefix=self.settings.cache_prefix,
        )

    def _now(self) -> datetime:
        return self.settings.now or datetime.now(timezone.utc)

    def _from_cache(self, key: str, *, allow_stale: bool = False) -> ContributionSet | None:
        entry = self.cache.get(key, allow_stale=allow_stale)
        if entry is None:
            return None
        try:
            return ContributionSet.model_validate(entry.data)
        except ValidationError as exc:
            logger.warning("Cached contribution data for '%s' is unusable (%s): %s",
                           key, ErrorKind.CACHE_CORRUPT.value, exc)
            self.cache.clear(key)
            return None

    async def fetch(
        self,
        repository: str,
        contributors: list[str],
        token: str | None = None,
        use_cache: bool = True,
    ) -> ContributionSet:
        repository = validate_repository(repository)
        contributors = validate_contributors(contributors)
        key = self.cache_key(repository, contributors)

        if use_cache:
            cached = self._from_cache(key)
            if cached is not None:
                logger.info("Cache hit for %s (%d contributors)", repository, len(contributors))
                return respell(cached, contributors)
            logger.info("Cache miss for %s, fetching from GitHub", repository)

        effective_token = clean_token(token) or clean_token(self.settings.github_token)
        window = DateWindow(start=self.settings.window_start, end=self._now())

        try:
            data = await self._collect(repository, contributors, window, effective_token)
        except Exception as exc:
            stale = self._from_cache(key, allow_stale=True)
            if stale is None:
                logger.error("Fetching contributions for %s failed with no cached fallback: %s",
                             repository, exc)
                raise
            logger.warning("Fetching contributions for %s failed (%s); serving cached data", repository, exc)
            return respell(stale, contributors)

        if not self.cache.set(key, data.model_dump(mode="json")):
            logger.warning("Contribution data for %s was not cached", repository)
        return data

    async def _collect(
        self,
        repository: str,
        contributors: list[str],
        window: DateWindow,
        token: str | None,
    ) -> ContributionSet:
        async with httpx.AsyncClient(timeout=self.settings.http_timeout, transport=self.transport) as client:
            if token:
                validation = await validate_token(client, token, self.settings.api_base)
                if validation.valid:
                    logger.info("GitHub token valid for %s (%s/%s requests remaining)",
                                validation.login, validation.rate_limit_remaining,
                                validation.rate_limit_limit)
                else:
                    logger.warning("GitHub token check failed: %s; continuing anyway", validation.reason)
            else:
                logger.info("No GitHub token configured; using unauthenticated rate limits")

            tasks = [
                collector(client, repository, contributors, window, token, self.settings)
                for collector in COLLECTORS.values()
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, BaseException):
                raise result

        by_kind = dict(zip(COLLECTORS, results))
        summary = summarize(
            contributors,
            by_kind["commits"], by_kind["pull_requests"], by_kind["issues"], by_kind["reviews"],
        )
        for c, s in summary.items():
            logger.debug("%s: %d contributions", c, s.total)
        return ContributionSet(**by_kind, summary=summary)

    def clear(self, repository: str | None = None, contributors: list[str] | None = None) -> int:
        """Clear one key, or every cached aggregate when called without arguments."""
        if repository is None and contributors is None:
            removed = self.cache.clear()
            logger.info("Cleared %d cached contribution sets", removed)
            return removed
        repository = validate_repository(repository or self.settings.repository)
        contributors = validate_contributors(contributors or self.settings.contributors)
        return self.cache.clear(self.cache_key(repository, contributors))


# ---------------------------------------------------------------------------
# Module-level entry points
# ---------------------------------------------------------------------------

_default_aggregator: ContributionAggregator | None = None


def get_aggregator() -> ContributionAggregator:
    global _default_aggregator
    if _default_aggregator is None:
        _default_aggregator = ContributionAggregator(Settings.from_env())
    return _default_aggregator


def set_aggregator(aggregator: ContributionAggregator | None) -> None:
    """Replace the process-wide aggregator (tests, alternative settings)."""
    global _default_aggregator
    _default_aggregator = aggregator


async def fetch_contributions(
    repository: str,
    contributors: list[str],
    token: str | None = None,
    use_cache: bool = True,
) -> ContributionSet:
    return await get_aggregator().fetch(repository, contributors, token=token, use_cache=use_cache)


def clear_contributions_cache(repository: str | None = None, contributors: list[str] | None = None) -> int:
    return get_aggregator().clear(repository, contributors)
