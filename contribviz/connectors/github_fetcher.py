"""Paginated GitHub REST fetcher with rate-limit inspection and typed errors."""

import logging
import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from contribviz.errors import (
    AuthenticationFailed,
    AuthorizationInsufficient,
    GenericHttpError,
    RateLimitExceeded,
)
from contribviz.models import RateLimitStatus

logger = logging.getLogger("contribviz.github")

ACCEPT = "application/vnd.github+json"
API_VERSION = "2022-11-28"
USER_AGENT = "contribviz/1.0"

MAX_PAGES = 10
PER_PAGE = 100

# Values shipped in .env templates; never sent as credentials.
PLACEHOLDER_TOKENS = frozenset({
    "your_github_token_here",
    "your_token_here",
    "your-github-token",
    "ghp_your_token_here",
    "changeme",
})


def clean_token(token: str | None) -> str | None:
    """Return the trimmed token, or None for empty and placeholder values."""
    if token is None:
        return None
    token = token.strip()
    if not token or token.lower() in PLACEHOLDER_TOKENS:
        return None
    return token


def build_headers(token: str | None = None) -> dict[str, str]:
    headers = {
        "Accept": ACCEPT,
        "X-GitHub-Api-Version": API_VERSION,
        "User-Agent": USER_AGENT,
    }
    token = clean_token(token)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _int_header(resp: httpx.Response, name: str) -> int | None:
    raw = resp.headers.get(name)
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


def parse_rate_limit(resp: httpx.Response) -> RateLimitStatus:
    return RateLimitStatus(
        limit=_int_header(resp, "X-RateLimit-Limit"),
        remaining=_int_header(resp, "X-RateLimit-Remaining"),
        reset=_int_header(resp, "X-RateLimit-Reset"),
        resource=resp.headers.get("X-RateLimit-Resource", ""),
    )


def _retry_after(resp: httpx.Response, rate: RateLimitStatus) -> int | None:
    retry = _int_header(resp, "Retry-After")
    if retry is not None:
        return retry
    if rate.reset:
        return max(0, rate.reset - int(time.time()))
    return None


def log_rate_limit(rate: RateLimitStatus, url: str) -> None:
    if rate.remaining is None:
        return
    if rate.limit and rate.remaining < rate.limit * 0.1:
        logger.warning("GitHub rate limit low: %d/%d remaining (%s)", rate.remaining, rate.limit, url)
    else:
        logger.debug("GitHub rate limit: %s/%s remaining", rate.remaining, rate.limit)


def check_response(resp: httpx.Response, url: str = "") -> RateLimitStatus:
    """Log the quota carried by `resp` and raise the matching ContributionError for failures."""
    rate = parse_rate_limit(resp)
    log_rate_limit(rate, url)

    if resp.is_success:
        return rate
    status = resp.status_code
    if status == 401:
        raise AuthenticationFailed(status_code=status, url=url)
    if status == 403:
        if rate.remaining == 0 or "Retry-After" in resp.headers:
            raise RateLimitExceeded(status_code=status, retry_after=_retry_after(resp, rate), url=url)
        raise AuthorizationInsufficient(status_code=status, url=url)
    if status == 429:
        raise RateLimitExceeded(status_code=status, retry_after=_retry_after(resp, rate), url=url)
    raise GenericHttpError(status_code=status, reason=resp.reason_phrase, url=url)


def _page_url(url: str, params: dict) -> str:
    """Merge `params` into the query string already on `url`."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: str(v) for k, v in params.items()})
    return urlunsplit(parts._replace(query=urlencode(query)))


async def fetch_all_pages(
    client: httpx.AsyncClient,
    url: str,
    token: str | None = None,
    *,
    params: dict | None = None,
    max_pages: int = MAX_PAGES,
    per_page: int = PER_PAGE,
) -> list[dict]:
    """Fetch every page of a collection, stopping at an empty page or after `max_pages`.

    The result may be truncated for very active collections; the cap keeps
    a single call at max_pages * per_page records.
    """
    headers = build_headers(token)
    records: list[dict] = []
    for page in range(1, max_pages + 1):
        page_url = _page_url(url, {**(params or {}), "page": page, "per_page": per_page})
        try:
            resp = await client.get(page_url, headers=headers)
        except httpx.HTTPError as exc:
            raise GenericHttpError(reason=str(exc) or type(exc).__name__, url=page_url) from exc
        check_response(resp, page_url)

        try:
            data = resp.json()
        except ValueError as exc:
            raise GenericHttpError(status_code=resp.status_code, reason="invalid JSON body", url=page_url) from exc
        if not isinstance(data, list):
            raise GenericHttpError(status_code=resp.status_code, reason="expected a JSON list", url=page_url)

        logger.debug("Fetched page %d of %s (%d records)", page, url, len(data))
        if not data:
            return records
        records.extend(data)

    logger.warning("Stopped after %d pages for %s; result may be truncated at %d records",
                   max_pages, url, len(records))
    return records
