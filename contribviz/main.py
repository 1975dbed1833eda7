import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from contribviz.aggregator import get_aggregator
from contribviz.config import Settings
from contribviz.connectors import validate_token
from contribviz.dashboard import build_dashboard
from contribviz.errors import ContributionError, ErrorKind
from contribviz.models import (
    CacheClearResponse,
    ContributionSet,
    ContributionsQuery,
    DashboardResponse,
    TokenValidateRequest,
    TokenValidation,
)

logger = logging.getLogger("contribviz")
logger.setLevel(logging.INFO)


# ---------------------------------------------------------------------------
# In-memory rate limiter for forced refreshes
# ---------------------------------------------------------------------------

class RateLimiter:
    """Simple sliding-window rate limiter. No external dependencies."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str) -> bool:
        now = time.time()
        cutoff = now - self.window
        hits = self._hits[key] = [t for t in self._hits[key] if t > cutoff]
        if len(hits) >= self.max_requests:
            return False
        hits.append(now)
        return True

    def reset(self):
        self._hits.clear()


# Per-IP: a forced refresh costs ~60 GitHub calls, allow 10 per hour
_refresh_ip_limiter = RateLimiter(max_requests=10, window_seconds=3600)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Attach to uvicorn's handler (available now that uvicorn is running)
    uvicorn_logger = logging.getLogger("uvicorn")
    for h in uvicorn_logger.handlers:
        logger.addHandler(h)
    settings = get_aggregator().settings
    logger.info("Tracking %d contributors on %s since %s (token %s)",
                len(settings.contributors), settings.repository,
                settings.window_start.date().isoformat(),
                "configured" if settings.github_token else "not configured")
    yield


_env = Settings.from_env().env
docs_url = "/docs" if _env == "dev" else None
redoc_url = "/redoc" if _env == "dev" else None

app = FastAPI(
    title="Contribution Visualizer API", version="0.1.0",
    docs_url=docs_url, redoc_url=redoc_url, lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_BY_KIND = {
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.AUTHENTICATION_FAILED: 401,
    ErrorKind.AUTHORIZATION_INSUFFICIENT: 403,
}


def _http_error(exc: ContributionError) -> HTTPException:
    status = _STATUS_BY_KIND.get(exc.kind, 502)
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=status, detail=exc.message, headers=headers)


def _parse_query(repository: str, contributors: str, refresh: bool = False) -> ContributionsQuery:
    settings = get_aggregator().settings
    logins = [c for c in contributors.split(",") if c.strip()] if contributors else settings.contributors
    try:
        return ContributionsQuery(
            repository=repository or settings.repository,
            contributors=logins,
            refresh=refresh,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors()[0]["msg"])


async def _load(query: ContributionsQuery) -> ContributionSet:
    try:
        return await get_aggregator().fetch(
            query.repository, query.contributors, use_cache=not query.refresh,
        )
    except ContributionError as exc:
        logger.error("contributions FAILED repo=%s kind=%s", query.repository, exc.kind.value)
        raise _http_error(exc)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/contributions", response_model=ContributionSet)
async def contributions(
    request: Request,
    repository: str = Query(default="", max_length=140),
    contributors: str = Query(default="", max_length=2000),
    refresh: bool = False,
):
    """Contribution records and per-contributor summary for the tracked contributors."""
    query = _parse_query(repository, contributors, refresh)
    if query.refresh:
        client_ip = request.headers.get("x-real-ip", request.client.host if request.client else "unknown")
        if not _refresh_ip_limiter.is_allowed(client_ip):
            logger.warning("refresh RATE_LIMITED ip=%s repo=%s", client_ip, query.repository)
            raise HTTPException(status_code=429, detail="Too many refresh requests. Try again later.")
    return await _load(query)


@app.delete("/api/contributions/cache", response_model=CacheClearResponse)
def clear_cache(
    repository: str | None = Query(default=None, max_length=140),
    contributors: str | None = Query(default=None, max_length=2000),
):
    """Clear the cached aggregate for one repository/contributor set, or all of them."""
    logins = [c for c in contributors.split(",") if c.strip()] if contributors else None
    try:
        cleared = get_aggregator().clear(repository, logins)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CacheClearResponse(cleared=cleared, message=f"Cleared {cleared} cached entr{'y' if cleared == 1 else 'ies'}.")


@app.post("/api/token/validate", response_model=TokenValidation)
async def token_validate(req: TokenValidateRequest):
    aggregator = get_aggregator()
    async with httpx.AsyncClient(timeout=aggregator.settings.http_timeout,
                                 transport=aggregator.transport) as client:
        return await validate_token(client, req.token, aggregator.settings.api_base)


@app.get("/api/dashboard", response_model=DashboardResponse)
async def dashboard(
    repository: str = Query(default="", max_length=140),
    contributors: str = Query(default="", max_length=2000),
):
    """Chart-ready series: contributors ordered by total, per-kind counts, commits per month."""
    query = _parse_query(repository, contributors)
    data = await _load(query)
    view = build_dashboard(data, query.contributors)
    return DashboardResponse(
        repository=query.repository,
        window_start=get_aggregator().settings.window_start,
        **view,
    )
