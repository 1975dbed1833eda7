"""Advisory check of a GitHub token against the identity endpoint."""

import logging

import httpx

from contribviz.config import GH_API
from contribviz.models import TokenValidation

from .github_fetcher import build_headers, clean_token, parse_rate_limit

logger = logging.getLogger("contribviz.github")


async def validate_token(
    client: httpx.AsyncClient,
    token: str | None,
    api_base: str = GH_API,
) -> TokenValidation:
    """Probe GET /user with `token`. Never raises; failures come back as valid=False."""
    token = clean_token(token)
    if token is None:
        return TokenValidation(valid=False, reason="no token configured")

    try:
        resp = await client.get(f"{api_base}/user", headers=build_headers(token))
    except httpx.HTTPError as exc:
        logger.warning("Token validation request failed: %s", exc)
        return TokenValidation(valid=False, reason=f"validation request failed: {exc}")

    if resp.status_code == 401:
        return TokenValidation(valid=False, reason="token is invalid or expired")
    if resp.status_code == 403:
        return TokenValidation(valid=False, reason="token lacks the required permissions")
    if not resp.is_success:
        return TokenValidation(valid=False, reason=f"unexpected status {resp.status_code}")

    rate = parse_rate_limit(resp)
    try:
        login = resp.json().get("login")
    except (ValueError, AttributeError):
        login = None
    return TokenValidation(
        valid=True,
        reason="ok",
        login=login,
        rate_limit_remaining=rate.remaining,
        rate_limit_limit=rate.limit,
    )
