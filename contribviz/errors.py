"""Error kinds raised by the GitHub fetch path and the cache layer."""

import enum


class ErrorKind(str, enum.Enum):
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTHORIZATION_INSUFFICIENT = "authorization_insufficient"
    AUTHENTICATION_FAILED = "authentication_failed"
    GENERIC_HTTP = "generic_http"
    CACHE_CORRUPT = "cache_corrupt"
    CACHE_WRITE_FAILED = "cache_write_failed"


class ContributionError(Exception):
    """Base class for every error the aggregation layer raises.

    The message is meant to be shown to the user as-is, so it says what
    went wrong and what to do about it.
    """

    kind: ErrorKind = ErrorKind.GENERIC_HTTP

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: int | None = None,
        url: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.url = url

    @property
    def systemic(self) -> bool:
        """True for failures that affect every request made with the same credentials."""
        return self.kind in SYSTEMIC_KINDS

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "retry_after": self.retry_after,
        }


class RateLimitExceeded(ContributionError):
    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(self, message: str = "", **kwargs):
        if not message:
            message = "GitHub API rate limit exceeded."
            retry_after = kwargs.get("retry_after")
            if retry_after is not None:
                message += f" Try again in {retry_after} seconds"
            message += " or add a GitHub token (GITHUB_TOKEN) to raise the limit."
        super().__init__(message, **kwargs)


class AuthorizationInsufficient(ContributionError):
    kind = ErrorKind.AUTHORIZATION_INSUFFICIENT

    def __init__(self, message: str = "", **kwargs):
        super().__init__(
            message or "GitHub API access forbidden. Check that the token has the required scopes "
            "(public_repo or repo) and that the repository is visible to it.",
            **kwargs,
        )


class AuthenticationFailed(ContributionError):
    kind = ErrorKind.AUTHENTICATION_FAILED

    def __init__(self, message: str = "", **kwargs):
        super().__init__(
            message or "GitHub authentication failed. The token is invalid or expired; "
            "generate a new one and update GITHUB_TOKEN.",
            **kwargs,
        )


class GenericHttpError(ContributionError):
    kind = ErrorKind.GENERIC_HTTP

    def __init__(self, message: str = "", *, status_code: int | None = None,
                 reason: str = "", **kwargs):
        if not message:
            if status_code is None:
                message = f"GitHub API request failed: {reason or 'network error'}"
            else:
                message = f"GitHub API error: {status_code} {reason}".rstrip()
        super().__init__(message, status_code=status_code, **kwargs)
        self.reason = reason


class CacheCorrupt(ContributionError):
    kind = ErrorKind.CACHE_CORRUPT


class CacheWriteFailed(ContributionError):
    kind = ErrorKind.CACHE_WRITE_FAILED


SYSTEMIC_KINDS = frozenset({
    ErrorKind.RATE_LIMIT_EXCEEDED,
    ErrorKind.AUTHORIZATION_INSUFFICIENT,
    ErrorKind.AUTHENTICATION_FAILED,
})
