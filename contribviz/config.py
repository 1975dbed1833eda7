"""Runtime settings, read from the environment or built explicitly in tests."""

import os
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

GH_API = "https://api.github.com"

DEFAULT_REPOSITORY = "stellar/stellar-docs"
DEFAULT_CONTRIBUTORS = [
    "janewang",
    "torisamples",
    "brunomuler",
    "johncanneto",
    "nickgilbert",
    "tomerweller",
    "Keeeeeeeks",
    "minkyeongshin",
    "sdfcharles",
    "Kellyhendricks-cmd",
]
DEFAULT_START_DATE = datetime(2025, 1, 1, tzinfo=timezone.utc)

# Bump when the shape of ContributionSet changes so old cache entries are never read.
CACHE_SCHEMA_VERSION = "v2"
CACHE_PREFIX = "github_contributions_"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp ("2025-03-01T12:00:00Z") into an aware datetime."""
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    github_token: str | None = None
    api_base: str = GH_API
    repository: str = DEFAULT_REPOSITORY
    contributors: list[str] = Field(default_factory=lambda: list(DEFAULT_CONTRIBUTORS))

    # Inclusive date window. `now` pins the end of the window; None means wall clock.
    window_start: datetime = DEFAULT_START_DATE
    now: datetime | None = None

    max_pages: int = Field(default=10, ge=1)
    per_page: int = Field(default=100, ge=1, le=100)
    max_review_pulls: int = Field(default=50, ge=0)
    http_timeout: float = 30.0

    cache_backend: str = "file"
    cache_dir: str = "/tmp/contribviz_cache"
    cache_prefix: str = CACHE_PREFIX
    cache_schema_version: str = CACHE_SCHEMA_VERSION
    cache_ttl: int = 3600  # 1 hour
    cache_retention: int = 86400  # 24 hours
    cache_max_entries: int = Field(default=256, ge=1)

    env: str = "production"

    @field_validator("window_start", "now")
    @classmethod
    def ensure_aware(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in {"file", "memory"}:
            raise ValueError("cache backend must be 'file' or 'memory'")
        return v

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        values: dict = {}
        token = os.environ.get("GITHUB_TOKEN", "").strip()
        if token:
            values["github_token"] = token
        if os.environ.get("GITHUB_API_URL"):
            values["api_base"] = os.environ["GITHUB_API_URL"].rstrip("/")
        if os.environ.get("CONTRIBVIZ_REPOSITORY"):
            values["repository"] = os.environ["CONTRIBVIZ_REPOSITORY"].strip()
        if os.environ.get("CONTRIBVIZ_CONTRIBUTORS"):
            values["contributors"] = _split_list(os.environ["CONTRIBVIZ_CONTRIBUTORS"])
        if os.environ.get("CONTRIBVIZ_START_DATE"):
            values["window_start"] = parse_timestamp(os.environ["CONTRIBVIZ_START_DATE"].strip())

        int_vars = {
            "CONTRIBVIZ_MAX_PAGES": "max_pages",
            "CONTRIBVIZ_MAX_REVIEW_PULLS": "max_review_pulls",
            "CACHE_TTL": "cache_ttl",
            "CACHE_RETENTION": "cache_retention",
            "CACHE_MAX_ENTRIES": "cache_max_entries",
        }
        for var, field in int_vars.items():
            raw = os.environ.get(var)
            if raw:
                values[field] = int(raw)

        if os.environ.get("HTTP_TIMEOUT"):
            values["http_timeout"] = float(os.environ["HTTP_TIMEOUT"])
        if os.environ.get("CACHE_DIR"):
            values["cache_dir"] = os.environ["CACHE_DIR"]
        if os.environ.get("CONTRIBVIZ_CACHE"):
            values["cache_backend"] = os.environ["CONTRIBVIZ_CACHE"].strip().lower()
        if os.environ.get("ENV"):
            values["env"] = os.environ["ENV"]
        return cls(**values)
