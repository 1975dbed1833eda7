"""JSON cache for aggregated contribution data, with a freshness TTL and a retention sweep.

Caching is best-effort: reads of damaged entries behave like misses and
writes never raise.
"""

import errno
import hashlib
import json
import logging
import os
import time
from typing import Callable

from pydantic import ValidationError

from contribviz.config import CACHE_PREFIX, CACHE_SCHEMA_VERSION
from contribviz.errors import CacheCorrupt, CacheWriteFailed
from contribviz.models import CacheEntry

logger = logging.getLogger("contribviz.cache")

DEFAULT_TTL = 3600  # 1 hour
DEFAULT_RETENTION = 86400  # 24 hours
DEFAULT_MAX_ENTRIES = 256

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def make_key(
    repository: str,
    contributors: list[str],
    schema_version: str = CACHE_SCHEMA_VERSION,
    prefix: str = CACHE_PREFIX,
) -> str:
    """Deterministic key for a (repository, contributor set, schema version) triple."""
    logins = sorted({c.strip().lower() for c in contributors})
    return f"{prefix}{schema_version}_{repository.strip().lower()}_{','.join(logins)}"


class QuotaExceeded(Exception):
    """The backing store refused a write for lack of space."""


class CacheStore:
    """Key-scoped store of CacheEntry envelopes.

    Subclasses implement the raw storage (`_read`, `_write`, `_delete`,
    `_keys`); freshness, sweeping and quota recovery live here.
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        retention: int = DEFAULT_RETENTION,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        prefix: str = CACHE_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.retention = retention
        self.max_entries = max_entries
        self.prefix = prefix
        self.clock = clock

    # -- storage primitives ------------------------------------------------

    def _read(self, key: str) -> str | None:
        raise NotImplementedError

    def _write(self, key: str, raw: str) -> None:
        raise NotImplementedError

    def _delete(self, key: str) -> bool:
        raise NotImplementedError

    def _keys(self) -> list[str]:
        raise NotImplementedError

    # -- public interface --------------------------------------------------

    def _load(self, key: str) -> CacheEntry | None:
        """Parse the stored envelope for `key`. Raises CacheCorrupt when it cannot be used."""
        raw = self._read(key)
        if raw is None:
            return None
        try:
            entry = CacheEntry.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            raise CacheCorrupt(f"Discarding malformed cache entry '{key}': {exc}") from exc
        if entry.key != key:
            raise CacheCorrupt(f"Discarding cache entry '{key}': it belongs to '{entry.key}'")
        return entry

    def _discard(self, key: str, exc: CacheCorrupt) -> None:
        logger.warning("%s (%s)", exc.message, exc.kind.value)
        self._delete(key)

    def get(self, key: str, *, allow_stale: bool = False) -> CacheEntry | None:
        """Return the entry for `key`, or None when missing, malformed or (unless allow_stale) expired."""
        try:
            entry = self._load(key)
        except CacheCorrupt as exc:
            self._discard(key, exc)
            return None
        if entry is None:
            return None
        age = self.clock() - entry.timestamp
        if not allow_stale and age > self.ttl:
            logger.info("Cache expired for '%s' (age=%.0fs)", key, age)
            return None
        return entry

    def _store(self, key: str, raw: str) -> None:
        """Write with one sweep-and-retry on quota failure. Raises CacheWriteFailed."""
        try:
            self._guarded_write(key, raw)
            return
        except QuotaExceeded:
            removed = self.sweep()
            logger.info("Cache quota exceeded, swept %d entries and retrying", removed)
        except OSError as exc:
            raise CacheWriteFailed(f"Dropping cache write for '{key}': {exc}") from exc
        try:
            self._guarded_write(key, raw)
        except (QuotaExceeded, OSError) as exc:
            raise CacheWriteFailed(f"Dropping cache write for '{key}': {exc}") from exc

    def set(self, key: str, data: dict) -> bool:
        """Store `data` under `key`. Returns False when the write had to be dropped."""
        entry = CacheEntry(key=key, data=data, timestamp=self.clock())
        try:
            self._store(key, entry.model_dump_json())
        except CacheWriteFailed as exc:
            logger.warning("%s (%s)", exc.message, exc.kind.value)
            return False
        return True

    def clear(self, key: str | None = None) -> int:
        """Remove one key, or every key under the prefix. Returns how many entries went away."""
        if key is not None:
            return 1 if self._delete(key) else 0
        removed = 0
        for k in self._keys():
            if k.startswith(self.prefix) and self._delete(k):
                removed += 1
        return removed

    def sweep(self) -> int:
        """Delete entries older than the retention ceiling, and any that fail to parse."""
        now = self.clock()
        removed = 0
        for key in self._keys():
            try:
                entry = self._load(key)
            except CacheCorrupt as exc:
                self._discard(key, exc)
                removed += 1
                continue
            if entry is None:
                continue
            if now - entry.timestamp > self.retention:
                if self._delete(key):
                    removed += 1
        return removed

    def _guarded_write(self, key: str, raw: str) -> None:
        keys = self._keys()
        if key not in keys and len(keys) >= self.max_entries:
            raise QuotaExceeded(f"cache holds {self.max_entries} entries")
        self._write(key, raw)


class MemoryCache(CacheStore):
    """Process-local dict store. Holds serialized envelopes so it behaves like the file store."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._data: dict[str, str] = {}

    def _read(self, key):
        return self._data.get(key)

    def _write(self, key, raw):
        self._data[key] = raw

    def _delete(self, key):
        return self._data.pop(key, None) is not None

    def _keys(self):
        return list(self._data)


class FileCache(CacheStore):
    """One JSON file per key, named by a hash of the key."""

    def __init__(self, cache_dir: str, **kwargs):
        super().__init__(**kwargs)
        self.cache_dir = cache_dir

    def _ensure_dir(self):
        os.makedirs(self.cache_dir, exist_ok=True)

    def _key_path(self, key: str) -> str:
        hashed = hashlib.sha256(key.encode()).hexdigest()[:32]
        return os.path.join(self.cache_dir, f"{hashed}.json")

    def _read(self, key):
        path = self._key_path(key)
        try:
            with open(path, "r") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError):
            logger.warning("Unreadable cache file %s", path)
            return ""

    def _write(self, key, raw):
        self._ensure_dir()
        path = self._key_path(key)
        tmp = f"{path}.tmp"
        try:
            with open(tmp, "w") as f:
                f.write(raw)
            os.replace(tmp, path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.remove(tmp)
            if exc.errno in _QUOTA_ERRNOS:
                raise QuotaExceeded(str(exc)) from exc
            raise

    def _remove(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not remove cache file %s: %s", path, exc)
            return False

    def _delete(self, key):
        return self._remove(self._key_path(key))

    def _keys(self):
        if not os.path.isdir(self.cache_dir):
            return []
        keys = []
        for name in os.listdir(self.cache_dir):
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.cache_dir, name)
            try:
                with open(path, "r") as f:
                    key = json.load(f).get("key")
            except (OSError, ValueError, AttributeError):
                # Unparseable file with no recoverable key: remove it directly.
                logger.warning("Removing unreadable cache file %s", path)
                self._remove(path)
                continue
            if isinstance(key, str):
                keys.append(key)
        return keys
