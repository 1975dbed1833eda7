"""Tests for cache keys, freshness, sweeping, quota recovery and corrupt entries."""

import errno
import json
import logging
import os

import pytest

from contribviz.cache import FileCache, MemoryCache, make_key

from conftest import FakeClock


class TestMakeKey:

    def test_format(self):
        key = make_key("org/repo", ["bob", "alice"], schema_version="v2", prefix="gh_")
        assert key == "gh_v2_org/repo_alice,bob"

    def test_order_and_case_insensitive(self):
        assert make_key("org/repo", ["Bob", "alice"]) == make_key("org/repo", ["alice", "bob"])

    def test_changes_with_contributors(self):
        assert make_key("org/repo", ["alice"]) != make_key("org/repo", ["alice", "bob"])

    def test_changes_with_repository(self):
        assert make_key("org/repo", ["alice"]) != make_key("org/other", ["alice"])

    def test_changes_with_schema_version(self):
        assert make_key("org/repo", ["alice"], schema_version="v1") != make_key(
            "org/repo", ["alice"], schema_version="v2"
        )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path, clock):
    if request.param == "memory":
        return MemoryCache(ttl=3600, retention=86400, max_entries=3, clock=clock)
    return FileCache(str(tmp_path / "cache"), ttl=3600, retention=86400, max_entries=3, clock=clock)


def test_set_then_get(store):
    assert store.set("github_contributions_k1", {"a": 1})
    entry = store.get("github_contributions_k1")
    assert entry.data == {"a": 1}
    assert entry.key == "github_contributions_k1"


def test_missing_key(store):
    assert store.get("github_contributions_nope") is None


def test_expired_entry_hidden_but_kept(store, clock):
    store.set("github_contributions_k1", {"a": 1})
    clock.advance(3601)

    assert store.get("github_contributions_k1") is None
    stale = store.get("github_contributions_k1", allow_stale=True)
    assert stale.data == {"a": 1}


def test_sweep_removes_only_entries_past_retention(store, clock):
    store.set("github_contributions_old", {"a": 1})
    clock.advance(86400 - 10)
    store.set("github_contributions_new", {"b": 2})
    clock.advance(20)

    assert store.sweep() == 1
    assert store.get("github_contributions_old", allow_stale=True) is None
    assert store.get("github_contributions_new", allow_stale=True) is not None


def test_quota_triggers_sweep_and_retry(store, clock):
    store.set("github_contributions_1", {"n": 1})
    store.set("github_contributions_2", {"n": 2})
    clock.advance(90000)
    store.set("github_contributions_3", {"n": 3})

    # Full: the sweep drops entries 1 and 2, then the retry succeeds
    assert store.set("github_contributions_4", {"n": 4}) is True
    assert store.get("github_contributions_4").data == {"n": 4}
    assert store.get("github_contributions_1", allow_stale=True) is None


def test_quota_write_abandoned_when_sweep_frees_nothing(store):
    for n in range(3):
        store.set(f"github_contributions_{n}", {"n": n})

    assert store.set("github_contributions_extra", {"n": 99}) is False
    assert store.get("github_contributions_extra") is None


def test_overwrite_does_not_count_against_quota(store):
    for n in range(3):
        store.set(f"github_contributions_{n}", {"n": n})
    assert store.set("github_contributions_0", {"n": 100}) is True
    assert store.get("github_contributions_0").data == {"n": 100}


def test_clear_single_and_all(store):
    store.set("github_contributions_a", {})
    store.set("github_contributions_b", {})
    store.set("other_prefix_c", {})

    assert store.clear("github_contributions_a") == 1
    assert store.clear("github_contributions_a") == 0
    assert store.clear() == 1
    assert store.get("other_prefix_c") is not None


def test_corrupt_memory_entry_removed():
    cache = MemoryCache(clock=FakeClock())
    cache._data["github_contributions_k"] = "{not json"

    assert cache.get("github_contributions_k") is None
    assert "github_contributions_k" not in cache._data


def test_corrupt_file_entry_removed(tmp_path):
    cache = FileCache(str(tmp_path), clock=FakeClock())
    cache.set("github_contributions_k", {"a": 1})
    path = cache._key_path("github_contributions_k")
    with open(path, "w") as f:
        json.dump({"key": "github_contributions_k", "data": "not-a-dict"}, f)

    assert cache.get("github_contributions_k", allow_stale=True) is None
    assert not os.path.exists(path)


def test_unreadable_file_dropped_by_sweep(tmp_path):
    cache = FileCache(str(tmp_path), clock=FakeClock())
    garbage = tmp_path / "deadbeef.json"
    garbage.write_text("]]]")

    cache.sweep()

    assert not garbage.exists()


def test_disk_full_sweeps_retries_once_then_drops(tmp_path, monkeypatch):
    cache = FileCache(str(tmp_path), clock=FakeClock())
    attempts = []

    def full(src, dst):
        attempts.append(dst)
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr("contribviz.cache.os.replace", full)

    assert cache.set("github_contributions_k", {"a": 1}) is False
    assert len(attempts) == 2
    assert not any(name.endswith(".tmp") for name in os.listdir(tmp_path))


def test_dropped_write_logged_with_kind(caplog):
    cache = MemoryCache(max_entries=1, clock=FakeClock())
    cache.set("github_contributions_a", {})

    with caplog.at_level(logging.WARNING, logger="contribviz.cache"):
        assert cache.set("github_contributions_b", {}) is False

    assert "cache_write_failed" in caplog.text
    assert "github_contributions_b" in caplog.text


def test_corrupt_entry_logged_with_kind(caplog):
    cache = MemoryCache(clock=FakeClock())
    cache._data["github_contributions_k"] = json.dumps({"key": "github_contributions_other", "data": {}, "timestamp": 0})

    with caplog.at_level(logging.WARNING, logger="contribviz.cache"):
        assert cache.get("github_contributions_k", allow_stale=True) is None

    assert "cache_corrupt" in caplog.text
    assert "github_contributions_k" not in cache._data


def test_undeletable_corrupt_file_is_still_a_miss(tmp_path, monkeypatch):
    cache = FileCache(str(tmp_path), clock=FakeClock())
    cache.set("github_contributions_k", {"a": 1})
    with open(cache._key_path("github_contributions_k"), "w") as f:
        f.write("{not json")

    def denied(path):
        raise PermissionError(errno.EACCES, "Permission denied", path)

    monkeypatch.setattr("contribviz.cache.os.remove", denied)

    assert cache.get("github_contributions_k") is None
    assert cache.sweep() == 0
    assert cache.clear("github_contributions_k") == 0
    assert os.path.exists(cache._key_path("github_contributions_k"))


def test_quota_write_dropped_when_sweep_cannot_delete(tmp_path, monkeypatch):
    clock = FakeClock()
    cache = FileCache(str(tmp_path), max_entries=1, clock=clock)
    cache.set("github_contributions_old", {"n": 1})
    clock.advance(90000)

    def denied(path):
        raise PermissionError(errno.EACCES, "Permission denied", path)

    monkeypatch.setattr("contribviz.cache.os.remove", denied)

    assert cache.set("github_contributions_new", {"n": 2}) is False
