"""Unit tests for the file-backed TTL cache."""

import json
import os
from pathlib import Path

import pytest

from boxy.core.cache import Cache
from boxy.core.errors import DeserializationError, SerializationError
from boxy.core.models import decode_packages


class Clock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCache:
    """Tests for Cache get/set/invalidate/clean."""

    @pytest.fixture
    def clock(self) -> Clock:
        return Clock()

    @pytest.fixture
    def cache(self, tmp_path: Path, clock: Clock) -> Cache:
        return Cache(tmp_path / "cache", ttl=60, clock=clock)

    def test_missing_key_is_a_miss(self, cache: Cache) -> None:
        assert cache.get("npm-global") is None

    def test_set_then_get(self, cache: Cache) -> None:
        cache.set("brew", [{"name": "jq"}])
        assert cache.get("brew") == [{"name": "jq"}]

    def test_file_format(self, cache: Cache, clock: Clock) -> None:
        """Entries are stored as {data, cached_at} in <key>.json."""
        cache.set("brew", {"a": 1})
        entry = json.loads((cache.cache_dir / "brew.json").read_text())
        assert entry == {"data": {"a": 1}, "cached_at": int(clock.now)}

    def test_set_creates_directory(self, tmp_path: Path) -> None:
        cache = Cache(tmp_path / "deep" / "nested")
        cache.set("k", 1)
        assert (tmp_path / "deep" / "nested" / "k.json").exists()

    def test_set_leaves_no_temp_files(self, cache: Cache) -> None:
        cache.set("k", 1)
        cache.set("k", 2)
        assert sorted(p.name for p in cache.cache_dir.iterdir()) == ["k.json"]
        assert cache.get("k") == 2

    def test_entry_valid_at_exact_ttl(self, cache: Cache, clock: Clock) -> None:
        cache.set("k", "v")
        clock.now += 60
        assert cache.get("k") == "v"

    def test_entry_expires_after_ttl(self, cache: Cache, clock: Clock) -> None:
        cache.set("k", "v")
        clock.now += 61
        assert cache.get("k") is None
        # expired entries stay on disk until invalidated or cleaned
        assert (cache.cache_dir / "k.json").exists()

    def test_corrupt_file_raises(self, cache: Cache) -> None:
        cache.cache_dir.mkdir(parents=True)
        (cache.cache_dir / "k.json").write_text("{not json")
        with pytest.raises(DeserializationError):
            cache.get("k")

    def test_missing_fields_raise(self, cache: Cache) -> None:
        cache.cache_dir.mkdir(parents=True)
        (cache.cache_dir / "k.json").write_text(json.dumps({"data": []}))
        with pytest.raises(DeserializationError):
            cache.get("k")

    def test_decoder_applied(self, cache: Cache) -> None:
        cache.set("k", [{"name": "jq", "version": "1.7", "manager": "brew"}])
        pkgs = cache.get("k", decode=decode_packages)
        assert pkgs[0].name == "jq"
        assert pkgs[0].outdated is False

    def test_decoder_rejection_raises(self, cache: Cache) -> None:
        cache.set("k", [{"name": "jq"}])
        with pytest.raises(DeserializationError):
            cache.get("k", decode=decode_packages)

    def test_unserialisable_value_raises(self, cache: Cache) -> None:
        with pytest.raises(SerializationError):
            cache.set("k", {"when": object()})
        assert not (cache.cache_dir / "k.json").exists()

    def test_invalidate(self, cache: Cache) -> None:
        cache.set("k", 1)
        cache.invalidate("k")
        assert cache.get("k") is None

    def test_invalidate_missing_is_noop(self, cache: Cache) -> None:
        cache.invalidate("never-set")

    def test_clean_removes_old_entries(self, cache: Cache, clock: Clock) -> None:
        cache.set("old", 1)
        cache.set("new", 2)
        os.utime(cache.cache_dir / "old.json", (clock.now - 500, clock.now - 500))
        os.utime(cache.cache_dir / "new.json", (clock.now - 10, clock.now - 10))

        assert cache.clean(older_than=100) == 1
        assert not (cache.cache_dir / "old.json").exists()
        assert (cache.cache_dir / "new.json").exists()

    def test_clean_on_missing_directory(self, tmp_path: Path) -> None:
        assert Cache(tmp_path / "absent").clean(0) == 0
