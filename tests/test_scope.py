"""Tests for Scope and resolve_scope."""

from pathlib import Path

import pytest

from boxy.core.errors import InvalidScopeError
from boxy.core.scope import GLOBAL, Scope, resolve_scope


class TestResolveScope:
    """CLI scope options to Scope."""

    def test_defaults_to_global(self) -> None:
        assert resolve_scope() is GLOBAL
        assert resolve_scope("global") is GLOBAL
        assert resolve_scope("GLOBAL") is GLOBAL
        assert resolve_scope(global_flag=True) is GLOBAL

    def test_local_with_directory(self, tmp_path: Path) -> None:
        scope = resolve_scope("local", str(tmp_path))
        assert not scope.is_global
        assert scope.workdir == tmp_path.resolve()

    def test_local_expands_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / "proj").mkdir()
        scope = resolve_scope("local", "~/proj")
        assert scope.workdir == (tmp_path / "proj").resolve()

    def test_local_requires_directory(self) -> None:
        with pytest.raises(InvalidScopeError, match="--dir"):
            resolve_scope("local")
        with pytest.raises(InvalidScopeError):
            resolve_scope("local", "   ")

    def test_local_directory_must_exist(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidScopeError, match="does not exist"):
            resolve_scope("local", str(tmp_path / "missing"))

    def test_directory_without_local_scope(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidScopeError):
            resolve_scope(None, str(tmp_path))
        with pytest.raises(InvalidScopeError):
            resolve_scope("global", str(tmp_path))

    def test_global_flag_conflicts_with_local(self, tmp_path: Path) -> None:
        with pytest.raises(InvalidScopeError, match="conflicts"):
            resolve_scope("local", str(tmp_path), global_flag=True)

    def test_unknown_scope(self) -> None:
        with pytest.raises(InvalidScopeError, match="Unsupported scope"):
            resolve_scope("system")


class TestQualify:
    """Cache and resource keys."""

    def test_global_key(self) -> None:
        assert GLOBAL.qualify("npm") == "npm-global"
        assert GLOBAL.label == "global"

    def test_local_key_hashes_directory(self, tmp_path: Path) -> None:
        key = Scope.local(tmp_path).qualify("npm")
        prefix, digest = key.rsplit("-", 1)
        assert prefix == "npm-local"
        assert len(digest) == 16
        int(digest, 16)

    def test_distinct_directories_get_distinct_keys(self, tmp_path: Path) -> None:
        a = Scope.local(tmp_path / "a").qualify("npm")
        b = Scope.local(tmp_path / "b").qualify("npm")
        assert a != b
        assert Scope.local(tmp_path / "a").qualify("npm") == a
