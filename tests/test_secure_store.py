"""Tests for SecureStore and its storage backends."""

from __future__ import annotations

import json
import logging
import stat
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from cryptography.fernet import Fernet

from sessionguard.storage.backends import FileBackend, MemoryBackend
from sessionguard.storage.secure_store import (
    KEY_PREFIX,
    LAST_ACTIVITY,
    SESSION_EXPIRY,
    SecureStore,
)


class TestSecureStore:
    """Tests for encrypted storage semantics."""

    def test_round_trip(self) -> None:
        store = SecureStore()
        store.store(SESSION_EXPIRY, "2026-03-01T12:30:00+00:00")
        store.store("userPreferences", {"email": "owner@example.com", "lastLogin": "x"})
        assert store.retrieve(SESSION_EXPIRY) == "2026-03-01T12:30:00+00:00"
        assert store.retrieve("userPreferences")["email"] == "owner@example.com"

    def test_missing_key_is_none(self) -> None:
        assert SecureStore().retrieve("nothing") is None

    def test_values_are_encrypted_at_rest(self) -> None:
        backend = MemoryBackend()
        store = SecureStore(backend=backend)
        store.store(SESSION_EXPIRY, "2026-03-01T12:30:00+00:00")
        raw = backend.get_item(KEY_PREFIX + SESSION_EXPIRY)
        assert raw is not None
        assert "2026" not in raw

    def test_tampered_value_reads_as_absent(self) -> None:
        backend = MemoryBackend()
        security_log = MagicMock()
        store = SecureStore(backend=backend, security_log=security_log)
        store.store(SESSION_EXPIRY, "2026-03-01T12:30:00+00:00")
        raw = backend.get_item(KEY_PREFIX + SESSION_EXPIRY)
        backend.set_item(KEY_PREFIX + SESSION_EXPIRY, raw[:-4] + "AAAA")

        assert store.retrieve(SESSION_EXPIRY) is None
        security_log.storage_tampered.assert_called_once_with(SESSION_EXPIRY)

    def test_plaintext_written_by_hand_is_rejected(self) -> None:
        """A value not produced by the store cannot be injected."""
        backend = MemoryBackend()
        store = SecureStore(backend=backend)
        backend.set_item(KEY_PREFIX + SESSION_EXPIRY, json.dumps("2099-01-01T00:00:00+00:00"))
        assert store.retrieve(SESSION_EXPIRY) is None

    def test_other_key_cannot_read(self) -> None:
        backend = MemoryBackend()
        SecureStore(backend=backend).store(LAST_ACTIVITY, "x")
        assert SecureStore(backend=backend).retrieve(LAST_ACTIVITY) is None

    def test_shared_key_reads_back(self) -> None:
        backend = MemoryBackend()
        key = Fernet.generate_key().decode()
        SecureStore(backend=backend, key=key).store(LAST_ACTIVITY, "x")
        assert SecureStore(backend=backend, key=key).retrieve(LAST_ACTIVITY) == "x"

    def test_remove(self) -> None:
        store = SecureStore()
        store.store(LAST_ACTIVITY, "x")
        store.remove(LAST_ACTIVITY)
        assert store.retrieve(LAST_ACTIVITY) is None

    def test_clear_all_only_touches_prefixed_keys(self) -> None:
        backend = MemoryBackend()
        backend.set_item("theme", "dark")
        store = SecureStore(backend=backend)
        store.store(SESSION_EXPIRY, "a")
        store.store(LAST_ACTIVITY, "b")

        store.clear_all()

        assert backend.keys() == ["theme"]

    def test_write_failure_is_swallowed(self, caplog) -> None:
        """Storage errors are logged, never raised."""
        backend = MagicMock()
        backend.set_item.side_effect = OSError("quota exceeded")
        store = SecureStore(backend=backend)
        with caplog.at_level(logging.ERROR, logger="sessionguard.storage"):
            store.store(SESSION_EXPIRY, "a")
        assert "quota exceeded" in caplog.text

    def test_read_failure_is_none(self) -> None:
        backend = MagicMock()
        backend.get_item.side_effect = OSError("disk gone")
        assert SecureStore(backend=backend).retrieve(SESSION_EXPIRY) is None

    def test_clear_failure_is_swallowed(self) -> None:
        backend = MagicMock()
        backend.keys.side_effect = OSError("disk gone")
        SecureStore(backend=backend).clear_all()

    def test_unserialisable_value_is_not_stored(self) -> None:
        backend = MemoryBackend()
        SecureStore(backend=backend).store("bad", object())
        assert backend.keys() == []


class TestFileBackend:
    """Tests for the JSON file backend."""

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "store" / "secure_store.json"
        key = Fernet.generate_key()
        SecureStore(backend=FileBackend(path), key=key).store(SESSION_EXPIRY, "a")
        assert SecureStore(backend=FileBackend(path), key=key).retrieve(SESSION_EXPIRY) == "a"

    def test_remove_and_keys(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path / "s.json")
        backend.set_item("a", "1")
        backend.set_item("b", "2")
        backend.remove_item("a")
        backend.remove_item("missing")
        assert backend.keys() == ["b"]
        assert backend.get_item("a") is None

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path / "none.json")
        assert backend.keys() == []
        assert backend.get_item("a") is None

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path: Path) -> None:
        path = tmp_path / "store" / "secure_store.json"
        FileBackend(path).set_item("a", "1")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700

    def test_write_leaves_no_temp_files(self, tmp_path: Path) -> None:
        path = tmp_path / "secure_store.json"
        backend = FileBackend(path)
        for i in range(3):
            backend.set_item("a", str(i))
        assert [p.name for p in tmp_path.iterdir()] == ["secure_store.json"]
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "2"}

    def test_interrupted_write_keeps_previous_contents(self, tmp_path: Path) -> None:
        """A failure mid-write leaves the old file readable and no temp file behind."""
        path = tmp_path / "secure_store.json"
        backend = FileBackend(path)
        backend.set_item("a", "1")

        with patch("sessionguard.storage.backends.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                backend.set_item("b", "2")

        assert backend.get_item("a") == "1"
        assert backend.get_item("b") is None
        assert [p.name for p in tmp_path.iterdir()] == ["secure_store.json"]

    def test_unchanged_value_does_not_rewrite(self, tmp_path: Path) -> None:
        backend = FileBackend(tmp_path / "s.json")
        backend.set_item("a", "1")
        with patch.object(backend, "_write") as write:
            backend.set_item("a", "1")
            write.assert_not_called()

    def test_corrupt_file_reads_as_empty(self, tmp_path: Path, caplog) -> None:
        path = tmp_path / "s.json"
        path.write_text('{"a": "1"', encoding="utf-8")
        backend = FileBackend(path)
        with caplog.at_level(logging.WARNING, logger="sessionguard.storage"):
            assert backend.get_item("a") is None
        assert "unreadable" in caplog.text
        backend.set_item("b", "2")
        assert backend.keys() == ["b"]
