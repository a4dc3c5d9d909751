"""Tests for SessionGuard core modules: logging, GuardConfig and clock helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from conftest import T0, ManualClock

from sessionguard.core.clock import SystemClock, from_iso, to_iso
from sessionguard.core.config import GuardConfig, LockoutPolicy, SessionTimings
from sessionguard.core.logger import (
    SECURITY_LOGGER,
    SecurityLog,
    configure_logging,
    mask_email,
    redact,
)


def _events(caplog) -> list[dict]:
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == SECURITY_LOGGER]


# -------------------------------------------------------------------------
# SecurityLog Tests
# -------------------------------------------------------------------------

class TestSecurityLog:
    """Tests for the JSON-lines security event log."""

    def test_event_has_required_fields(self, caplog) -> None:
        """event() should log one JSON object stamped with the injected clock."""
        log = SecurityLog(clock=ManualClock(T0))
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER):
            record = log.event("lockout", "high", failed_attempts=5)
        [event] = _events(caplog)
        assert event == record
        assert event["event_type"] == "lockout"
        assert event["severity"] == "HIGH"
        assert event["component"] == "guard"
        assert event["timestamp"] == to_iso(T0)
        assert event["failed_attempts"] == 5

    def test_severity_mapping(self, caplog) -> None:
        """Severity levels should map to appropriate Python log levels."""
        log = SecurityLog()
        with caplog.at_level(logging.DEBUG, logger=SECURITY_LOGGER):
            log.event("test", "low")
            log.event("test", "medium")
            log.event("test", "high")
            log.event("test", "critical")
        levels = [r.levelno for r in caplog.records if r.name == SECURITY_LOGGER]
        assert levels == [logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL]

    def test_helpers_mask_email(self, caplog) -> None:
        """Raw addresses never reach the log."""
        log = SecurityLog()
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER):
            log.sign_in_blocked("owner@example.com", 12)
            log.lockout("owner@example.com", 5)
            log.forced_sign_out("owner@example.com", "Session expired")
        assert "owner@example.com" not in caplog.text
        blocked, lockout, forced = _events(caplog)
        assert blocked["event_type"] == "sign_in_blocked"
        assert blocked["email"] == "o***@example.com"
        assert blocked["minutes_remaining"] == 12
        assert lockout["severity"] == "HIGH"
        assert lockout["failed_attempts"] == 5
        assert forced["reason"] == "Session expired"

    def test_forced_sign_out_without_user(self) -> None:
        assert SecurityLog().forced_sign_out(None, "Session ended")["email"] is None

    def test_storage_tampered(self) -> None:
        record = SecurityLog().storage_tampered("sessionExpiry")
        assert record["event_type"] == "storage_tampered"
        assert record["key"] == "sessionExpiry"

    def test_secrets_redacted_in_event(self, caplog) -> None:
        log = SecurityLog()
        with caplog.at_level(logging.WARNING, logger=SECURITY_LOGGER):
            log.event("forced_sign_out", "medium", access_token="opaque-token-value", reason="Session expired")
        assert "opaque-token-value" not in caplog.text
        assert "Session expired" in caplog.text

    def test_writes_jsonl_file(self, tmp_path: Path) -> None:
        log = SecurityLog(log_dir=tmp_path)
        log.storage_tampered("sessionExpiry")
        log.lockout("owner@example.com", 5)
        log.close()

        lines = (tmp_path / "security_events.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["event_type"] for line in lines] == ["storage_tampered", "lockout"]


class TestRedact:
    """Tests for secret redaction."""

    def test_secret_fields(self) -> None:
        assert redact("password", "Correct-Horse1") == "[REDACTED]"
        assert redact("Refresh_Token", "abc123") == "[REDACTED]"
        assert redact("storage_key", "abc") == "[REDACTED]"

    def test_token_shapes_in_any_field(self) -> None:
        jwt = "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.eyJzdWIiOiIxMjMifQ.sig"
        assert redact("header", f"Bearer {jwt}") == "Bearer [REDACTED]"
        assert redact("note", "sb_secret_abcdefghijklmnopqrstuv") == "[REDACTED]"

    def test_nested_values(self) -> None:
        session = {"refresh_token": "abc", "user": {"email": "o***@example.com"}, "state": "ok"}
        assert redact("session", session) == {
            "refresh_token": "[REDACTED]",
            "user": {"email": "o***@example.com"},
            "state": "ok",
        }
        assert redact("tokens", ["gAAAAA" + "x" * 48, "plain"]) == ["[REDACTED]", "plain"]

    def test_safe_values_untouched(self) -> None:
        assert redact("state", "authenticated") == "authenticated"
        assert redact("count", 42) == 42
        assert redact("password", None) is None


class TestConfigureLogging:
    """Tests for the sessionguard handler setup."""

    @pytest.fixture(autouse=True)
    def _fresh_root(self):
        root = logging.getLogger("sessionguard")
        saved_handlers, saved_level = root.handlers[:], root.level
        root.handlers.clear()
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    def test_sets_level(self) -> None:
        assert configure_logging("DEBUG").level == logging.DEBUG

    def test_handlers_added_once(self) -> None:
        root = configure_logging()
        count = len(root.handlers)
        configure_logging("WARNING")
        assert len(root.handlers) == count
        assert root.level == logging.WARNING

    def test_file_output(self, tmp_path: Path) -> None:
        configure_logging(log_dir=tmp_path)
        logging.getLogger("sessionguard.auth").info("Restored session for o***@example.com")
        for handler in logging.getLogger("sessionguard").handlers:
            handler.flush()
        assert "Restored session" in (tmp_path / "sessionguard.log").read_text(encoding="utf-8")


class TestMaskEmail:
    """Tests for email pseudonymisation."""

    def test_masks_local_part(self) -> None:
        assert mask_email("owner@example.com") == "o***@example.com"

    def test_invalid_input(self) -> None:
        assert mask_email("not-an-email") == "***"
        assert mask_email("@example.com") == "***"
        assert mask_email(None) == "***"


# -------------------------------------------------------------------------
# Clock helpers
# -------------------------------------------------------------------------

class TestClock:
    """Tests for the clock and ISO-8601 helpers."""

    def test_system_clock_is_utc(self) -> None:
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_iso_round_trip(self) -> None:
        when = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
        assert from_iso(to_iso(when)) == when

    def test_accepts_z_suffix(self) -> None:
        assert from_iso("2026-03-01T12:30:00Z") == datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)

    def test_naive_values_are_utc(self) -> None:
        assert from_iso("2026-03-01T12:30:00").tzinfo == timezone.utc
        assert to_iso(datetime(2026, 3, 1, 12, 30)).endswith("+00:00")

    def test_malformed_returns_none(self) -> None:
        assert from_iso("yesterday") is None
        assert from_iso(None) is None  # type: ignore[arg-type]


# -------------------------------------------------------------------------
# GuardConfig Tests
# -------------------------------------------------------------------------

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"

_VALID = (
    "sessionguard:\n  version: '1.0'\n  log_level: INFO\n"
    "session:\n  timeout_seconds: 1800\n  warning_seconds: 300\n"
    "  refresh_threshold_seconds: 600\n  check_interval_seconds: 60\n"
    "lockout:\n  max_attempts: 5\n  duration_seconds: 900\n"
    "storage:\n  backend: memory\n"
)


class TestGuardConfig:
    """Tests for the GuardConfig configuration manager."""

    def test_loads_config(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg._data != {}

    def test_get_dotted_key(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.get("sessionguard.log_level") == "INFO"
        assert cfg.get("provider.kind") == "memory"

    def test_get_missing_key_returns_default(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.get("nonexistent.key") is None
        assert cfg.get("nonexistent.key", "fallback") == "fallback"

    def test_default_timings(self) -> None:
        """Shipped config matches the built-in session constants."""
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.timings == SessionTimings()
        assert cfg.timings.session_timeout == 1800
        assert cfg.timings.refresh_threshold == 600
        assert cfg.timings.session_warning == 300
        assert cfg.timings.check_interval == 60

    def test_default_lockout(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.lockout == LockoutPolicy(max_attempts=5, lockout_duration=900)

    def test_missing_file_uses_defaults(self) -> None:
        cfg = GuardConfig(config_path="/nonexistent/config.yaml")
        assert cfg._data == {}
        assert cfg.timings == SessionTimings()
        assert cfg.lockout == LockoutPolicy()

    def test_storage_path_expands_user(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert "~" not in str(cfg.storage_path)
        assert cfg.storage_path.name == "secure_store.json"

    def test_env_overrides(self, monkeypatch) -> None:
        """Secrets from the environment win over the file."""
        monkeypatch.setenv("SESSIONGUARD_STORAGE_KEY", "env-key")
        monkeypatch.setenv("SUPABASE_URL", "https://abc.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.storage_key == "env-key"
        assert cfg.supabase_url == "https://abc.supabase.co"
        assert cfg.supabase_anon_key == "anon"

    def test_validate_valid_config(self) -> None:
        cfg = GuardConfig(config_path=CONFIG_PATH)
        assert cfg.validate() is True

    def test_validate_empty_config(self) -> None:
        cfg = GuardConfig(config_path="nonexistent.yaml")
        with pytest.raises(ValueError, match="empty"):
            cfg.validate()

    def test_validate_missing_sections(self, tmp_path: Path) -> None:
        bad_config = tmp_path / "bad.yaml"
        bad_config.write_text("sessionguard:\n  version: '1.0'\n")
        cfg = GuardConfig(config_path=bad_config)
        with pytest.raises(ValueError, match="Missing required"):
            cfg.validate()

    def test_validate_rejects_inverted_windows(self, tmp_path: Path) -> None:
        """The warning window must fit inside the refresh threshold."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(_VALID.replace("warning_seconds: 300", "warning_seconds: 900"))
        cfg = GuardConfig(config_path=config_file)
        with pytest.raises(ValueError, match="refresh_threshold"):
            cfg.validate()

    def test_validate_rejects_zero_attempts(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(_VALID.replace("max_attempts: 5", "max_attempts: 0"))
        cfg = GuardConfig(config_path=config_file)
        with pytest.raises(ValueError, match="max_attempts"):
            cfg.validate()

    def test_validate_rejects_unknown_backend(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(_VALID.replace("backend: memory", "backend: cookies"))
        cfg = GuardConfig(config_path=config_file)
        with pytest.raises(ValueError, match="storage.backend"):
            cfg.validate()

    def test_reload_keeps_old_config_on_invalid(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(_VALID)
        cfg = GuardConfig(config_path=config_file)

        config_file.write_text("sessionguard:\n  version: '1.0'\n")
        cfg.reload()

        assert cfg.get("lockout.max_attempts") == 5

    def test_reload_applies_valid_changes(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(_VALID)
        cfg = GuardConfig(config_path=config_file)

        config_file.write_text(_VALID.replace("max_attempts: 5", "max_attempts: 3"))
        cfg.reload()
        assert cfg.lockout.max_attempts == 3
