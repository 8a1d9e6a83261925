"""Tests for peer configuration parsing."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from homeguard.config import Settings, load_config


class TestPeerMode:
    @pytest.mark.parametrize(("raw", "mode"), [("HTTP", "http"), (" mock ", "mock"), ("", "none")])
    def test_normalized(self, raw, mode):
        assert Settings(peer_mode=raw).peer_mode == mode

    def test_rejects_unknown(self):
        with pytest.raises(ValidationError):
            Settings(peer_mode="serial")


class TestRetrySafeActionsParsing:
    def test_comma_separated_string(self):
        s = Settings(retry_safe_actions="on,off")
        assert s.retry_safe_actions == ["on", "off"]

    def test_comma_separated_with_spaces(self):
        s = Settings(retry_safe_actions=" on , status ")
        assert s.retry_safe_actions == ["on", "status"]

    def test_empty_string(self):
        assert Settings(retry_safe_actions="").retry_safe_actions == []

    def test_list_filters_empty_strings(self):
        s = Settings(retry_safe_actions=["on", "", "off"])
        assert s.retry_safe_actions == ["on", "off"]

    def test_default_excludes_toggle(self):
        assert "toggle" not in Settings().retry_safe_actions

    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOMEGUARD_RETRY_SAFE_ACTIONS", "open,close")
        with patch("homeguard.config._ENV_FILE", tmp_path / ".env"):
            assert load_config().retry_safe_actions == ["open", "close"]


class TestPeerBaseUrl:
    def test_bare_host(self):
        assert Settings(peer_host="10.0.0.7").peer_base_url == "http://10.0.0.7"

    def test_scheme(self):
        s = Settings(peer_host="board.local", peer_scheme="https")
        assert s.peer_base_url == "https://board.local"

    def test_full_url_kept(self):
        s = Settings(peer_host="http://10.0.0.7:8080/")
        assert s.peer_base_url == "http://10.0.0.7:8080"


class TestCredentials:
    def test_both_required(self):
        assert Settings(peer_token="t", peer_secret="s").has_peer_credentials()
        assert not Settings(peer_token="t", peer_secret=None).has_peer_credentials()
        assert not Settings(peer_token="", peer_secret="s").has_peer_credentials()

    def test_secrets_hidden_in_repr(self):
        s = Settings(peer_token="tok-123", peer_secret="sec-456")
        assert "sec-456" not in repr(s)
        assert "tok-123" not in repr(s)


class TestDotEnv:
    def test_env_file_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HOMEGUARD_PEER_HOST", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("HOMEGUARD_PEER_HOST=10.1.1.1\nHOMEGUARD_CODE_WINDOW=30\n")
        with patch("homeguard.config._ENV_FILE", env_file):
            cfg = load_config()
        assert cfg.peer_host == "10.1.1.1"
        assert cfg.code_window == 30

    def test_environment_overrides_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("HOMEGUARD_PEER_HOST=10.1.1.1\n")
        monkeypatch.setenv("HOMEGUARD_PEER_HOST", "10.2.2.2")
        with patch("homeguard.config._ENV_FILE", env_file):
            assert load_config().peer_host == "10.2.2.2"
