"""Tests for config.py."""

import pytest

from csu_portal.config import DEFAULT_CAS_LOGIN_URL, ClientSettings, Credential, mask


class TestClientSettings:
    def test_defaults(self, monkeypatch):
        for name in ("CSU_CAS_URL", "CSU_TIMEOUT", "CSU_VERIFY_SSL", "CSU_USER_AGENT"):
            monkeypatch.delenv(name, raising=False)
        settings = ClientSettings.from_env()
        assert settings.cas_login_url == DEFAULT_CAS_LOGIN_URL
        assert settings.timeout == 30.0
        assert settings.verify_ssl is True

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CSU_CAS_URL", "https://cas.example/login")
        monkeypatch.setenv("CSU_TIMEOUT", "5")
        monkeypatch.setenv("CSU_VERIFY_SSL", "False")
        monkeypatch.setenv("CSU_USER_AGENT", "test-agent")
        settings = ClientSettings.from_env()
        assert settings.cas_login_url == "https://cas.example/login"
        assert settings.timeout == 5.0
        assert settings.verify_ssl is False
        assert settings.user_agent == "test-agent"


class TestCredential:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CSU_STUDENT_ID", "8208000001")
        monkeypatch.setenv("CSU_PASSWORD", "hunter2")
        credential = Credential.from_env()
        assert credential.student_id == "8208000001"
        assert credential.password == "hunter2"

    def test_from_env_missing(self, monkeypatch):
        monkeypatch.delenv("CSU_STUDENT_ID", raising=False)
        monkeypatch.setenv("CSU_PASSWORD", "hunter2")
        with pytest.raises(ValueError):
            Credential.from_env()

    def test_repr_hides_password(self):
        assert "hunter2" not in repr(Credential("8208000001", "hunter2"))

    def test_masked_id(self):
        assert Credential("8208000001", "x").masked_id == "82***1"


class TestMask:
    def test_empty(self):
        assert mask("") == ""

    def test_short(self):
        assert mask("ab") == "***"

    def test_long(self):
        assert mask("8208000001") == "82***1"
