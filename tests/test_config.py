"""
Tests for environment-driven settings.
"""

from yaklog.config import Settings


def test_defaults(monkeypatch):
    for name in ("PORT", "MAX_BODY_BYTES", "YAKLOG_ENV"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.PORT == 3100
    assert settings.MAX_BODY_BYTES == 1_000_000
    assert settings.is_production is False


def test_api_keys_parsed_and_trimmed():
    settings = Settings(_env_file=None, YAKLOG_API_KEYS=" one,two , ,three ")

    assert settings.api_keys == frozenset({"one", "two", "three"})


def test_cors_origins():
    assert Settings(_env_file=None, CORS_ORIGIN="*").cors_origins == ["*"]
    assert Settings(
        _env_file=None, CORS_ORIGIN="http://a.example, http://b.example"
    ).cors_origins == ["http://a.example", "http://b.example"]


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("YAKLOG_DB_PATH", "/tmp/other.db")
    monkeypatch.setenv("YAKLOG_ENV", "production")

    settings = Settings(_env_file=None)

    assert settings.PORT == 8080
    assert settings.YAKLOG_DB_PATH == "/tmp/other.db"
    assert settings.is_production is True
