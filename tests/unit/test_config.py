"""
Tests for settings parsing and production validation.
"""
import pytest

from tourpass.core.config import Settings, DEFAULT_CORS_ORIGINS

SECURE_KEY = "k3x9-QvT2m8s7Lr0pW4yZb6n1Hc5Fd"


def build(**overrides) -> Settings:
    values = dict(
        DATABASE_URL="postgresql+asyncpg://app:pw@db.internal:5432/tourpass",
        SECRET_KEY=SECURE_KEY,
        ENVIRONMENT="development",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.mark.parametrize("url,expected", [
    ("postgres://u:p@db:5432/x", "postgresql+asyncpg://u:p@db:5432/x"),
    ("postgresql://u:p@db:5432/x", "postgresql+asyncpg://u:p@db:5432/x"),
    ("postgresql+asyncpg://u:p@db:5432/x", "postgresql+asyncpg://u:p@db:5432/x"),
])
def test_database_url_uses_asyncpg(url, expected):
    assert build(DATABASE_URL=url).DATABASE_URL == expected


@pytest.mark.parametrize("raw,expected", [
    ('["https://a.example", "https://b.example"]', ["https://a.example", "https://b.example"]),
    ("https://a.example, https://b.example", ["https://a.example", "https://b.example"]),
    ("", DEFAULT_CORS_ORIGINS),
])
def test_cors_origins_parsing(raw, expected):
    assert build(CORS_ORIGINS=raw).CORS_ORIGINS == expected


def test_refund_defaults():
    settings = build()
    assert settings.REFUND_REQUEST_PREFIX == "REF"
    assert settings.DEFAULT_REFUND_METHOD == "original_payment"


@pytest.mark.parametrize("overrides,fragment", [
    ({"DEBUG": True}, "DEBUG=True is forbidden"),
    ({"SECRET_KEY": "changeme-please"}, "Insecure SECRET_KEY"),
    ({"DATABASE_URL": "postgresql+asyncpg://u:p@localhost:5432/x"}, "Localhost DATABASE_URL"),
    ({"CORS_ORIGINS": "*"}, "Wildcard"),
])
def test_production_rejects_insecure_config(overrides, fragment):
    values = {"CORS_ORIGINS": "https://tourpass.example"}
    values.update(overrides)
    with pytest.raises(ValueError, match=fragment):
        build(ENVIRONMENT="production", **values)


def test_production_accepts_secure_config():
    settings = build(ENVIRONMENT="production", CORS_ORIGINS="https://tourpass.example")
    assert settings.DEBUG is False
