"""Tests for QuotaSettings environment overrides."""

import pytest

from quota.config import DEFAULT_QUOTA, IDENTITY_TIMEOUT_SECONDS, QUOTA_COLLECTION, TESLA_USERINFO_URL, QuotaSettings

ENV_VARS = [
    "QUOTA_DEFAULT_BALANCE",
    "QUOTA_COLLECTION",
    "QUOTA_USERINFO_URL",
    "QUOTA_IDENTITY_TIMEOUT_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = QuotaSettings.from_env()

    assert settings.default_balance == DEFAULT_QUOTA == 10
    assert settings.collection_name == QUOTA_COLLECTION
    assert settings.userinfo_url == TESLA_USERINFO_URL
    assert settings.identity_timeout_seconds == IDENTITY_TIMEOUT_SECONDS


def test_overrides(monkeypatch):
    monkeypatch.setenv("QUOTA_DEFAULT_BALANCE", "25")
    monkeypatch.setenv("QUOTA_COLLECTION", "quota_staging")
    monkeypatch.setenv("QUOTA_USERINFO_URL", "https://idp.test/userinfo")
    monkeypatch.setenv("QUOTA_IDENTITY_TIMEOUT_SECONDS", "2.5")

    settings = QuotaSettings.from_env()

    assert settings.default_balance == 25
    assert settings.collection_name == "quota_staging"
    assert settings.userinfo_url == "https://idp.test/userinfo"
    assert settings.identity_timeout_seconds == 2.5


def test_blank_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("QUOTA_DEFAULT_BALANCE", "  ")
    monkeypatch.setenv("QUOTA_COLLECTION", "")

    settings = QuotaSettings.from_env()

    assert settings.default_balance == DEFAULT_QUOTA
    assert settings.collection_name == QUOTA_COLLECTION


def test_non_integer_default_balance_is_rejected(monkeypatch):
    monkeypatch.setenv("QUOTA_DEFAULT_BALANCE", "ten")

    with pytest.raises(ValueError, match="QUOTA_DEFAULT_BALANCE"):
        QuotaSettings.from_env()


def test_negative_default_balance_is_rejected(monkeypatch):
    monkeypatch.setenv("QUOTA_DEFAULT_BALANCE", "-1")

    with pytest.raises(ValueError):
        QuotaSettings.from_env()


def test_non_positive_timeout_is_rejected(monkeypatch):
    monkeypatch.setenv("QUOTA_IDENTITY_TIMEOUT_SECONDS", "0")

    with pytest.raises(ValueError):
        QuotaSettings.from_env()
