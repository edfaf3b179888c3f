"""Unit tests for environment settings."""
import os
from pathlib import Path
from unittest.mock import patch

from aom_core.schemas.records import Platform
from aom_core.settings import Settings


def test_defaults():
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings.from_env()

    assert settings.db_path == Path("data/aom.db")
    assert settings.analytics_db_path == settings.db_path
    assert settings.active_platforms == []
    assert settings.param_prefix == "aom"
    assert settings.cost_tolerance == 0.01
    assert settings.facebook_ads is None
    assert settings.api_key is None


def test_from_env():
    env = {
        "AOM_DB_PATH": "/tmp/ledger.db",
        "AOM_ANALYTICS_DB_PATH": "/tmp/analytics.db",
        "AOM_ACTIVE_PLATFORMS": "FacebookAds, AdWords,Unknown,AdWords",
        "AOM_CAMPAIGN_ALLOWLIST": "Spring Sale, Newsletter",
        "AOM_COST_TOLERANCE": "0.5",
        "FACEBOOK_ADS_ACCESS_TOKEN": "token",
        "FACEBOOK_ADS_ACCOUNT_ID": "act_1",
        "FACEBOOK_ADS_SITE_ID": "3",
    }
    with patch.dict(os.environ, env, clear=True):
        settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/ledger.db")
    assert settings.analytics_db_path == Path("/tmp/analytics.db")
    assert settings.active_platforms == [Platform.FACEBOOK_ADS, Platform.ADWORDS]
    assert settings.is_active(Platform.ADWORDS)
    assert not settings.is_active(Platform.BING)
    assert settings.campaign_allowlist == ["Spring Sale", "Newsletter"]
    assert settings.cost_tolerance == 0.5
    assert settings.facebook_ads.site_id == 3
    assert settings.facebook_ads.api_version == "v18.0"


def test_api_key_is_secret():
    with patch.dict(os.environ, {"AOM_API_KEY": "s3cret"}, clear=True):
        settings = Settings.from_env()

    assert settings.api_key.get_secret_value() == "s3cret"
    assert "s3cret" not in repr(settings)
