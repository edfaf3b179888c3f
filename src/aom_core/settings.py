"""Runtime settings loaded from environment variables."""
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, SecretStr

from .schemas.records import Platform


logger = logging.getLogger(__name__)


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_platforms(value: Optional[str]) -> list[Platform]:
    platforms: list[Platform] = []
    for name in _split_csv(value):
        platform = Platform.from_name(name)
        if platform is None:
            logger.warning("Ignoring unsupported platform in AOM_ACTIVE_PLATFORMS: %s", name)
            continue
        if platform not in platforms:
            platforms.append(platform)
    return platforms


class FacebookAdsSettings(BaseModel):
    """Credentials and account mapping for the Facebook Ads importer."""

    access_token: str
    account_id: str
    site_id: int
    api_version: str = "v18.0"


class Settings(BaseModel):
    """Reconciliation settings."""

    db_path: Path = Field(Path("data/aom.db"), description="Ledger and cost store database")
    analytics_db_path: Path = Field(
        Path("data/aom.db"), description="Analytics database holding visits and sites"
    )
    active_platforms: list[Platform] = Field(default_factory=list)
    param_prefix: str = "aom"
    campaign_allowlist: list[str] = Field(default_factory=list)
    cost_tolerance: float = Field(
        0.01, description="Allowed absolute difference between reported and stored cost"
    )
    facebook_ads: Optional[FacebookAdsSettings] = None
    api_key: Optional[SecretStr] = Field(None, description="Key required by the HTTP API")

    def is_active(self, platform: Platform) -> bool:
        return platform in self.active_platforms

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from AOM_* and FACEBOOK_ADS_* environment variables."""
        db_path = Path(os.getenv("AOM_DB_PATH", "data/aom.db"))
        analytics_db_path = Path(os.getenv("AOM_ANALYTICS_DB_PATH", str(db_path)))

        facebook_ads = None
        fb_token = os.getenv("FACEBOOK_ADS_ACCESS_TOKEN")
        fb_account = os.getenv("FACEBOOK_ADS_ACCOUNT_ID")
        fb_site = os.getenv("FACEBOOK_ADS_SITE_ID")
        if fb_token and fb_account and fb_site:
            facebook_ads = FacebookAdsSettings(
                access_token=fb_token,
                account_id=fb_account,
                site_id=int(fb_site),
                api_version=os.getenv("FACEBOOK_ADS_API_VERSION", "v18.0"),
            )

        return cls(
            db_path=db_path,
            analytics_db_path=analytics_db_path,
            active_platforms=_parse_platforms(os.getenv("AOM_ACTIVE_PLATFORMS")),
            param_prefix=os.getenv("AOM_PARAM_PREFIX", "aom"),
            campaign_allowlist=_split_csv(os.getenv("AOM_CAMPAIGN_ALLOWLIST")),
            cost_tolerance=float(os.getenv("AOM_COST_TOLERANCE", "0.01")),
            facebook_ads=facebook_ads,
            api_key=os.getenv("AOM_API_KEY") or None,
        )
