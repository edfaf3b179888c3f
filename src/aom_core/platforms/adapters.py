"""Concrete platform adapters and the platform -> adapter map."""
import logging
from typing import Optional

import aiohttp

from ..schemas.records import Platform
from ..settings import Settings
from .base import CostImporter, PlatformAdapter
from .facebook_ads import FacebookAdsImporter


class AdWordsAdapter(PlatformAdapter):
    platform = Platform.ADWORDS


class BingAdapter(PlatformAdapter):
    platform = Platform.BING


class CriteoAdapter(PlatformAdapter):
    platform = Platform.CRITEO


class FacebookAdsAdapter(PlatformAdapter):
    platform = Platform.FACEBOOK_ADS


PLATFORM_ADAPTERS: dict[Platform, type[PlatformAdapter]] = {
    Platform.ADWORDS: AdWordsAdapter,
    Platform.BING: BingAdapter,
    Platform.CRITEO: CriteoAdapter,
    Platform.FACEBOOK_ADS: FacebookAdsAdapter,
}


def _build_importer(
    platform: Platform,
    settings: Settings,
    session: Optional[aiohttp.ClientSession],
    logger: Optional[logging.Logger],
) -> Optional[CostImporter]:
    if session is None:
        return None

    if platform is Platform.FACEBOOK_ADS and settings.facebook_ads is not None:
        return FacebookAdsImporter(
            access_token=settings.facebook_ads.access_token,
            account_id=settings.facebook_ads.account_id,
            site_id=settings.facebook_ads.site_id,
            session=session,
            api_version=settings.facebook_ads.api_version,
            logger=logger,
        )

    return None


def build_adapters(
    settings: Settings,
    session: Optional[aiohttp.ClientSession] = None,
    logger: Optional[logging.Logger] = None,
) -> dict[Platform, PlatformAdapter]:
    """Instantiate one adapter per supported platform, in merge order.

    Args:
        settings: Reconciliation settings
        session: aiohttp session for importers; without it no importer is built
        logger: Run-scoped logger handed to every adapter and importer

    Returns:
        Adapters keyed by platform
    """
    adapters: dict[Platform, PlatformAdapter] = {}
    for platform in Platform:
        adapter_cls = PLATFORM_ADAPTERS[platform]
        adapters[platform] = adapter_cls(
            settings,
            importer=_build_importer(platform, settings, session, logger),
            logger=logger,
        )
    return adapters
