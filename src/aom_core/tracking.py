"""Platform detection from tracked URLs.

Landing URLs carry `{prefix}_platform` (plus further `{prefix}_*` ad params),
or a `gclid` for AdWords auto-tagging.
"""
import logging
from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

from .schemas.records import Platform


logger = logging.getLogger(__name__)


def _query_params(url: Optional[str]) -> dict[str, str]:
    if not url:
        return {}

    try:
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
    except ValueError as exc:
        logger.warning("Failed to parse URL %s: %s", url[:100], exc)
        return {}

    return {key: values[0] for key, values in params.items() if values}


def platform_from_url(url: Optional[str], param_prefix: str = "aom") -> Optional[str]:
    """Return the advertising platform a URL was tagged for.

    Args:
        url: Landing page (or referrer) URL
        param_prefix: Tracking parameter prefix

    Returns:
        Platform name, or None when no supported platform is identified
    """
    params = _query_params(url)

    platform = Platform.from_name(params.get(f"{param_prefix}_platform", ""))
    if platform is not None:
        return platform.value

    if "gclid" in params:
        return Platform.ADWORDS.value

    return None


def ad_params_from_url(
    url: Optional[str],
    param_prefix: str = "aom",
    active_platforms: Optional[Iterable[Platform]] = None,
) -> Optional[dict[str, str]]:
    """Extract this plugin's ad params from a URL.

    Returns:
        Sorted `{param: value}` with the prefix stripped (always including
        "platform"), or None when the URL is untagged or the platform is
        not active
    """
    platform = platform_from_url(url, param_prefix)
    if platform is None:
        return None

    if active_platforms is not None and Platform(platform) not in set(active_platforms):
        return None

    prefix = f"{param_prefix}_"
    params = _query_params(url)

    ad_params = {
        key[len(prefix):]: value
        for key, value in params.items()
        if key.startswith(prefix)
    }
    ad_params["platform"] = platform
    if "gclid" in params:
        ad_params["gclid"] = params["gclid"]

    return dict(sorted(ad_params.items()))


def params_url(
    url: Optional[str], url_ref: Optional[str], param_prefix: str = "aom"
) -> Optional[str]:
    """Choose which of page URL and referrer URL carries the ad params.

    The page URL wins when it identifies a platform; otherwise the referrer.
    """
    if url and platform_from_url(url, param_prefix):
        return url
    return url_ref or None
