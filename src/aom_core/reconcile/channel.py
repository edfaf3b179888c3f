"""Channel classification for reconciled visits.

Channel resolution (in order):
- Platform: an ad platform the visit or cost was attributed to wins verbatim
- Allow-listed campaign: campaign referers whose name is on the allow-list
- Referer type: direct | search_engine | website | campaign | ""
"""
from typing import Iterable, Optional


REFERER_TYPE_LABELS = {
    1: "direct",
    2: "search_engine",
    3: "website",
    6: "campaign",
}


def referer_type_label(code: Optional[int]) -> str:
    """Map an analytics referer type code to its channel label.

    Unknown and missing codes map to an empty label.
    """
    if code is None:
        return ""
    try:
        return REFERER_TYPE_LABELS.get(int(code), "")
    except (TypeError, ValueError):
        return ""


class ChannelClassifier:
    """Derives the channel label of a visit or synthetic record."""

    def __init__(self, campaign_allowlist: Optional[Iterable[str]] = None) -> None:
        """Initialize classifier.

        Args:
            campaign_allowlist: Campaign names that become their own channel
                when a visit arrives via a campaign referer
        """
        self._allowlist = {
            name.lower(): name for name in (campaign_allowlist or []) if name
        }

    def determine_channel(
        self,
        platform: Optional[str] = None,
        referer_type: Optional[str] = None,
        campaign_name: Optional[str] = None,
    ) -> Optional[str]:
        """Return the channel for the given tracking information.

        Args:
            platform: Ad platform name (authoritative when present)
            referer_type: Referer label from referer_type_label()
            campaign_name: Tracked campaign name (nullable)

        Returns:
            Channel label, or None when nothing is known
        """
        if platform is not None:
            return platform

        if referer_type == "campaign" and campaign_name and self._allowlist:
            allowed = self._allowlist.get(campaign_name.strip().lower())
            if allowed is not None:
                return allowed

        return referer_type
