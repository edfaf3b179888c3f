"""Advertising platform integrations.

Each supported platform has an adapter with the same capability set:
import costs, serve cost records to the merge, enrich visits, and report
whether it is active.
"""
from .adapters import PLATFORM_ADAPTERS, build_adapters
from .base import CostImporter, PlatformAdapter
from .cost_store import CostStore
from .facebook_ads import FacebookAdsImporter

__all__ = [
    "PLATFORM_ADAPTERS",
    "CostImporter",
    "CostStore",
    "FacebookAdsImporter",
    "PlatformAdapter",
    "build_adapters",
]
