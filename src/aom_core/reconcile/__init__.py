"""AOM cost-to-visit reconciliation.

Allocates ad platform spend to analytics visits per (site, date) window:
- Matching: cost records vs. visits carrying a platform row reference
- Ledger: aom_visits rows, replaced atomically per window
- Orchestrator: optional cost import, then merge for every date and site
"""
from .channel import ChannelClassifier, referer_type_label
from .ledger import AttributionStore, ReplaceStats
from .matching import PlatformMergeStats, WindowResult, reconcile_window
from .orchestrator import (
    CostDiscrepancy,
    ReprocessFailure,
    ReprocessReport,
    ReprocessVisitsService,
    WindowReport,
)
from .schema import connect, init_database

__all__ = [
    "AttributionStore",
    "ChannelClassifier",
    "CostDiscrepancy",
    "PlatformMergeStats",
    "ReplaceStats",
    "ReprocessFailure",
    "ReprocessReport",
    "ReprocessVisitsService",
    "WindowReport",
    "WindowResult",
    "connect",
    "init_database",
    "reconcile_window",
    "referer_type_label",
]
