"""Platform adapter and cost importer contracts."""
import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from ..schemas.records import CostRecord, Platform, VisitRecord
from ..settings import Settings
from .cost_store import CostStore


class CostImporter(ABC):
    """Fetches a platform's cost records for a local-date range.

    Implementations own network calls, auth, pagination and report polling,
    and must either store a complete result for the range or raise
    CostImportError without touching the stored records.
    """

    platform: Platform

    @abstractmethod
    async def fetch_costs(self, start_date: date, end_date: date) -> list[CostRecord]:
        """Return every cost record of the range.

        Raises:
            CostImportError: On network, auth or parse failures
        """

    async def import_costs(
        self, start_date: date, end_date: date, cost_store: CostStore
    ) -> int:
        """Fetch the range and replace the stored records for it.

        Returns:
            Number of records stored
        """
        records = await self.fetch_costs(start_date, end_date)
        return cost_store.replace_period(
            self.platform,
            start_date,
            end_date,
            records,
            site_id=self.site_id,
        )

    @property
    def site_id(self) -> Optional[int]:
        """Site the imported account is mapped to (None: all sites)."""
        return None


class PlatformAdapter:
    """Capabilities shared by every supported platform.

    {import_costs, fetch_costs, enrich_visit, is_active}
    """

    platform: Platform

    def __init__(
        self,
        settings: Settings,
        importer: Optional[CostImporter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            settings: Reconciliation settings (activation flags)
            importer: Cost importer, None when costs are loaded externally
            logger: Optional logger instance
        """
        self.settings = settings
        self.importer = importer
        self.logger = logger or logging.getLogger(__name__)

    @property
    def name(self) -> str:
        return self.platform.value

    def is_active(self) -> bool:
        """Whether this platform has been activated in configuration."""
        return self.settings.is_active(self.platform)

    async def import_costs(
        self, start_date: date, end_date: date, cost_store: CostStore
    ) -> Optional[int]:
        """Import costs for the range; returns None when skipped."""
        if not self.is_active():
            return None

        if self.importer is None:
            self.logger.info(
                "No importer configured for %s, using stored cost records", self.name
            )
            return None

        self.logger.info(
            "Importing %s costs for %s..%s",
            self.name,
            start_date.isoformat(),
            end_date.isoformat(),
        )
        return await self.importer.import_costs(start_date, end_date, cost_store)

    def fetch_costs(self, cost_store: CostStore, site_id: int, day: date) -> list[CostRecord]:
        """Cost records the merge consumes for one window."""
        return cost_store.fetch_window(self.platform, site_id, day)

    def enrich_visit(self, visit: VisitRecord, cost_store: CostStore) -> Optional[dict]:
        """Return ad details for a visit that came from this platform.

        Returns:
            {"source", "campaign", "campaignId", "cpc"} or None when the
            visit does not reference a known cost record of this platform
        """
        if visit.platform != self.name or not visit.platform_row_id:
            return None

        record = cost_store.get(self.platform, visit.platform_row_id)
        if record is None:
            return None

        return {
            "source": self.name,
            "campaign": record.campaign,
            "campaignId": record.campaign_id,
            "cpc": record.cpc,
        }
