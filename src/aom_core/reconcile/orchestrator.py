"""Visit reprocessing orchestrator.

Coordinates cost imports and the per-window merge for a date range:

1. Check that the analytics source carries campaign data (fatal otherwise)
2. Optionally import every active platform's costs for the whole range
3. For each date and site: fetch visits and costs, merge, replace the
   ledger window, and log reported vs. stored totals

Failures of a single date, site or platform import are collected in the
report and never stop the remaining range.
"""
import asyncio
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

import aiohttp

from ..exceptions import ConfigurationError, CostImportError
from ..platforms import CostStore, PlatformAdapter, build_adapters
from ..schemas.records import CostRecord, Platform
from ..settings import Settings
from .channel import ChannelClassifier
from .dates import TimezoneLookup, local_day_bounds_utc, period_as_dates
from .ledger import AttributionStore, ReplaceStats
from .matching import PlatformMergeStats, reconcile_window
from .schema import connect, init_database
from .visits import SiteTimezoneLookup, SQLiteVisitSource, VisitSource


class RunLogger(logging.LoggerAdapter):
    """Prefixes every message with the task name and run id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['task']} {self.extra['run_id']}] {msg}", kwargs


def make_run_logger(
    base: Optional[logging.Logger] = None, run_id: Optional[str] = None
) -> RunLogger:
    """Create a logger handle scoped to one reprocessing run."""
    return RunLogger(
        base or logging.getLogger(__name__),
        {"task": "reprocess-visits", "run_id": run_id or uuid.uuid4().hex[:8]},
    )


@dataclass
class CostDiscrepancy:
    """Reported platform cost that the stored ledger does not reproduce."""

    site_id: int
    day: date
    platform: Platform
    reported_cost: float
    stored_cost: float

    @property
    def difference(self) -> float:
        return self.reported_cost - self.stored_cost


@dataclass
class WindowReport:
    """Outcome of reprocessing one (site, date) window."""

    site_id: int
    day: date
    visits_in: int
    rows_out: int
    platform_stats: list[PlatformMergeStats] = field(default_factory=list)
    replace_stats: ReplaceStats = field(default_factory=ReplaceStats)
    discrepancies: list[CostDiscrepancy] = field(default_factory=list)


@dataclass
class ReprocessFailure:
    """A unit of work that failed without stopping the run."""

    error: str
    day: Optional[date] = None
    site_id: Optional[int] = None
    platform: Optional[Platform] = None


@dataclass
class ReprocessReport:
    """Aggregate outcome of a reprocessing run."""

    start_date: date
    end_date: date
    windows: list[WindowReport] = field(default_factory=list)
    failures: list[ReprocessFailure] = field(default_factory=list)

    @property
    def total_visits_in(self) -> int:
        return sum(window.visits_in for window in self.windows)

    @property
    def total_rows_out(self) -> int:
        return sum(window.rows_out for window in self.windows)

    @property
    def discrepancies(self) -> list[CostDiscrepancy]:
        return [item for window in self.windows for item in window.discrepancies]

    @property
    def ok(self) -> bool:
        return not self.failures


class ReprocessVisitsService:
    """Allocates platform costs to analytics visits for a date range."""

    def __init__(
        self,
        settings: Settings,
        db_conn: sqlite3.Connection,
        visit_source: VisitSource,
        timezone_lookup: TimezoneLookup,
        site_ids: Optional[Sequence[int]] = None,
        adapters: Optional[dict[Platform, PlatformAdapter]] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        """Initialize service.

        Args:
            settings: Reconciliation settings
            db_conn: Ledger/cost store connection opened with schema.connect()
            visit_source: Analytics visit provider
            timezone_lookup: Site timezone provider
            site_ids: Sites to reprocess (default: every site of the lookup)
            adapters: Platform adapters (default: built from settings)
            logger: Run-scoped logger (default: a new RunLogger)
        """
        self.settings = settings
        self.logger = logger or make_run_logger()
        self.db_conn = db_conn
        self.visit_source = visit_source
        self.timezone_lookup = timezone_lookup
        self._site_ids = list(site_ids) if site_ids is not None else None
        self.adapters = adapters or build_adapters(settings, logger=self.logger)

        self.cost_store = CostStore(db_conn, logger=self.logger)
        self.ledger = AttributionStore(db_conn, logger=self.logger)
        self.classifier = ChannelClassifier(settings.campaign_allowlist)

        self._owned_connections: list[sqlite3.Connection] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session: Optional[aiohttp.ClientSession] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ReprocessVisitsService":
        """Open the configured databases and build every collaborator.

        Args:
            settings: Reconciliation settings
            session: aiohttp session enabling platform importers
            logger: Base logger for the run logger
        """
        run_logger = make_run_logger(logger)

        init_database(settings.db_path)
        db_conn = connect(settings.db_path)
        owned = [db_conn]

        if settings.analytics_db_path == settings.db_path:
            analytics_conn = db_conn
        else:
            analytics_conn = connect(settings.analytics_db_path)
            owned.append(analytics_conn)

        service = cls(
            settings,
            db_conn,
            SQLiteVisitSource(analytics_conn, settings.param_prefix, logger=run_logger),
            SiteTimezoneLookup(analytics_conn),
            adapters=build_adapters(settings, session=session, logger=run_logger),
            logger=run_logger,
        )
        service._owned_connections = owned
        return service

    def close(self) -> None:
        for conn in self._owned_connections:
            conn.close()
        self._owned_connections = []

    def site_ids(self) -> list[int]:
        if self._site_ids is not None:
            return self._site_ids
        list_sites = getattr(self.timezone_lookup, "list_sites", None)
        if list_sites is None:
            raise ConfigurationError("No site ids given and timezone lookup cannot list sites")
        return list_sites()

    def active_adapters(self) -> list[PlatformAdapter]:
        return [
            self.adapters[platform]
            for platform in Platform
            if platform in self.adapters and self.adapters[platform].is_active()
        ]

    async def run(
        self, start_date: date, end_date: date, import_costs: bool = False
    ) -> ReprocessReport:
        """Reprocess every date from start_date to end_date (inclusive).

        Args:
            start_date: First date (site-local)
            end_date: Last date (site-local)
            import_costs: Import platform costs for the range before merging

        Returns:
            ReprocessReport with per-window statistics and failures

        Raises:
            ConfigurationError: If the analytics source lacks campaign data
        """
        report = ReprocessReport(start_date=start_date, end_date=end_date)

        try:
            self.visit_source.check_capabilities()
        except ConfigurationError as exc:
            self.logger.error("%s", exc)
            raise

        self.logger.info(
            "Reprocessing visits from %s until %s (platforms: %s)",
            start_date.isoformat(),
            end_date.isoformat(),
            ", ".join(adapter.name for adapter in self.active_adapters()) or "none",
        )

        if import_costs:
            await self.import_costs(
                min(start_date, end_date), max(start_date, end_date), report
            )

        # Blocking sqlite work; one date at a time, off the event loop
        for day in period_as_dates(start_date, end_date):
            await asyncio.to_thread(self.process_date, day, report)

        self.logger.info(
            "Reprocessed %s visits to %s visits (%s..%s), %s failures.",
            report.total_visits_in,
            report.total_rows_out,
            start_date.isoformat(),
            end_date.isoformat(),
            len(report.failures),
        )
        return report

    async def import_costs(
        self, start_date: date, end_date: date, report: ReprocessReport
    ) -> None:
        """Run every active platform's import for the range before any merge."""
        for adapter in self.active_adapters():
            try:
                await adapter.import_costs(start_date, end_date, self.cost_store)
            except CostImportError as exc:
                self.logger.error(
                    "%s import failed, merging last complete import: %s",
                    adapter.name,
                    exc,
                )
                report.failures.append(
                    ReprocessFailure(error=str(exc), platform=adapter.platform)
                )
            except Exception as exc:
                self.logger.error(
                    "%s import failed, merging last complete import: %s",
                    adapter.name,
                    exc,
                    exc_info=True,
                )
                report.failures.append(
                    ReprocessFailure(error=str(exc), platform=adapter.platform)
                )

    def process_date(self, day: date, report: ReprocessReport) -> None:
        """Reprocess every site's window of one date."""
        visits_in = 0
        rows_out = 0

        for site_id in self.site_ids():
            try:
                window = self.process_window(site_id, day)
            except ConfigurationError as exc:
                self.logger.error("Skipping site %s on %s: %s", site_id, day.isoformat(), exc)
                report.failures.append(
                    ReprocessFailure(error=str(exc), day=day, site_id=site_id)
                )
                continue
            except Exception as exc:
                self.logger.error(
                    "Reprocessing site %s on %s failed: %s",
                    site_id,
                    day.isoformat(),
                    exc,
                    exc_info=True,
                )
                report.failures.append(
                    ReprocessFailure(error=str(exc), day=day, site_id=site_id)
                )
                continue

            report.windows.append(window)
            visits_in += window.visits_in
            rows_out += window.rows_out

        self.logger.info(
            "Reprocessed %s visits to %s visits (%s).", visits_in, rows_out, day.isoformat()
        )

    def process_window(self, site_id: int, day: date) -> WindowReport:
        """Merge and persist one (site, date) window.

        Raises:
            ConfigurationError: If the site has no timezone configured
        """
        start_utc, end_utc = local_day_bounds_utc(site_id, day, self.timezone_lookup)

        visits = self.visit_source.get_visits(site_id, start_utc, end_utc)

        active: list[Platform] = []
        costs: dict[Platform, list[CostRecord]] = {}
        for adapter in self.active_adapters():
            active.append(adapter.platform)
            costs[adapter.platform] = adapter.fetch_costs(self.cost_store, site_id, day)

        result = reconcile_window(
            site_id,
            day,
            visits,
            costs,
            active,
            synthetic_first_action_utc=start_utc,
            classifier=self.classifier,
            logger=self.logger,
        )

        replace_stats = self.ledger.replace_window(site_id, day, result.rows)

        window = WindowReport(
            site_id=site_id,
            day=day,
            visits_in=result.visits_in,
            rows_out=self.ledger.count_rows(site_id, day),
            platform_stats=result.platform_stats,
            replace_stats=replace_stats,
        )

        for stats in result.platform_stats:
            self._log_platform_stats(window, stats)

        return window

    def _log_platform_stats(self, window: WindowReport, stats: PlatformMergeStats) -> None:
        name = stats.platform.value
        stored_cost = self.ledger.stored_cost(window.site_id, window.day, name)

        self.logger.debug(
            "%s %s visits (based on platform hint) resulted in %s %s visits.",
            stats.platform_visits,
            name,
            stats.resulting_visits,
            name,
        )
        self.logger.debug(
            "%s reported %s records (with at least 1 click or cost > 0) with %s clicks.",
            name,
            stats.cost_records,
            stats.reported_clicks,
        )
        self.logger.debug(
            "%s visits matched (based on platform row id), but %s visits had to be "
            "created for %s unmerged clicks.",
            stats.matched_visits,
            stats.created_visits,
            stats.unmerged_clicks,
        )
        self.logger.debug(
            "Total costs reported vs. total costs of all resulting visits are %f vs. %f.",
            stats.reported_cost,
            stored_cost,
        )

        if abs(stats.reported_cost - stored_cost) > self.settings.cost_tolerance:
            discrepancy = CostDiscrepancy(
                site_id=window.site_id,
                day=window.day,
                platform=stats.platform,
                reported_cost=stats.reported_cost,
                stored_cost=stored_cost,
            )
            window.discrepancies.append(discrepancy)
            self.logger.warning(
                "%s cost mismatch for site %s on %s: reported %.2f, stored %.2f",
                name,
                window.site_id,
                window.day.isoformat(),
                stats.reported_cost,
                stored_cost,
            )
