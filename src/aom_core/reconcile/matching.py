"""Cost-to-visit matching for a single (site, date) window.

Platforms are processed in Platform enumeration order. For every relevant
cost record (clicks > 0 or cost > 0) of a platform:

- Visits tagged with that platform whose platform_row_id equals the record's
  external_row_id share the record's cost evenly and leave the visit pool.
- When no visit matches, one synthetic visit carries the full cost so that
  platform totals still reconcile.

Visits left in the pool afterwards are emitted once each without cost and
with a referer-derived channel.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping, Optional, Sequence, Union

from ..schemas.records import (
    AttributedVisit,
    CostRecord,
    Platform,
    VisitRecord,
    synthetic_unique_hash,
    visit_unique_hash,
)
from .channel import ChannelClassifier


LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class PlatformMergeStats:
    """Diagnostics for one platform within a window."""

    platform: Platform
    platform_visits: int = 0
    cost_records: int = 0
    reported_clicks: int = 0
    reported_cost: float = 0.0
    matched_visits: int = 0
    created_visits: int = 0
    unmerged_clicks: int = 0

    @property
    def resulting_visits(self) -> int:
        return self.matched_visits + self.created_visits


@dataclass
class WindowResult:
    """All ledger rows computed for one window plus merge statistics."""

    site_id: int
    day: date
    rows: list[AttributedVisit] = field(default_factory=list)
    platform_stats: list[PlatformMergeStats] = field(default_factory=list)
    visits_in: int = 0
    unmatched_visits: int = 0

    def rows_for_channel(self, channel: str) -> list[AttributedVisit]:
        return [row for row in self.rows if row.channel == channel]


def synthetic_visitor_id(unique_hash: str) -> str:
    """Stable visitor id for rows without an analytics visitor."""
    return hashlib.md5(unique_hash.encode("utf-8")).hexdigest()[:16]


def _visit_hash(visit: VisitRecord, day: date, channel: Optional[str]) -> str:
    if visit.visit_id is not None:
        return visit_unique_hash(visit.visit_id)
    return synthetic_unique_hash(day, channel, visit.model_dump(mode="json"))


def _visit_row(
    visit: VisitRecord,
    day: date,
    channel: Optional[str],
    cost: Optional[float] = None,
    platform_data: Optional[dict] = None,
) -> AttributedVisit:
    return AttributedVisit(
        site_id=visit.site_id,
        visit_id=visit.visit_id,
        visitor_id=visit.visitor_id,
        first_action_time_utc=visit.first_action_time_utc,
        date_website_timezone=day,
        channel=channel,
        campaign_data=dict(visit.campaign_data),
        platform_data=platform_data,
        cost=cost,
        conversions=visit.conversions,
        revenue=visit.revenue,
        unique_hash=_visit_hash(visit, day, channel),
    )


def _synthetic_row(
    record: CostRecord,
    site_id: int,
    day: date,
    channel: str,
    first_action_utc: datetime,
) -> AttributedVisit:
    payload = record.payload()
    unique_hash = synthetic_unique_hash(day, channel, payload)
    return AttributedVisit(
        site_id=site_id,
        visit_id=None,
        visitor_id=synthetic_visitor_id(unique_hash),
        first_action_time_utc=first_action_utc,
        date_website_timezone=day,
        channel=channel,
        campaign_data={},
        platform_data=payload,
        cost=record.cost,
        conversions=None,
        revenue=None,
        unique_hash=unique_hash,
    )


def merge_platform(
    platform: Platform,
    pool: list[VisitRecord],
    records: Sequence[CostRecord],
    site_id: int,
    day: date,
    synthetic_first_action_utc: datetime,
    classifier: ChannelClassifier,
) -> tuple[list[AttributedVisit], list[VisitRecord], PlatformMergeStats]:
    """Match one platform's cost records against the visit pool.

    Args:
        platform: Platform being merged
        pool: Visits not yet claimed by an earlier platform
        records: The platform's cost records for the window
        site_id: Window site
        day: Window date (site-local)
        synthetic_first_action_utc: Local midnight of day, in UTC
        classifier: Channel classifier

    Returns:
        (rows, remaining pool, stats)
    """
    stats = PlatformMergeStats(platform=platform)
    rows: list[AttributedVisit] = []

    platform_visits = [visit for visit in pool if visit.platform == platform.value]
    stats.platform_visits = len(platform_visits)

    claimed: set[int] = set()

    for record in records:
        if not record.is_relevant:
            continue

        stats.cost_records += 1

        matching = [
            visit
            for visit in platform_visits
            if id(visit) not in claimed
            and visit.platform_row_id is not None
            and visit.platform_row_id == record.external_row_id
        ]

        if matching:
            payload = record.payload()
            share = record.cost / len(matching)
            for visit in matching:
                channel = classifier.determine_channel(
                    platform.value, visit.referer_type, visit.campaign_name
                )
                rows.append(
                    _visit_row(visit, day, channel, cost=share, platform_data=payload)
                )
                claimed.add(id(visit))
            stats.matched_visits += len(matching)
        else:
            channel = classifier.determine_channel(platform.value)
            rows.append(
                _synthetic_row(record, site_id, day, channel, synthetic_first_action_utc)
            )
            stats.created_visits += 1
            stats.unmerged_clicks += record.clicks

        stats.reported_clicks += record.clicks
        stats.reported_cost += record.cost

    remaining = [visit for visit in pool if id(visit) not in claimed]
    return rows, remaining, stats


def reconcile_window(
    site_id: int,
    day: date,
    visits: Iterable[VisitRecord],
    costs_by_platform: Mapping[Platform, Sequence[CostRecord]],
    active_platforms: Iterable[Platform],
    synthetic_first_action_utc: datetime,
    classifier: Optional[ChannelClassifier] = None,
    logger: Optional[LoggerLike] = None,
) -> WindowResult:
    """Compute the complete set of ledger rows for one (site, date) window.

    Args:
        site_id: Window site
        day: Window date (site-local)
        visits: Every analytics visit of the window
        costs_by_platform: Cost records of the window per platform
        active_platforms: Platforms enabled in configuration
        synthetic_first_action_utc: Local midnight of day, in UTC
        classifier: Channel classifier (plain referer classification if omitted)
        logger: Run-scoped logger

    Returns:
        WindowResult with rows and per-platform statistics
    """
    log = logger or logging.getLogger(__name__)
    classifier = classifier or ChannelClassifier()
    active = set(active_platforms)

    pool = list(visits)
    result = WindowResult(site_id=site_id, day=day, visits_in=len(pool))

    for platform in Platform:
        if platform not in active:
            continue

        log.debug("Processing %s...", platform.value)

        rows, pool, stats = merge_platform(
            platform,
            pool,
            costs_by_platform.get(platform, ()),
            site_id,
            day,
            synthetic_first_action_utc,
            classifier,
        )
        result.rows.extend(rows)
        result.platform_stats.append(stats)

    log.debug(
        "Will add %s remaining visits now (visits without matching platform row).",
        len(pool),
    )

    for visit in pool:
        channel = classifier.determine_channel(
            None, visit.referer_type, visit.campaign_name
        )
        result.rows.append(_visit_row(visit, day, channel))

    result.unmatched_visits = len(pool)
    return result
