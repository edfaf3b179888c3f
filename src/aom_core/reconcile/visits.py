"""Analytics-side collaborators: visit source and site timezones.

Both read the analytics SQLite database (tables `site`, `log_visit`,
`log_conversion`). Visit timestamps are stored as UTC 'YYYY-MM-DD HH:MM:SS'.
"""
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from ..exceptions import ConfigurationError
from ..schemas.records import VisitRecord
from ..tracking import ad_params_from_url, params_url
from .channel import referer_type_label
from .dates import format_utc


# Campaign columns added by the companion campaign-tracking plugin
REQUIRED_VISIT_COLUMNS = (
    "campaign_name",
    "campaign_keyword",
    "campaign_source",
    "campaign_medium",
    "campaign_content",
    "campaign_id",
    "aom_platform",
    "aom_platform_row_id",
)

CAMPAIGN_DATA_FIELDS = (
    ("campaign_name", "campaignName"),
    ("campaign_keyword", "campaignKeyword"),
    ("campaign_source", "campaignSource"),
    ("campaign_medium", "campaignMedium"),
    ("campaign_content", "campaignContent"),
    ("campaign_id", "campaignId"),
    ("referer_name", "refererName"),
    ("referer_url", "refererUrl"),
)


# Minimal analytics schema for local development databases
ANALYTICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS site (
    idsite INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    timezone TEXT
);

CREATE TABLE IF NOT EXISTS log_visit (
    idvisit INTEGER PRIMARY KEY,
    idsite INTEGER NOT NULL,
    idvisitor TEXT NOT NULL,
    visit_first_action_time TEXT NOT NULL,
    visit_entry_url TEXT,
    referer_type INTEGER,
    referer_name TEXT,
    referer_url TEXT,
    campaign_name TEXT,
    campaign_keyword TEXT,
    campaign_source TEXT,
    campaign_medium TEXT,
    campaign_content TEXT,
    campaign_id TEXT,
    aom_platform TEXT,
    aom_platform_row_id TEXT
);

CREATE INDEX IF NOT EXISTS index_log_visit_site_time
    ON log_visit(idsite, visit_first_action_time);

CREATE TABLE IF NOT EXISTS log_conversion (
    idorder TEXT PRIMARY KEY,
    idvisit INTEGER NOT NULL,
    revenue REAL
);
"""


def create_analytics_schema(db_conn: sqlite3.Connection) -> None:
    """Create the analytics tables the visit source reads (if missing)."""
    db_conn.executescript(ANALYTICS_SCHEMA)


class VisitSource(Protocol):
    """Read-only provider of analytics visits."""

    def check_capabilities(self) -> None:
        """Raise ConfigurationError when required visit data is unavailable."""
        ...

    def get_visits(
        self, site_id: int, utc_start: datetime, utc_end: datetime
    ) -> Sequence[VisitRecord]:
        ...


def _parse_utc(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)


def _table_columns(db_conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = db_conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


class SiteTimezoneLookup:
    """Resolves site timezones from the analytics `site` table."""

    def __init__(self, db_conn: sqlite3.Connection) -> None:
        self.db_conn = db_conn

    def get(self, site_id: int) -> str:
        """Return the site's timezone name.

        Raises:
            ConfigurationError: If the site has no timezone configured
        """
        cursor = self.db_conn.execute(
            "SELECT timezone FROM site WHERE idsite=?", (site_id,)
        )
        row = cursor.fetchone()
        if row is None or not row[0]:
            raise ConfigurationError(f"No timezone found for website id {site_id}")
        return row[0]

    def list_sites(self) -> list[int]:
        cursor = self.db_conn.execute("SELECT idsite FROM site ORDER BY idsite")
        return [row[0] for row in cursor.fetchall()]


class SQLiteVisitSource:
    """Fetches visits with their conversions from the analytics database."""

    def __init__(
        self,
        db_conn: sqlite3.Connection,
        param_prefix: str = "aom",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize visit source.

        Args:
            db_conn: Connection to the analytics database
            param_prefix: Tracking parameter prefix for entry URL detection
            logger: Optional logger instance
        """
        self.db_conn = db_conn
        self.param_prefix = param_prefix
        self.logger = logger or logging.getLogger(__name__)
        self._has_entry_url: Optional[bool] = None

    def check_capabilities(self) -> None:
        """Verify the analytics schema carries campaign and platform columns.

        Raises:
            ConfigurationError: If log_visit lacks required columns
        """
        columns = _table_columns(self.db_conn, "log_visit")
        if not columns:
            raise ConfigurationError("Analytics table log_visit not found")

        missing = [column for column in REQUIRED_VISIT_COLUMNS if column not in columns]
        if missing:
            raise ConfigurationError(
                "Campaign tracking must be installed and activated "
                f"(log_visit is missing: {', '.join(missing)})"
            )

        self._has_entry_url = "visit_entry_url" in columns

    def get_visits(
        self, site_id: int, utc_start: datetime, utc_end: datetime
    ) -> list[VisitRecord]:
        """Return visits whose first action lies within [utc_start, utc_end].

        Args:
            site_id: Website id
            utc_start: Window start (UTC, inclusive)
            utc_end: Window end (UTC, inclusive)

        Returns:
            VisitRecords with platform hint, platform row reference,
            conversions and revenue
        """
        rows = self._select(
            """
            v.idsite = ?
                AND v.visit_first_action_time >= ?
                AND v.visit_first_action_time <= ?
            """,
            (site_id, format_utc(utc_start), format_utc(utc_end)),
        )

        visits = [self._row_to_visit(row) for row in rows]

        self.logger.debug(
            "Got %s visits with %s conversions for site %s (%s..%s).",
            len(visits),
            sum(visit.conversions for visit in visits),
            site_id,
            format_utc(utc_start),
            format_utc(utc_end),
        )
        return visits

    def get_visit(self, site_id: int, visit_id: int) -> Optional[VisitRecord]:
        """Return one visit of a site, or None when it does not exist."""
        rows = self._select("v.idsite = ? AND v.idvisit = ?", (site_id, visit_id))
        return self._row_to_visit(rows[0]) if rows else None

    def _select(self, where: str, params: tuple) -> list[sqlite3.Row]:
        if self._has_entry_url is None:
            self.check_capabilities()

        entry_url_column = "v.visit_entry_url" if self._has_entry_url else "NULL"

        cursor = self.db_conn.execute(
            f"""
            SELECT
                v.idvisit AS idvisit,
                v.idvisitor AS idvisitor,
                v.idsite AS idsite,
                v.visit_first_action_time AS visit_first_action_time,
                v.referer_type AS referer_type,
                v.referer_name AS referer_name,
                v.referer_url AS referer_url,
                v.campaign_name AS campaign_name,
                v.campaign_keyword AS campaign_keyword,
                v.campaign_source AS campaign_source,
                v.campaign_medium AS campaign_medium,
                v.campaign_content AS campaign_content,
                v.campaign_id AS campaign_id,
                v.aom_platform AS aom_platform,
                v.aom_platform_row_id AS aom_platform_row_id,
                {entry_url_column} AS entry_url,
                COUNT(c.idorder) AS conversions,
                SUM(c.revenue) AS revenue
            FROM log_visit AS v
            LEFT JOIN log_conversion AS c ON v.idvisit = c.idvisit
            WHERE {where}
            GROUP BY v.idvisit
            ORDER BY v.idvisit
            """,
            params,
        )
        return cursor.fetchall()

    def _row_to_visit(self, row: sqlite3.Row) -> VisitRecord:
        campaign_data = {
            key: row[column]
            for column, key in CAMPAIGN_DATA_FIELDS
            if row[column] is not None
        }

        # Ad params come from the entry URL, or from the referrer when the
        # entry URL is untagged
        url = params_url(row["entry_url"], row["referer_url"], self.param_prefix)
        ad_params = ad_params_from_url(url, self.param_prefix)
        if ad_params:
            campaign_data["adParams"] = ad_params

        platform = row["aom_platform"]
        if platform is None and ad_params:
            platform = ad_params["platform"]

        platform_row_id = row["aom_platform_row_id"]

        return VisitRecord(
            visit_id=row["idvisit"],
            visitor_id=str(row["idvisitor"]),
            site_id=row["idsite"],
            first_action_time_utc=_parse_utc(row["visit_first_action_time"]),
            referer_type=referer_type_label(row["referer_type"]),
            campaign_name=row["campaign_name"],
            campaign_data=campaign_data,
            platform=platform,
            platform_row_id=str(platform_row_id) if platform_row_id is not None else None,
            conversions=row["conversions"] or 0,
            revenue=row["revenue"],
        )
