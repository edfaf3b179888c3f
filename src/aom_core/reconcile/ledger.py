"""Attribution ledger persistence (aom_visits).

A (site, date) window is always replaced as a unit: delete and insert run in
one BEGIN IMMEDIATE transaction, so readers see either the previous complete
window or the new one. Inserts are keyed by unique_hash; a conflicting row is
already present and is skipped, which lets concurrent reprocessing runs of
the same window converge.
"""
import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from datetime import date
from typing import Optional, Sequence

from ..schemas.records import AttributedVisit, canonical_json
from .dates import format_utc


@dataclass
class ReplaceStats:
    """Outcome of one window replace."""

    deleted: int = 0
    inserted: int = 0
    conflicts: int = 0
    seconds: float = 0.0


def _json_or_none(value: Optional[dict]) -> Optional[str]:
    if value is None:
        return None
    return canonical_json(value)


class AttributionStore:
    """Reads and atomically replaces ledger windows."""

    def __init__(
        self,
        db_conn: sqlite3.Connection,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """Initialize store.

        Args:
            db_conn: SQLite connection opened with schema.connect()
            logger: Optional logger instance
        """
        self.db_conn = db_conn
        self.logger = logger or logging.getLogger(__name__)

    def replace_window(
        self, site_id: int, day: date, rows: Sequence[AttributedVisit]
    ) -> ReplaceStats:
        """Replace every ledger row of (site_id, day) with rows.

        Args:
            site_id: Window site
            day: Window date (site-local)
            rows: Complete computed set for the window

        Returns:
            ReplaceStats with deleted/inserted/conflict counts

        Raises:
            sqlite3.Error: The transaction was rolled back; the previous
                window is untouched
        """
        stats = ReplaceStats()
        started = time.monotonic()
        day_str = day.isoformat()

        self.db_conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = self.db_conn.execute(
                "DELETE FROM aom_visits WHERE idsite=? AND date_website_timezone=?",
                (site_id, day_str),
            )
            stats.deleted = max(cursor.rowcount, 0)

            for row in rows:
                if row.site_id != site_id or row.date_website_timezone != day:
                    raise ValueError(
                        f"Row {row.unique_hash} does not belong to window "
                        f"site={site_id} date={day_str}"
                    )

                cursor = self.db_conn.execute(
                    """
                    INSERT INTO aom_visits (
                        idsite, piwik_idvisit, piwik_idvisitor, unique_hash,
                        first_action_time_utc, date_website_timezone, channel,
                        campaign_data, platform_data, cost, conversions, revenue
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(unique_hash) DO NOTHING
                    """,
                    (
                        row.site_id,
                        row.visit_id,
                        row.visitor_id,
                        row.unique_hash,
                        format_utc(row.first_action_time_utc),
                        day_str,
                        row.channel,
                        _json_or_none(row.campaign_data),
                        _json_or_none(row.platform_data),
                        row.cost,
                        row.conversions,
                        row.revenue,
                    ),
                )
                if cursor.rowcount == 1:
                    stats.inserted += 1
                else:
                    stats.conflicts += 1

            self.db_conn.execute("COMMIT")
        except Exception:
            self.db_conn.execute("ROLLBACK")
            self.logger.error(
                "Rolled back ledger replace for site=%s date=%s", site_id, day_str
            )
            raise

        stats.seconds = time.monotonic() - started

        if stats.conflicts:
            self.logger.info(
                "Skipped %s ledger rows already present (site=%s date=%s)",
                stats.conflicts,
                site_id,
                day_str,
            )

        return stats

    def stored_cost(self, site_id: int, day: date, channel: str) -> float:
        """Total stored cost of a window for one channel."""
        cursor = self.db_conn.execute(
            """
            SELECT COALESCE(SUM(cost), 0) FROM aom_visits
            WHERE idsite=? AND date_website_timezone=? AND channel=?
            """,
            (site_id, day.isoformat(), channel),
        )
        return float(cursor.fetchone()[0])

    def count_rows(self, site_id: int, day: date) -> int:
        cursor = self.db_conn.execute(
            "SELECT COUNT(*) FROM aom_visits WHERE idsite=? AND date_website_timezone=?",
            (site_id, day.isoformat()),
        )
        return int(cursor.fetchone()[0])

    def fetch_window(self, site_id: int, day: date) -> list[dict]:
        """Return the stored rows of a window ordered by unique_hash."""
        cursor = self.db_conn.execute(
            """
            SELECT idsite, piwik_idvisit, piwik_idvisitor, unique_hash,
                   first_action_time_utc, date_website_timezone, channel,
                   campaign_data, platform_data, cost, conversions, revenue
            FROM aom_visits
            WHERE idsite=? AND date_website_timezone=?
            ORDER BY unique_hash
            """,
            (site_id, day.isoformat()),
        )
        rows = []
        for record in cursor.fetchall():
            row = dict(record)
            for key in ("campaign_data", "platform_data"):
                if row[key] is not None:
                    row[key] = json.loads(row[key])
            rows.append(row)
        return rows
