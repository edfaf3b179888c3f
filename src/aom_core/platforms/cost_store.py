"""Imported platform cost records (aom_platform_costs)."""
import json
import logging
import sqlite3
from datetime import date
from typing import Optional, Sequence

from ..schemas.records import CostRecord, Platform, canonical_json


def _row_to_record(row: sqlite3.Row) -> CostRecord:
    return CostRecord(
        platform=row["platform"],
        external_row_id=row["external_row_id"],
        site_id=row["idsite"],
        metric_date=date.fromisoformat(row["date"]),
        account_id=row["account_id"],
        campaign_id=row["campaign_id"],
        campaign=row["campaign"],
        clicks=row["clicks"],
        cost=row["cost"],
        conversions=row["conversions"],
        conversion_value=row["conversion_value"],
        platform_data=json.loads(row["platform_data"]) if row["platform_data"] else {},
    )


class CostStore:
    """Stores cost records per platform and serves them per window."""

    def __init__(
        self, db_conn: sqlite3.Connection, logger: Optional[logging.Logger] = None
    ) -> None:
        """Initialize cost store.

        Args:
            db_conn: SQLite connection opened with schema.connect()
            logger: Optional logger instance
        """
        self.db_conn = db_conn
        self.logger = logger or logging.getLogger(__name__)

    def replace_period(
        self,
        platform: Platform,
        start_date: date,
        end_date: date,
        records: Sequence[CostRecord],
        site_id: Optional[int] = None,
    ) -> int:
        """Replace a platform's cost records for a date range.

        Runs in one transaction: a failed import leaves the previous records
        for the range intact.

        Args:
            platform: Platform being imported
            start_date: First date of the range (inclusive)
            end_date: Last date of the range (inclusive)
            records: Complete import result for the range
            site_id: Restrict the delete to one site (account mapped to a site)

        Returns:
            Number of records inserted
        """
        if start_date > end_date:
            start_date, end_date = end_date, start_date

        query = "DELETE FROM aom_platform_costs WHERE platform=? AND date >= ? AND date <= ?"
        params: list = [platform.value, start_date.isoformat(), end_date.isoformat()]
        if site_id is not None:
            query += " AND idsite=?"
            params.append(site_id)

        self.db_conn.execute("BEGIN IMMEDIATE")
        try:
            cursor = self.db_conn.execute(query, params)
            deleted = max(cursor.rowcount, 0)

            for record in records:
                if record.platform != platform:
                    raise ValueError(
                        f"Record {record.external_row_id} belongs to {record.platform.value}, "
                        f"not {platform.value}"
                    )
                if not start_date <= record.metric_date <= end_date:
                    raise ValueError(
                        f"Record {record.external_row_id} dated {record.metric_date} "
                        f"outside {start_date}..{end_date}"
                    )

                self.db_conn.execute(
                    """
                    INSERT INTO aom_platform_costs (
                        platform, external_row_id, idsite, date, account_id,
                        campaign_id, campaign, clicks, cost, conversions,
                        conversion_value, platform_data
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(platform, external_row_id)
                    DO UPDATE SET
                        idsite=excluded.idsite,
                        date=excluded.date,
                        account_id=excluded.account_id,
                        campaign_id=excluded.campaign_id,
                        campaign=excluded.campaign,
                        clicks=excluded.clicks,
                        cost=excluded.cost,
                        conversions=excluded.conversions,
                        conversion_value=excluded.conversion_value,
                        platform_data=excluded.platform_data,
                        ts_imported=CURRENT_TIMESTAMP
                    """,
                    (
                        platform.value,
                        record.external_row_id,
                        record.site_id,
                        record.metric_date.isoformat(),
                        record.account_id,
                        record.campaign_id,
                        record.campaign,
                        record.clicks,
                        record.cost,
                        record.conversions,
                        record.conversion_value,
                        canonical_json(record.platform_data),
                    ),
                )

            self.db_conn.execute("COMMIT")
        except Exception:
            self.db_conn.execute("ROLLBACK")
            raise

        self.logger.info(
            "Replaced %s %s cost records with %s for %s..%s",
            deleted,
            platform.value,
            len(records),
            start_date.isoformat(),
            end_date.isoformat(),
        )
        return len(records)

    def fetch_window(self, platform: Platform, site_id: int, day: date) -> list[CostRecord]:
        """Return the relevant (clicks > 0 or cost > 0) records of a window."""
        cursor = self.db_conn.execute(
            """
            SELECT * FROM aom_platform_costs
            WHERE platform=? AND idsite=? AND date=? AND (clicks > 0 OR cost > 0)
            ORDER BY external_row_id
            """,
            (platform.value, site_id, day.isoformat()),
        )
        return [_row_to_record(row) for row in cursor.fetchall()]

    def get(self, platform: Platform, external_row_id: str) -> Optional[CostRecord]:
        cursor = self.db_conn.execute(
            "SELECT * FROM aom_platform_costs WHERE platform=? AND external_row_id=?",
            (platform.value, external_row_id),
        )
        row = cursor.fetchone()
        return _row_to_record(row) if row is not None else None
