"""Seed a local analytics + cost database with a week of demo traffic.

Usage:
    AOM_DB_PATH=data/aom.db python scripts/seed_demo_data.py
"""
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from aom_core.platforms import CostStore
from aom_core.reconcile.schema import connect, init_database
from aom_core.reconcile.visits import create_analytics_schema
from aom_core.schemas.records import CostRecord, Platform

DB_PATH = os.getenv("AOM_DB_PATH", "data/aom.db")
DAYS_BACK = 7
SITE_ID = 1
SITE_TIMEZONE = "Europe/Berlin"

# Campaign rows per platform: (external row suffix, campaign, daily cost, clicks)
SCENARIOS = {
    Platform.ADWORDS: [
        ("brand", "Brand Search", 40.0, 20),
        ("generic", "Generic Search", 25.0, 10),
    ],
    Platform.FACEBOOK_ADS: [
        ("retargeting", "Retargeting", 15.0, 6),
    ],
}


def seed_data() -> None:
    init_database(DB_PATH)
    conn = connect(DB_PATH)
    create_analytics_schema(conn)

    conn.execute(
        "INSERT OR REPLACE INTO site (idsite, name, timezone) VALUES (?, ?, ?)",
        (SITE_ID, "Demo Shop", SITE_TIMEZONE),
    )

    store = CostStore(conn)
    today = datetime.now(timezone.utc).date()
    start = today - timedelta(days=DAYS_BACK)
    next_visit_id = (conn.execute("SELECT MAX(idvisit) FROM log_visit").fetchone()[0] or 0) + 1

    print(f"Seeding data for the last {DAYS_BACK} days...")

    for platform, rows in SCENARIOS.items():
        records = []
        for day_offset in range(DAYS_BACK):
            day = start + timedelta(days=day_offset)
            for suffix, campaign, cost, clicks in rows:
                records.append(
                    CostRecord(
                        platform=platform,
                        external_row_id=f"{day.isoformat()}-{suffix}",
                        site_id=SITE_ID,
                        metric_date=day,
                        campaign=campaign,
                        campaign_id=suffix,
                        clicks=clicks,
                        cost=cost,
                    )
                )
        store.replace_period(platform, start, today - timedelta(days=1), records)

    for day_offset in range(DAYS_BACK):
        day = start + timedelta(days=day_offset)
        for platform, rows in SCENARIOS.items():
            for suffix, campaign, _cost, clicks in rows:
                # Fewer tracked visits than clicks, some rows get no visit at all
                for _ in range(random.randint(0, clicks // 2)):
                    first_action = datetime(day.year, day.month, day.day, 10) + timedelta(
                        minutes=random.randint(0, 600)
                    )
                    conn.execute(
                        """
                        INSERT INTO log_visit (
                            idvisit, idsite, idvisitor, visit_first_action_time,
                            referer_type, campaign_name, aom_platform, aom_platform_row_id
                        ) VALUES (?, ?, ?, ?, 6, ?, ?, ?)
                        """,
                        (
                            next_visit_id,
                            SITE_ID,
                            f"{random.getrandbits(64):016x}",
                            first_action.strftime("%Y-%m-%d %H:%M:%S"),
                            campaign,
                            platform.value,
                            f"{day.isoformat()}-{suffix}",
                        ),
                    )
                    next_visit_id += 1

        for _ in range(random.randint(5, 15)):
            first_action = datetime(day.year, day.month, day.day, 8) + timedelta(
                minutes=random.randint(0, 720)
            )
            conn.execute(
                """
                INSERT INTO log_visit (
                    idvisit, idsite, idvisitor, visit_first_action_time, referer_type
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    next_visit_id,
                    SITE_ID,
                    f"{random.getrandbits(64):016x}",
                    first_action.strftime("%Y-%m-%d %H:%M:%S"),
                    random.choice([1, 2, 3]),
                ),
            )
            if random.random() < 0.1:
                conn.execute(
                    "INSERT INTO log_conversion (idorder, idvisit, revenue) VALUES (?, ?, ?)",
                    (f"ord_{next_visit_id}", next_visit_id, round(random.uniform(20, 120), 2)),
                )
            next_visit_id += 1

    conn.close()
    print(f"Database {DB_PATH} seeded. Set AOM_ACTIVE_PLATFORMS=AdWords,FacebookAds to merge.")


if __name__ == "__main__":
    seed_data()
