"""Shared fixtures: temp-file SQLite databases and analytics seed helpers."""
from datetime import date, datetime, timezone

import pytest

from aom_core.exceptions import ConfigurationError
from aom_core.reconcile.schema import connect, init_database
from aom_core.reconcile.visits import create_analytics_schema
from aom_core.schemas.records import CostRecord, Platform, VisitRecord


class StaticTimezones:
    """Timezone lookup backed by a dict."""

    def __init__(self, zones: dict[int, str]):
        self.zones = zones

    def get(self, site_id: int) -> str:
        if site_id not in self.zones:
            raise ConfigurationError(f"No timezone found for website id {site_id}")
        return self.zones[site_id]

    def list_sites(self) -> list[int]:
        return sorted(self.zones)


@pytest.fixture
def db_path(tmp_path):
    """Initialized ledger database file."""
    path = tmp_path / "aom.db"
    init_database(path)
    return path


@pytest.fixture
def db_conn(db_path):
    conn = connect(db_path)
    yield conn
    conn.close()


@pytest.fixture
def analytics_conn(db_conn):
    """Ledger connection that also carries the analytics tables."""
    create_analytics_schema(db_conn)
    return db_conn


@pytest.fixture
def add_site(analytics_conn):
    def _add_site(site_id: int = 1, tz: str | None = "UTC", name: str = "Shop") -> None:
        analytics_conn.execute(
            "INSERT INTO site (idsite, name, timezone) VALUES (?, ?, ?)",
            (site_id, name, tz),
        )

    return _add_site


@pytest.fixture
def add_visit(analytics_conn):
    """Insert a log_visit row; returns its idvisit."""

    def _add_visit(
        idvisit: int,
        first_action: str,
        site_id: int = 1,
        referer_type: int | None = None,
        campaign_name: str | None = None,
        platform: str | None = None,
        platform_row_id: str | None = None,
        entry_url: str | None = None,
        referer_url: str | None = None,
        revenues: tuple = (),
    ) -> int:
        analytics_conn.execute(
            """
            INSERT INTO log_visit (
                idvisit, idsite, idvisitor, visit_first_action_time, visit_entry_url,
                referer_type, referer_url, campaign_name, aom_platform, aom_platform_row_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                idvisit,
                site_id,
                f"visitor{idvisit}",
                first_action,
                entry_url,
                referer_type,
                referer_url,
                campaign_name,
                platform,
                platform_row_id,
            ),
        )
        for index, revenue in enumerate(revenues):
            analytics_conn.execute(
                "INSERT INTO log_conversion (idorder, idvisit, revenue) VALUES (?, ?, ?)",
                (f"ord-{idvisit}-{index}", idvisit, revenue),
            )
        return idvisit

    return _add_visit


@pytest.fixture
def make_timezones():
    return StaticTimezones


@pytest.fixture
def timezones():
    return StaticTimezones({1: "UTC"})


@pytest.fixture
def window_day():
    return date(2024, 3, 10)


@pytest.fixture
def midnight_utc():
    return datetime(2024, 3, 10, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_visit(midnight_utc):
    def _make_visit(visit_id: int | None, **kwargs) -> VisitRecord:
        values = {
            "visit_id": visit_id,
            "visitor_id": f"visitor{visit_id}",
            "site_id": 1,
            "first_action_time_utc": midnight_utc.replace(hour=12),
        }
        values.update(kwargs)
        return VisitRecord(**values)

    return _make_visit


@pytest.fixture
def make_cost(window_day):
    def _make_cost(external_row_id: str, platform: Platform = Platform.ADWORDS, **kwargs) -> CostRecord:
        values = {
            "platform": platform,
            "external_row_id": external_row_id,
            "site_id": 1,
            "metric_date": window_day,
        }
        values.update(kwargs)
        return CostRecord(**values)

    return _make_cost
