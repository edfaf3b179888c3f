"""Unit tests for the reprocessing orchestrator."""
import logging
import threading
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from aom_core.exceptions import ConfigurationError, ImportAuthError
from aom_core.platforms import CostStore, build_adapters
from aom_core.reconcile.ledger import AttributionStore
from aom_core.reconcile.orchestrator import ReprocessVisitsService, make_run_logger
from aom_core.reconcile.visits import SiteTimezoneLookup, SQLiteVisitSource
from aom_core.schemas.records import Platform
from aom_core.settings import Settings


DAY = date(2024, 3, 10)


@pytest.fixture
def settings(db_path):
    return Settings(
        db_path=db_path,
        analytics_db_path=db_path,
        active_platforms=[Platform.ADWORDS, Platform.FACEBOOK_ADS],
    )


@pytest.fixture
def service(settings, analytics_conn, add_site):
    add_site(1, "UTC")
    return ReprocessVisitsService(
        settings,
        analytics_conn,
        SQLiteVisitSource(analytics_conn),
        SiteTimezoneLookup(analytics_conn),
    )


@pytest.mark.asyncio
async def test_run_merges_costs_into_ledger(service, analytics_conn, add_visit, make_cost):
    add_visit(1, "2024-03-10 09:00:00", referer_type=6, platform="AdWords", platform_row_id="7")
    add_visit(2, "2024-03-10 10:00:00", referer_type=6, platform="AdWords", platform_row_id="7")
    add_visit(3, "2024-03-10 11:00:00", referer_type=6, campaign_name="newsletter")
    CostStore(analytics_conn).replace_period(
        Platform.ADWORDS, DAY, DAY, [make_cost("7", cost=9.0, clicks=3), make_cost("8", cost=5.5, clicks=2)]
    )

    report = await service.run(DAY, DAY)

    assert report.ok
    assert report.total_visits_in == 3
    assert report.total_rows_out == 4
    assert report.discrepancies == []

    rows = {row["unique_hash"]: row for row in AttributionStore(analytics_conn).fetch_window(1, DAY)}
    assert rows["visit-1"]["cost"] == pytest.approx(4.5)
    assert rows["visit-1"]["channel"] == "AdWords"
    assert rows["visit-3"]["channel"] == "campaign"
    assert rows["visit-3"]["cost"] is None

    window = report.windows[0]
    adwords = next(stats for stats in window.platform_stats if stats.platform == Platform.ADWORDS)
    assert adwords.matched_visits == 2
    assert adwords.created_visits == 1
    assert adwords.unmerged_clicks == 2


@pytest.mark.asyncio
async def test_run_twice_is_idempotent(service, analytics_conn, add_visit, make_cost):
    add_visit(1, "2024-03-10 09:00:00", platform="AdWords", platform_row_id="7")
    CostStore(analytics_conn).replace_period(
        Platform.ADWORDS, DAY, DAY, [make_cost("7", cost=1.0, clicks=1), make_cost("9", cost=2.0, clicks=1)]
    )
    ledger = AttributionStore(analytics_conn)

    await service.run(DAY, DAY)
    first = ledger.fetch_window(1, DAY)
    await service.run(DAY, DAY)
    second = ledger.fetch_window(1, DAY)

    assert [row["unique_hash"] for row in first] == [row["unique_hash"] for row in second]


@pytest.mark.asyncio
async def test_missing_campaign_capability_aborts_range(settings, db_conn):
    visit_source = MagicMock()
    visit_source.check_capabilities.side_effect = ConfigurationError("Campaign tracking must be installed")
    service = ReprocessVisitsService(
        settings, db_conn, visit_source, SiteTimezoneLookup(db_conn), site_ids=[1]
    )

    with pytest.raises(ConfigurationError):
        await service.run(DAY, date(2024, 3, 12))

    visit_source.get_visits.assert_not_called()


@pytest.mark.asyncio
async def test_missing_timezone_skips_only_that_site(settings, analytics_conn, add_site, add_visit):
    add_site(1, "UTC")
    add_site(2, None)
    add_visit(1, "2024-03-10 09:00:00", referer_type=1)
    service = ReprocessVisitsService(
        settings, analytics_conn, SQLiteVisitSource(analytics_conn), SiteTimezoneLookup(analytics_conn)
    )

    report = await service.run(DAY, DAY)

    assert [window.site_id for window in report.windows] == [1]
    assert len(report.failures) == 1
    assert report.failures[0].site_id == 2
    assert "No timezone" in report.failures[0].error


@pytest.mark.asyncio
async def test_window_error_does_not_stop_range(settings, db_conn, make_timezones):
    visit_source = MagicMock()
    visit_source.get_visits.side_effect = [RuntimeError("analytics down"), []]
    service = ReprocessVisitsService(
        settings, db_conn, visit_source, make_timezones({1: "UTC"})
    )

    report = await service.run(date(2024, 3, 10), date(2024, 3, 11))

    assert [failure.day for failure in report.failures] == [date(2024, 3, 10)]
    assert [window.day for window in report.windows] == [date(2024, 3, 11)]


@pytest.mark.asyncio
async def test_import_failure_recorded_and_merge_uses_stored_costs(
    service, analytics_conn, add_visit, make_cost
):
    """Test a failed import keeps the last complete import for the merge."""
    add_visit(1, "2024-03-10 09:00:00", platform="AdWords", platform_row_id="7")
    CostStore(analytics_conn).replace_period(Platform.ADWORDS, DAY, DAY, [make_cost("7", cost=2.0, clicks=1)])

    importer = MagicMock()
    importer.import_costs = AsyncMock(side_effect=ImportAuthError("AdWords", 401, "denied"))
    service.adapters[Platform.ADWORDS].importer = importer

    report = await service.run(DAY, DAY, import_costs=True)

    importer.import_costs.assert_awaited_once()
    assert len(report.failures) == 1
    assert report.failures[0].platform == Platform.ADWORDS
    assert AttributionStore(analytics_conn).stored_cost(1, DAY, "AdWords") == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_unexpected_import_error_does_not_stop_range(
    service, analytics_conn, add_visit, make_cost
):
    """Test an importer error outside CostImportError is recorded per platform."""
    add_visit(1, "2024-03-10 09:00:00", platform="AdWords", platform_row_id="7")
    add_visit(2, "2024-03-11 09:00:00", referer_type=1)
    late = [make_cost("x", cost=1.0, clicks=1, metric_date=date(2024, 3, 12))]

    async def out_of_range_import(start, end, cost_store):
        return cost_store.replace_period(Platform.ADWORDS, start, end, late)

    adwords_importer = MagicMock()
    adwords_importer.import_costs = AsyncMock(side_effect=out_of_range_import)
    service.adapters[Platform.ADWORDS].importer = adwords_importer
    facebook_importer = MagicMock()
    facebook_importer.import_costs = AsyncMock(return_value=0)
    service.adapters[Platform.FACEBOOK_ADS].importer = facebook_importer

    report = await service.run(DAY, date(2024, 3, 11), import_costs=True)

    assert len(report.failures) == 1
    assert report.failures[0].platform == Platform.ADWORDS
    assert "outside" in report.failures[0].error
    facebook_importer.import_costs.assert_awaited_once()
    assert [window.day for window in report.windows] == [DAY, date(2024, 3, 11)]
    assert report.total_visits_in == 2
    assert CostStore(analytics_conn).get(Platform.ADWORDS, "x") is None

@pytest.mark.asyncio
async def test_import_runs_before_merge(service, analytics_conn, add_visit, make_cost):
    add_visit(1, "2024-03-10 09:00:00", platform="FacebookAds", platform_row_id="2024-03-10-42")
    imported = [make_cost("2024-03-10-42", platform=Platform.FACEBOOK_ADS, cost=6.0, clicks=2)]

    async def fake_import(start, end, cost_store):
        return cost_store.replace_period(Platform.FACEBOOK_ADS, start, end, imported)

    importer = MagicMock()
    importer.import_costs = AsyncMock(side_effect=fake_import)
    service.adapters[Platform.FACEBOOK_ADS].importer = importer

    report = await service.run(DAY, DAY, import_costs=True)

    assert report.ok
    rows = AttributionStore(analytics_conn).fetch_window(1, DAY)
    assert [(row["unique_hash"], row["cost"]) for row in rows] == [("visit-1", 6.0)]


@pytest.mark.asyncio
async def test_cost_discrepancy_reported(service, analytics_conn, make_cost, caplog):
    CostStore(analytics_conn).replace_period(Platform.ADWORDS, DAY, DAY, [make_cost("7", cost=3.0, clicks=1)])
    original = service.ledger.stored_cost
    service.ledger.stored_cost = MagicMock(
        side_effect=lambda site_id, day, channel: original(site_id, day, channel)
        - (1.0 if channel == "AdWords" else 0.0)
    )

    with caplog.at_level(logging.WARNING):
        report = await service.run(DAY, DAY)

    assert len(report.discrepancies) == 1
    discrepancy = report.discrepancies[0]
    assert discrepancy.platform == Platform.ADWORDS
    assert discrepancy.difference == pytest.approx(1.0)
    assert "cost mismatch" in caplog.text


def test_run_logger_prefixes_messages(caplog):
    run_logger = make_run_logger(logging.getLogger("aom.test"), run_id="abc123")

    with caplog.at_level(logging.INFO, logger="aom.test"):
        run_logger.info("Processing %s", "AdWords")

    assert "[reprocess-visits abc123] Processing AdWords" in caplog.text


def test_from_settings_opens_databases(settings, analytics_conn, add_site):
    add_site(1, "UTC")

    service = ReprocessVisitsService.from_settings(settings)
    try:
        assert service.site_ids() == [1]
        assert service.adapters[Platform.FACEBOOK_ADS].importer is None
        assert [adapter.platform for adapter in service.active_adapters()] == [
            Platform.ADWORDS,
            Platform.FACEBOOK_ADS,
        ]
    finally:
        service.close()


def test_adapters_follow_platform_order(settings):
    adapters = build_adapters(settings)

    assert list(adapters) == list(Platform)
    assert adapters[Platform.BING].is_active() is False


@pytest.mark.asyncio
async def test_windows_run_off_the_event_loop_thread(service, add_visit):
    add_visit(1, "2024-03-10 09:00:00", referer_type=1)
    loop_thread = threading.get_ident()
    threads = []
    process_date = service.process_date

    def recording_process_date(day, report):
        threads.append(threading.get_ident())
        process_date(day, report)

    service.process_date = recording_process_date

    report = await service.run(DAY, date(2024, 3, 11))

    assert report.ok
    assert report.total_visits_in == 1
    assert len(threads) == 2
    assert loop_thread not in threads


@pytest.mark.asyncio
async def test_cost_store_logs_through_run_logger(service, make_cost, caplog):
    imported = [make_cost("2024-03-10-42", platform=Platform.FACEBOOK_ADS, cost=6.0, clicks=2)]

    async def fake_import(start, end, cost_store):
        return cost_store.replace_period(Platform.FACEBOOK_ADS, start, end, imported)

    importer = MagicMock()
    importer.import_costs = AsyncMock(side_effect=fake_import)
    service.adapters[Platform.FACEBOOK_ADS].importer = importer

    with caplog.at_level(logging.INFO):
        await service.run(DAY, DAY, import_costs=True)

    replaced = [record.getMessage() for record in caplog.records if "Replaced" in record.getMessage()]
    assert len(replaced) == 1
    assert replaced[0].startswith("[reprocess-visits ")
    assert "Replaced 0 FacebookAds cost records with 1" in replaced[0]
